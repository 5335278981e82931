import re
import time

_DURATION_PART = re.compile(r'(\d+(?:\.\d+)?)(ms|us|h|m|s)')
_UNIT_SECONDS = {
    'h': 3600.0,
    'm': 60.0,
    's': 1.0,
    'ms': 0.001,
    'us': 0.000001,
}


def get_current_timestamp() -> int:
    """Get current time as millisecond timestamp"""
    return int(time.time() * 1000)

def parse_duration(value: str | int | float) -> float:
    """
    Parse a duration into seconds.

    Accepts bare numbers (seconds) and unit strings in the style of
    "1m", "30s", "1m30s", "500ms" or "2h".

    Raises:
        ValueError: If the value is empty or malformed
    """
    if isinstance(value, (int, float)):
        return float(value)

    text = value.strip().lower()
    if not text:
        raise ValueError("Empty duration")

    try:
        return float(text)
    except ValueError:
        pass

    position = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            raise ValueError(f"Invalid duration '{value}'")
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        position = match.end()

    if position != len(text):
        raise ValueError(f"Invalid duration '{value}'")
    return total

def format_duration(seconds: float) -> str:
    """Format seconds for status reports"""
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 60:
        return f"{seconds:g}s"
    minutes, rest = divmod(seconds, 60)
    return f"{int(minutes)}m{rest:g}s" if rest else f"{int(minutes)}m"
