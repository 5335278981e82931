# pgmirror/utils/retry.py

from dataclasses import dataclass, field
from typing import Dict, Type, Optional
import random

@dataclass
class RetryConfig:
    """Configuration for backoff behavior"""
    base_delay: float = 1.0
    max_delay: float = 300.0
    jitter_factor: float = 0.0

@dataclass
class RetryStrategy:
    """Backoff strategy with error-specific delays"""
    default_config: RetryConfig = field(default_factory=RetryConfig)
    _error_configs: Dict[Type[Exception], RetryConfig] = field(default_factory=dict)

    def configure_error_delays(self, configs: Dict[Type[Exception], RetryConfig]) -> None:
        """Configure specific backoff behaviors for different error types"""
        self._error_configs.update(configs)

    def get_config_for_error(self, error: Exception) -> RetryConfig:
        """Get backoff configuration for specific error type"""
        for error_type, config in self._error_configs.items():
            if isinstance(error, error_type):
                return config
        return self.default_config

    def get_delay(self, attempt: int, error: Optional[Exception] = None) -> float:
        """Calculate delay with exponential backoff and optional jitter"""
        config = self.default_config if error is None else self.get_config_for_error(error)

        delay = min(
            config.max_delay,
            config.base_delay * (2 ** attempt)
        )
        if config.jitter_factor <= 0:
            return delay
        jitter = delay * config.jitter_factor
        return delay + random.uniform(-jitter, jitter)
