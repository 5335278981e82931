from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple
from dataclasses import dataclass, field
import os
from dotenv import load_dotenv

from .enums import TickPolicy
from .exceptions import ConfigurationError
from ..utils.time import parse_duration

DEFAULT_CHUNK = 1000
DEFAULT_SYNC_INTERVAL = 60.0
DEFAULT_PERSIST_INTERVAL = 5.0
DEFAULT_CHECKPOINT_PATH = ".storage"

_DRIVER_PREFIXES = ("postgres://", "postgresql://")


def parse_table_list(value: Optional[str | Iterable[str]]) -> FrozenSet[str]:
    """Split a comma separated table list, dropping blanks"""
    if not value:
        return frozenset()
    items = value.split(",") if isinstance(value, str) else value
    return frozenset(item.strip() for item in items if item and item.strip())


def parse_listen_address(value: str) -> Tuple[str, int]:
    """
    Parse a metrics listen address.

    Accepts "host:port", ":port" or a bare port.

    Raises:
        ConfigurationError: If the port is missing or invalid
    """
    host, _, port = value.strip().rpartition(":")
    try:
        port_number = int(port)
    except ValueError:
        raise ConfigurationError(f"Invalid metrics address '{value}'")
    if not 0 < port_number < 65536:
        raise ConfigurationError(f"Metrics port out of range in '{value}'")
    return host or "0.0.0.0", port_number


@dataclass
class DatabaseConfig:
    """Database connection settings"""
    dsn: str
    pool_size: int = 10
    max_overflow: int = 20
    pool_timeout: int = 30
    pool_recycle: int = 1800
    echo: bool = False
    driver: str = "asyncpg"

    def __post_init__(self) -> None:
        """Validate database configuration"""
        if not self.dsn:
            raise ConfigurationError("Database DSN must be specified")
        if self.pool_size <= 0:
            raise ConfigurationError("Pool size must be positive")

    @property
    def url(self) -> str:
        """SQLAlchemy URL with the async driver selected"""
        for prefix in _DRIVER_PREFIXES:
            if self.dsn.startswith(prefix):
                return f"postgresql+{self.driver}://{self.dsn[len(prefix):]}"
        return self.dsn

    def get_engine_options(self) -> Dict[str, Any]:
        """Get SQLAlchemy engine options"""
        return {
            'pool_pre_ping': True,
            'pool_size': self.pool_size,
            'max_overflow': self.max_overflow,
            'pool_timeout': self.pool_timeout,
            'pool_recycle': self.pool_recycle,
            'echo': self.echo
        }

@dataclass
class SyncOptions:
    """Table synchronization settings"""
    chunk: int = DEFAULT_CHUNK
    sync_interval: float = DEFAULT_SYNC_INTERVAL
    include_tables: FrozenSet[str] = field(default_factory=frozenset)
    exclude_tables: FrozenSet[str] = field(default_factory=frozenset)
    schema: str = "public"
    checkpoint_path: str = DEFAULT_CHECKPOINT_PATH
    persist_interval: float = DEFAULT_PERSIST_INTERVAL
    event_buffer: int = 1000
    tick_policy: TickPolicy = TickPolicy.SKIP
    backoff: bool = False

    def __post_init__(self) -> None:
        """Validate sync configuration"""
        if self.chunk <= 0:
            self.chunk = DEFAULT_CHUNK
        if self.sync_interval <= 0:
            raise ConfigurationError("Sync interval must be positive")
        if self.persist_interval <= 0:
            raise ConfigurationError("Persist interval must be positive")
        if self.event_buffer <= 0:
            raise ConfigurationError("Event buffer must be positive")
        if not self.schema:
            raise ConfigurationError("Schema must be specified")
        self.include_tables = parse_table_list(self.include_tables)
        self.exclude_tables = parse_table_list(self.exclude_tables)
        self.tick_policy = TickPolicy(self.tick_policy)

@dataclass
class MetricsConfig:
    """Prometheus exposition settings"""
    address: Optional[str] = None

    @property
    def enabled(self) -> bool:
        return bool(self.address)

    @property
    def host_port(self) -> Tuple[str, int]:
        if not self.address:
            raise ConfigurationError("Metrics address is not configured")
        return parse_listen_address(self.address)

@dataclass
class LogConfig:
    """Logging configuration"""
    level: str = "INFO"
    directory: str = "logs"
    verbose: bool = False

    def __post_init__(self) -> None:
        if self.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigurationError(f"Invalid log level '{self.level}'")
        self.level = self.level.upper()

class Config:
    """
    Application configuration.

    Values come from command line overrides first, then environment
    variables (optionally loaded from a .env file), then defaults.
    """

    def __init__(self, overrides: Optional[Dict[str, Any]] = None):
        # Load environment variables
        load_dotenv()
        self._overrides = {k: v for k, v in (overrides or {}).items() if v is not None}

        self.source = self._init_database_config('src', 'PGMIRROR_SOURCE_DSN')
        self.destination = self._init_database_config('dest', 'PGMIRROR_DEST_DSN')
        self.sync = self._init_sync_config()
        self.metrics = self._init_metrics_config()
        self.logging = self._init_log_config()

    def _get(self, key: str, env: str, default: Optional[str] = None) -> Any:
        if key in self._overrides:
            return self._overrides[key]
        return os.getenv(env, default)

    def _init_database_config(self, key: str, env: str) -> DatabaseConfig:
        """Initialize database configuration"""
        try:
            return DatabaseConfig(
                dsn=self._get(key, env, ''),
                pool_size=int(os.getenv('PGMIRROR_POOL_SIZE', '10')),
                max_overflow=int(os.getenv('PGMIRROR_MAX_OVERFLOW', '20')),
                echo=os.getenv('PGMIRROR_DB_ECHO', 'false').lower() == 'true'
            )
        except ConfigurationError as e:
            raise ConfigurationError(f"Invalid {key} database configuration: {e}")
        except ValueError as e:
            raise ConfigurationError(f"Invalid database pool configuration: {e}")

    def _init_sync_config(self) -> SyncOptions:
        """Initialize synchronization configuration"""
        try:
            return SyncOptions(
                chunk=int(self._get('chunk', 'PGMIRROR_CHUNK', str(DEFAULT_CHUNK))),
                sync_interval=parse_duration(self._get('sync_interval', 'PGMIRROR_SYNC_INTERVAL', '1m')),
                include_tables=parse_table_list(self._get('only', 'PGMIRROR_ONLY', '')),
                exclude_tables=parse_table_list(self._get('exclude', 'PGMIRROR_EXCLUDE', '')),
                schema=self._get('schema', 'PGMIRROR_SCHEMA', 'public'),
                checkpoint_path=self._get('checkpoint', 'PGMIRROR_CHECKPOINT_PATH', DEFAULT_CHECKPOINT_PATH),
                persist_interval=parse_duration(os.getenv('PGMIRROR_PERSIST_INTERVAL', '5s')),
                event_buffer=int(os.getenv('PGMIRROR_EVENT_BUFFER', '1000')),
                tick_policy=TickPolicy(os.getenv('PGMIRROR_TICK_POLICY', TickPolicy.SKIP.value).lower()),
                backoff=os.getenv('PGMIRROR_BACKOFF', 'false').lower() == 'true'
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid sync configuration: {e}")

    def _init_metrics_config(self) -> MetricsConfig:
        """Initialize metrics configuration"""
        config = MetricsConfig(address=self._get('prometheus_port', 'PGMIRROR_METRICS_ADDR') or None)
        if config.enabled:
            # Fail fast on a malformed address
            config.host_port
        return config

    def _init_log_config(self) -> LogConfig:
        """Initialize logging configuration"""
        return LogConfig(
            level=os.getenv('PGMIRROR_LOG_LEVEL', 'INFO'),
            directory=os.getenv('PGMIRROR_LOG_DIR', 'logs'),
            verbose=bool(self._overrides.get('verbose', False))
        )
