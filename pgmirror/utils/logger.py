import os
import logging
import sys
from logging.handlers import RotatingFileHandler

class LoggerSetup:
    """
    Centralized logging configuration for pgmirror.
    Provides consistent logging across all modules with both console and file output.
    """
    _initialized = False
    _logs_dir = os.getenv('PGMIRROR_LOG_DIR', 'logs')
    _console_level = logging.INFO

    @classmethod
    def _get_log_path(cls, name: str) -> str:
        """
        Generate a log file path based on the name.

        Args:
            name: Name to create log file for (module path or class name)
        Returns:
            str: Path for the log file
        """
        if '.' in name:
            filename = f"{name.split('.')[-1]}.log"
        else:
            filename = f"{name}.log"

        return os.path.join(cls._logs_dir, filename)

    @classmethod
    def configure(cls, logs_dir: str | None = None, verbose: bool = False) -> None:
        """
        Apply process-wide settings before or after loggers are created.

        Args:
            logs_dir: Directory for rotating log files
            verbose: Emit DEBUG records on the console
        """
        if logs_dir:
            cls._logs_dir = logs_dir
        cls._console_level = logging.DEBUG if verbose else logging.INFO

        for name in list(logging.root.manager.loggerDict):
            if name.startswith('pgmirror'):
                cls.update_log_level(name, console_level=cls._console_level)

    @classmethod
    def setup(cls, name: str) -> logging.Logger:
        """
        Set up and return a logger.

        Args:
            name: Logger name (__name__ for modules or __class__.__name__ for classes)
        Returns:
            logging.Logger: Configured logger instance
        Example:
            logger = LoggerSetup.setup(__name__)
            # Creates worker.log from pgmirror.sync.worker
        """
        logger = logging.getLogger(name)
        logger.setLevel(logging.DEBUG)

        # Avoid adding handlers multiple times
        if not logger.handlers:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(cls._console_level)
            console_formatter = logging.Formatter(
                '%(asctime)s - %(levelname)s - %(message)s'
            )
            console_handler.setFormatter(console_formatter)
            logger.addHandler(console_handler)

            # Only add file handler if not in test environment
            if "pytest" not in sys.modules:
                try:
                    debug_log_file = cls._get_log_path(name)
                    os.makedirs(os.path.dirname(debug_log_file) or '.', exist_ok=True)

                    file_handler = RotatingFileHandler(
                        debug_log_file,
                        maxBytes=10*1024*1024,  # 10MB per file
                        backupCount=5,
                        encoding='utf-8'
                    )
                    file_handler.setLevel(logging.DEBUG)
                    file_formatter = logging.Formatter(
                        '%(asctime)s - %(threadName)s - %(levelname)s - [%(name)s] - %(message)s'
                    )
                    file_handler.setFormatter(file_formatter)
                    logger.addHandler(file_handler)
                except (PermissionError, OSError) as e:
                    console_handler.setLevel(logging.DEBUG)
                    logger.warning(f"Could not set up file logging: {str(e)}")

        if not cls._initialized:
            # Quiet noisy loggers
            logging.getLogger('sqlalchemy').setLevel(logging.WARNING)
            logging.getLogger('asyncpg').setLevel(logging.WARNING)
            logging.getLogger('uvicorn.access').setLevel(logging.WARNING)
            cls._initialized = True

        return logger

    @classmethod
    def update_log_level(cls, name: str,
                        console_level: int | None = None,
                        file_level: int | None = None) -> None:
        """
        Update log levels for an existing logger.

        Args:
            name: Name of the logger
            console_level: New console handler log level (if None, level remains unchanged)
            file_level: New file handler log level (if None, level remains unchanged)
        """
        logger = logging.getLogger(name)
        for handler in logger.handlers:
            if isinstance(handler, RotatingFileHandler):
                if file_level is not None:
                    handler.setLevel(file_level)
            elif isinstance(handler, logging.StreamHandler):
                if console_level is not None:
                    handler.setLevel(console_level)
