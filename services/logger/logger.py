import logging.config
from threading import RLock

from config.config import config
from models.models import LogLevel

logging.config.dictConfig(config.get("logging"))


class MainLogger:
    """Aplication wide logging, one named logger per service."""

    _lock = RLock()
    _services: set[str] = set()

    @classmethod
    def get_logger(
        cls, service_name: str = "MAIN", log_level: str = "DEBUG"
    ) -> logging.Logger:
        """Logging instance getter, configurable by service name and level
        Args:
            service_name(str): Logger instance
            log_level(str): Log level desired for your instance, unknown names fall back to DEBUG
        Returns:
            logging.Logger: Configured logger instance.
        """
        logger = logging.getLogger(service_name)
        if log_level:
            logger.setLevel(LogLevel(log_level).value)
        with cls._lock:
            cls._services.add(service_name)
        return logger

    @classmethod
    def set_level(cls, log_level: str) -> LogLevel:
        """Apply one level to every service logger handed out so far."""
        _level = LogLevel(log_level)
        with cls._lock:
            for _service in cls._services:
                logging.getLogger(_service).setLevel(_level.value)
        return _level
