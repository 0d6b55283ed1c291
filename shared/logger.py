import json
import logging
import os
from typing import Any, Dict, Optional

logger = logging.getLogger()
logger.setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())


class StructuredLogger:
    """Structured logging for CloudWatch JSON parsing."""

    @staticmethod
    def _format(level: str, message: str, exception: Optional[Exception] = None, **kwargs: Any) -> str:
        log_data: Dict[str, Any] = {"level": level, "message": message, **kwargs}
        if exception:
            log_data["exception"] = str(exception)
            log_data["exception_type"] = type(exception).__name__
        # sets and datetimes show up in batch context
        return json.dumps(log_data, default=str)

    @staticmethod
    def info(message: str, **kwargs) -> None:
        """Log info level with structured data."""
        logger.info(StructuredLogger._format("INFO", message, **kwargs))

    @staticmethod
    def error(message: str, exception: Exception = None, **kwargs) -> None:
        """Log error level with exception details."""
        logger.error(StructuredLogger._format("ERROR", message, exception, **kwargs))

    @staticmethod
    def warning(message: str, exception: Exception = None, **kwargs) -> None:
        """Log warning level with structured data."""
        logger.warning(StructuredLogger._format("WARNING", message, exception, **kwargs))

    @staticmethod
    def debug(message: str, **kwargs) -> None:
        """Log debug level with structured data."""
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(StructuredLogger._format("DEBUG", message, **kwargs))
