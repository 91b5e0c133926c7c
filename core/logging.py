"""
Structured logging for the offer and payment engine

JSON lines in deployed environments, plain text locally. Context bound with
get_logger(..., domain="d3") or logger.with_context(offer_id=...) is carried
into every record so webhook and lifecycle traces can be joined on ids.
"""
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

from core.config import settings

# Chatty libraries held at WARNING unless asked for
QUIET_LOGGERS = ("uvicorn.access", "stripe", "urllib3")


class MarketplaceJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter stamping app and environment on each record"""

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["app"] = settings.app_name
        log_record["environment"] = settings.environment

        if record.exc_info and "exception" not in log_record:
            log_record["exception"] = self.formatException(record.exc_info)


def _build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return MarketplaceJsonFormatter("%(message)s")
    return logging.Formatter(
        "%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def setup_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Install a single stdout handler on the root logger"""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, (level or settings.log_level).upper()))

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_build_formatter(log_format or settings.log_format))
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.database_echo else logging.WARNING)


class LoggerAdapter(logging.LoggerAdapter):
    """Adapter merging bound context into the `extra` of each call"""

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        # Per-call extra wins over bound context
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs

    def with_context(self, **context) -> "LoggerAdapter":
        """Child adapter with additional bound fields"""
        return LoggerAdapter(self.logger, {**self.extra, **context})


def get_logger(name: str, **context) -> LoggerAdapter:
    """
    Get a logger with bound context

    Example:
        logger = get_logger(__name__, domain="d3")
        logger.with_context(payment_id=payment.id).info("Refund issued")
    """
    return LoggerAdapter(logging.getLogger(name), context)


setup_logging()
