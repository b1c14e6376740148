"""
Structured JSON logging for uat-seeder

Every record carries the seed environment; records logged with a batch_id
in ``extra`` keep it as a top-level field, and the text format prints it
after the level so interleaved runs stay readable on a terminal.
"""
import logging
import os
import sys
import time

from pythonjsonlogger import jsonlogger

DEFAULT_LOGGER_NAME = "uat-seeder"
NO_BATCH = "-"

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class SeedJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter for seeding runs

    Adds: timestamp, level, logger, environment and the emitting function
    """

    def __init__(self, *args, environment: str | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.environment = environment or os.getenv("SEED_ENVIRONMENT", "staging")

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["environment"] = self.environment
        log_record["function"] = f"{record.module}.{record.funcName}"


class BatchContextFilter(logging.Filter):
    """Gives every record a batch_id attribute so text formats can print it."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "batch_id"):
            record.batch_id = NO_BATCH
        return True


def setup_logger(
    name: str = DEFAULT_LOGGER_NAME,
    level: str | None = None,
    format_type: str | None = None,
    stream=None,
) -> logging.Logger:
    """
    Configure the application logger

    Module loggers obtained through get_logger() are children of this one.

    Args:
        name: Logger name
        level: Log level (defaults to env var LOG_LEVEL or INFO)
        format_type: "json" or "text" (defaults to env var LOG_FORMAT or json)
        stream: Output stream (defaults to stderr so stdout stays free for reports)

    Returns:
        Configured logger instance
    """
    log_level = LOG_LEVELS.get((level or os.getenv("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    format_type = format_type or os.getenv("LOG_FORMAT", "json")

    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(log_level)

    if format_type == "json":
        handler.setFormatter(SeedJsonFormatter(
            fmt="%(timestamp)s %(level)s %(logger)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        ))
    else:
        handler.addFilter(BatchContextFilter())
        handler.setFormatter(logging.Formatter(
            fmt="%(asctime)s %(levelname)-7s [%(batch_id)s] %(name)s - %(message)s",
            datefmt="%H:%M:%S",
        ))

    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str = DEFAULT_LOGGER_NAME) -> logging.Logger:
    """
    Get a logger instance

    Module loggers are children of the application logger, so configuring
    the application logger once (see setup_logger) covers all of them.

    Args:
        name: Logger name

    Returns:
        Logger instance
    """
    if name == DEFAULT_LOGGER_NAME or name.startswith(f"{DEFAULT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{DEFAULT_LOGGER_NAME}.{name}")


class log_operation:
    """
    Context manager for logging operation duration

    Usage:
        with log_operation("Seeding remote orders", logger=logger, batch_id="123"):
            # do work
            pass
    """

    def __init__(self, operation_name: str, logger: logging.Logger | None = None, **extra_fields):
        """
        Initialize operation logger

        Args:
            operation_name: Name of the operation
            logger: Logger instance (uses the application logger if None)
            **extra_fields: Additional fields to include in logs
        """
        self.operation_name = operation_name
        self.logger = logger or get_logger()
        self.extra_fields = extra_fields
        self.start_time: float | None = None

    def __enter__(self):
        """Start operation"""
        self.start_time = time.monotonic()
        self.logger.info(
            f"Starting: {self.operation_name}",
            extra={"operation": self.operation_name, **self.extra_fields}
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """End operation"""
        duration = time.monotonic() - self.start_time

        if exc_type is None:
            self.logger.info(
                f"Completed: {self.operation_name}",
                extra={
                    "operation": self.operation_name,
                    "duration_seconds": round(duration, 3),
                    "status": "success",
                    **self.extra_fields
                }
            )
        else:
            self.logger.error(
                f"Failed: {self.operation_name}",
                extra={
                    "operation": self.operation_name,
                    "duration_seconds": round(duration, 3),
                    "status": "error",
                    "error_type": exc_type.__name__,
                    "error_message": str(exc_val),
                    **self.extra_fields
                },
            )
        return False  # Don't suppress exceptions
