"""
Logging for ingest runs and route queries.

One handler is installed on the ``roadgrid`` logger; module loggers from
``get_logger`` carry no handler of their own and propagate to it, so a single
``setup_logging`` call (for example from a CLI ``--verbose`` flag) retunes the
whole package. Records are JSON in deployed environments and plain text
otherwise.
"""

import logging
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from .config import config

SERVICE_NAME = "roadgrid"


class StructuredFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that stamps service metadata on every record."""

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record.setdefault(
            "timestamp",
            datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
        )
        if not log_record.get("level"):
            log_record["level"] = record.levelname
        log_record["environment"] = config.environment
        log_record["service"] = SERVICE_NAME
        log_record["logger"] = record.name


def setup_logging(
    level: Optional[str] = None,
    enable_structured: Optional[bool] = None,
    stream=None,
) -> logging.Logger:
    """
    (Re)configure the package logger.

    Safe to call repeatedly: the previous handler is replaced, never stacked.

    Args:
        level: Log level override (defaults to LOG_LEVEL)
        enable_structured: JSON output override (defaults to ENABLE_STRUCTURED_LOGGING)
        stream: Output stream (defaults to stdout)

    Returns:
        The ``roadgrid`` logger
    """
    log_level = getattr(logging, (level or config.logging.level).upper())
    structured = (
        enable_structured
        if enable_structured is not None
        else config.logging.enable_structured_logging
    )

    package_logger = logging.getLogger(SERVICE_NAME)
    package_logger.setLevel(log_level)
    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout if stream is None else stream)
    if structured:
        handler.setFormatter(StructuredFormatter("%(level)s %(name)s %(message)s"))
    else:
        handler.setFormatter(logging.Formatter(config.logging.format_str))

    package_logger.addHandler(handler)
    package_logger.propagate = False
    return package_logger


def log_data_processing(
    stage: str,
    records_processed: int,
    records_failed: int = 0,
    duration_ms: Optional[float] = None,
    **kwargs,
) -> Dict[str, Any]:
    """
    Extra payload for an ingest stage summary.

    ``records_failed`` counts rows dropped as malformed; exclusions and cap
    rejections go in kwargs since they are expected outcomes, not failures.
    """
    total = records_processed + records_failed
    entry = {
        "event": "data_processing",
        "stage": stage,
        "records_processed": records_processed,
        "records_failed": records_failed,
        "success_rate": records_processed / total if total > 0 else 0,
    }
    if duration_ms is not None:
        entry["duration_ms"] = duration_ms
    entry.update(kwargs)
    return entry


def log_database_operation(
    operation: str,
    table: str,
    rows_affected: Optional[int] = None,
    duration_ms: Optional[float] = None,
    **kwargs,
) -> Dict[str, Any]:
    """
    Extra payload for a warehouse statement batch.

    Args:
        operation: MERGE, DELETE, INSERT, SELECT or UPDATE
        table: Target table name
        rows_affected: Rows written or removed
        duration_ms: Wall time of the batch
    """
    entry = {"event": "database_operation", "operation": operation, "table": table}
    if rows_affected is not None:
        entry["rows_affected"] = rows_affected
    if duration_ms is not None:
        entry["duration_ms"] = duration_ms
    entry.update(kwargs)
    return entry


def log_route_query(
    region_id: str,
    outcome: str,
    travel_seconds: Optional[float] = None,
    **kwargs,
) -> Dict[str, Any]:
    """Extra payload for one runtime travel query."""
    entry = {"event": "route_query", "region_id": region_id, "outcome": outcome}
    if travel_seconds is not None:
        entry["travel_seconds"] = travel_seconds
    entry.update(kwargs)
    return entry


class TimedLogger:
    """
    Logs start, completion and failure of a block with its duration.

    ``elapsed_ms`` is readable inside the block, which loaders use to fill
    LoadResult timings. Exceptions are logged and always re-raised.
    """

    def __init__(self, logger: logging.Logger, operation: str, level: int = logging.INFO, **context):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.context = context
        self._started = None

    @property
    def elapsed_ms(self) -> float:
        if self._started is None:
            return 0.0
        return (time.perf_counter() - self._started) * 1000

    def __enter__(self):
        self._started = time.perf_counter()
        self.logger.log(
            self.level,
            f"Starting {self.operation}",
            extra={"event": "operation_start", "operation": self.operation, **self.context},
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        extra = {
            "operation": self.operation,
            "duration_ms": self.elapsed_ms,
            "success": exc_type is None,
            **self.context,
        }
        if exc_type is None:
            self.logger.log(
                self.level,
                f"Completed {self.operation}",
                extra={"event": "operation_complete", **extra},
            )
        else:
            self.logger.error(
                f"Failed {self.operation}: {exc_val}",
                extra={
                    "event": "operation_failed",
                    "error_type": exc_type.__name__,
                    "error_message": str(exc_val),
                    **extra,
                },
            )
        return False


logger = setup_logging()


def get_logger(name: str) -> logging.Logger:
    """Module logger under the package namespace."""
    return logging.getLogger(f"{SERVICE_NAME}.{name}")
