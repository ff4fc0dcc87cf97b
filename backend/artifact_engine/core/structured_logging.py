"""Structured logging configuration using structlog."""
import structlog
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from artifact_engine.core.metrics import MetricsCollector


def configure_structlog(log_level: str = "INFO") -> None:
    """
    Configure structlog for structured logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = None) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        structlog.BoundLogger instance
    """
    return structlog.get_logger(name)


class ArtifactOperationLogger:
    """Context manager for logging one artifact lifecycle operation with duration.

    Works in both ``with`` and ``async with`` blocks. On exit it records the
    operation outcome in Prometheus as well.
    """

    def __init__(
        self,
        logger: structlog.BoundLogger,
        operation: str,
        kind: str,
        artifact_id: Optional[str] = None,
        **context
    ):
        """
        Initialize operation logger.

        Args:
            logger: Structured logger instance
            operation: Lifecycle operation name (create, inject, update, fix)
            kind: Artifact kind (text, sheet, code, diagram)
            artifact_id: Artifact identifier, when already known
            **context: Additional context to include in logs
        """
        self.logger = logger
        self.operation = operation
        self.kind = kind
        self.artifact_id = artifact_id
        self.context = context
        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None
        self.duration: Optional[float] = None
        self.status: str = "started"

    def __enter__(self):
        self.start_time = datetime.now(timezone.utc)
        self.logger.info(
            "artifact_operation_started",
            operation=self.operation,
            kind=self.kind,
            artifact_id=self.artifact_id,
            timestamp=self.start_time.isoformat(),
            **self.context
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.end_time = datetime.now(timezone.utc)
        self.status = "completed" if exc_type is None else "failed"
        if self.start_time:
            self.duration = (self.end_time - self.start_time).total_seconds()

        self.logger.info(
            "artifact_operation_completed",
            operation=self.operation,
            kind=self.kind,
            artifact_id=self.artifact_id,
            status=self.status,
            duration_seconds=self.duration,
            timestamp=self.end_time.isoformat(),
            **self.context
        )

        if exc_type is not None:
            self.logger.error(
                "artifact_operation_error",
                operation=self.operation,
                kind=self.kind,
                artifact_id=self.artifact_id,
                error_type=exc_type.__name__,
                error_message=str(exc_val),
                duration_seconds=self.duration,
                timestamp=self.end_time.isoformat(),
                **self.context
            )

        MetricsCollector.record_operation(
            operation=self.operation,
            kind=self.kind,
            status=self.status,
            duration=self.duration or 0.0
        )
        return False  # Don't suppress exceptions

    async def __aenter__(self):
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return self.__exit__(exc_type, exc_val, exc_tb)

    def add_context(self, **kwargs) -> None:
        """Add additional context to the log."""
        self.context.update(kwargs)
