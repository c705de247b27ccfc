"""Observability utilities: context-aware logging and ingestion metrics."""

import threading
import uuid
from collections import Counter
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from .logging_config import get_logger


class LogLevel(Enum):
    """Log levels for structured logging."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class LogContext:
    """Immutable context attached to log lines of one ingestion or lookup.

    ``correlation_id`` ties together every line of a single request;
    ``image_id`` is set once an image has been assigned an identifier.
    """

    correlation_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    operation: str = ""
    component: str = ""
    image_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def with_operation(self, operation: str) -> "LogContext":
        return replace(self, operation=operation, metadata=dict(self.metadata))

    def with_image_id(self, image_id: str) -> "LogContext":
        return replace(self, image_id=image_id, metadata=dict(self.metadata))

    def with_metadata(self, **kwargs) -> "LogContext":
        return replace(self, metadata={**self.metadata, **kwargs})

    def prefix(self) -> str:
        """Bracketed prefix identifying the request, e.g. ``[ingest_file] [ab12] [image=...]``."""
        parts = []
        if self.operation:
            parts.append(f"[{self.operation}]")
        parts.append(f"[{self.correlation_id}]")
        if self.image_id:
            parts.append(f"[image={self.image_id}]")
        return " ".join(parts)


class StructuredLogger:
    """Logger wrapper rendering a LogContext and keyword fields into each line."""

    def __init__(self, name: str, level: Optional[int] = None):
        self._logger = get_logger(name)
        if level is not None:
            self._logger.setLevel(level)

    @property
    def name(self) -> str:
        return self._logger.name

    def _log(
        self,
        level: LogLevel,
        message: str,
        context: Optional[LogContext] = None,
        exc_info: bool = False,
        **kwargs,
    ):
        fields = dict(context.metadata) if context else {}
        fields.update(kwargs)

        line = f"{context.prefix()} {message}" if context else message
        if fields:
            line = f"{line} ({', '.join(f'{k}={v}' for k, v in fields.items())})"

        getattr(self._logger, level.value.lower())(line, exc_info=exc_info)

    def debug(self, message: str, context: Optional[LogContext] = None, **kwargs):
        self._log(LogLevel.DEBUG, message, context, **kwargs)

    def info(self, message: str, context: Optional[LogContext] = None, **kwargs):
        self._log(LogLevel.INFO, message, context, **kwargs)

    def warning(self, message: str, context: Optional[LogContext] = None, **kwargs):
        self._log(LogLevel.WARNING, message, context, **kwargs)

    def error(self, message: str, context: Optional[LogContext] = None, **kwargs):
        self._log(LogLevel.ERROR, message, context, **kwargs)

    def critical(self, message: str, context: Optional[LogContext] = None, **kwargs):
        self._log(LogLevel.CRITICAL, message, context, **kwargs)


@dataclass
class PerformanceMetrics:
    """Timing and outcome of one ingested file."""

    operation: str
    start_time: float
    end_time: float
    success: bool
    error_kind: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration(self) -> float:
        """Operation duration in seconds."""
        return self.end_time - self.start_time


class MetricsCollector:
    """Thread-safe collector; the threaded batch processor records from workers."""

    def __init__(self):
        self._metrics: List[PerformanceMetrics] = []
        self._lock = threading.Lock()

    def record_metric(self, metric: PerformanceMetrics):
        with self._lock:
            self._metrics.append(metric)

    def get_metrics(self, operation: Optional[str] = None) -> List[PerformanceMetrics]:
        """Get recorded metrics, optionally filtered by operation."""
        with self._lock:
            metrics = list(self._metrics)
        if operation:
            return [m for m in metrics if m.operation == operation]
        return metrics

    def get_summary(self, operation: Optional[str] = None) -> Dict[str, Any]:
        """
        Summarize recorded metrics.

        Returns:
            Counts, success rate, duration statistics and the number of
            failures per error kind; an empty dict when nothing was recorded
        """
        metrics = self.get_metrics(operation)
        if not metrics:
            return {}

        durations = [m.duration for m in metrics]
        failed = [m for m in metrics if not m.success]

        return {
            "total_operations": len(metrics),
            "successful_operations": len(metrics) - len(failed),
            "failed_operations": len(failed),
            "success_rate": (len(metrics) - len(failed)) / len(metrics),
            "avg_duration": sum(durations) / len(durations),
            "min_duration": min(durations),
            "max_duration": max(durations),
            "errors_by_kind": dict(Counter(m.error_kind or "unknown" for m in failed)),
        }

    def clear_metrics(self):
        with self._lock:
            self._metrics.clear()
