"""Performance logging for DBPulse monitoring calls.

Every contract method is wrapped in ``PerformanceLogger.measure`` so that
operators can see how long each catalog round trip takes per engine, and
which calls fail.

Classes:
    TimingMetrics: A single timing measurement
    OperationMetrics: Aggregated timings for one operation
    TimingContext: Context manager measuring one operation
    PerformanceLogger: Main performance logging interface

Example:
    >>> perf_logger = PerformanceLogger("monitor.postgresql")
    >>> with perf_logger.measure("get_top_queries", limit=20) as timer:
    ...     metrics = await monitor.get_top_queries(20)
    >>> timer.duration_ms
    12.7
"""

import statistics
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, List, Optional

from .structured import StructuredLogger
from ..core.utils import FormatUtils


@dataclass
class TimingMetrics:
    """Metrics for a single timing measurement.

    Attributes:
        operation: Operation name
        start_time: ``perf_counter`` value at start
        end_time: ``perf_counter`` value at end
        duration: Duration in seconds
        metadata: Additional metadata
        success: Whether operation succeeded
        error: Error type name if failed
    """
    operation: str
    start_time: float
    end_time: Optional[float] = None
    duration: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    success: bool = True
    error: Optional[str] = None

    def complete(self, success: bool = True, error: Optional[str] = None) -> None:
        """Mark timing as complete."""
        self.end_time = time.perf_counter()
        self.duration = self.end_time - self.start_time
        self.success = success
        self.error = error

    @property
    def duration_ms(self) -> Optional[float]:
        return self.duration * 1000 if self.duration is not None else None

    @property
    def is_complete(self) -> bool:
        return self.end_time is not None


@dataclass
class OperationMetrics:
    """Aggregated performance metrics for an operation."""
    operation: str
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    total_duration: float = 0.0
    min_duration: Optional[float] = None
    max_duration: Optional[float] = None
    errors: Dict[str, int] = field(default_factory=dict)
    _durations: List[float] = field(default_factory=list, repr=False)

    def add_timing(self, timing: TimingMetrics) -> None:
        """Fold a completed timing into the aggregate."""
        if not timing.is_complete or timing.duration is None:
            return

        self.total_calls += 1
        if timing.success:
            self.successful_calls += 1
        else:
            self.failed_calls += 1
            key = timing.error or "unknown"
            self.errors[key] = self.errors.get(key, 0) + 1

        duration = timing.duration
        self.total_duration += duration
        self._durations.append(duration)

        if self.min_duration is None or duration < self.min_duration:
            self.min_duration = duration
        if self.max_duration is None or duration > self.max_duration:
            self.max_duration = duration

    @property
    def avg_duration(self) -> Optional[float]:
        return statistics.mean(self._durations) if self._durations else None

    @property
    def median_duration(self) -> Optional[float]:
        return statistics.median(self._durations) if self._durations else None

    @property
    def success_rate(self) -> float:
        """Success rate as a percentage (0-100)."""
        if self.total_calls == 0:
            return 0.0
        return (self.successful_calls / self.total_calls) * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            'operation': self.operation,
            'total_calls': self.total_calls,
            'successful_calls': self.successful_calls,
            'failed_calls': self.failed_calls,
            'success_rate': self.success_rate,
            'total_duration': self.total_duration,
            'min_duration': self.min_duration,
            'max_duration': self.max_duration,
            'avg_duration': self.avg_duration,
            'median_duration': self.median_duration,
            'errors': dict(self.errors),
        }


class TimingContext:
    """Context manager measuring one operation.

    Failures are logged at warning level with the exception type only;
    the exception itself propagates unchanged.
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[StructuredLogger] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.operation = operation
        self.logger = logger
        self.metadata = metadata or {}
        self._timing: Optional[TimingMetrics] = None

    @property
    def timing(self) -> Optional[TimingMetrics]:
        return self._timing

    @property
    def duration(self) -> Optional[float]:
        return self._timing.duration if self._timing else None

    @property
    def duration_ms(self) -> Optional[float]:
        return self._timing.duration_ms if self._timing else None

    def __enter__(self) -> 'TimingContext':
        self._timing = TimingMetrics(
            operation=self.operation,
            start_time=time.perf_counter(),
            metadata=self.metadata,
        )
        if self.logger:
            self.logger.debug("Operation started", operation=self.operation, **self.metadata)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._timing is None:
            return

        success = exc_type is None
        error = exc_type.__name__ if exc_type else None
        self._timing.complete(success=success, error=error)

        if not self.logger:
            return

        if success:
            self.logger.info(
                "Operation completed",
                operation=self.operation,
                duration_ms=self._timing.duration_ms,
                **self.metadata
            )
        else:
            self.logger.warning(
                "Operation failed",
                operation=self.operation,
                duration_ms=self._timing.duration_ms,
                error_type=error,
                **self.metadata
            )


class PerformanceLogger:
    """Performance logger for monitoring calls.

    Attributes:
        name: Logger name
        logger: Underlying structured logger
    """

    def __init__(
        self,
        name: str,
        *,
        auto_log: bool = True,
        track_metrics: bool = True,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        """Initialize performance logger.

        Args:
            name: Logger name
            auto_log: Whether to log each timing
            track_metrics: Whether to keep aggregated metrics
            logger: Custom structured logger instance
        """
        self.name = name
        self.auto_log = auto_log
        self.track_metrics = track_metrics
        self.logger = logger or StructuredLogger(f"perf.{name}")
        self._metrics: Dict[str, OperationMetrics] = {}

    @contextmanager
    def measure(self, operation: str, **metadata: Any) -> Generator[TimingContext, None, None]:
        """Measure the enclosed block.

        Example:
            >>> with perf_logger.measure("get_running_queries") as timer:
            ...     running = await monitor.get_running_queries()
        """
        timing_context = TimingContext(
            operation=operation,
            logger=self.logger if self.auto_log else None,
            metadata=metadata,
        )

        try:
            with timing_context as ctx:
                yield ctx
        finally:
            if self.track_metrics and timing_context.timing:
                self._add_timing(timing_context.timing)

    def _add_timing(self, timing: TimingMetrics) -> None:
        metrics = self._metrics.get(timing.operation)
        if metrics is None:
            metrics = self._metrics[timing.operation] = OperationMetrics(operation=timing.operation)
        metrics.add_timing(timing)

    def get_metrics(self, operation: str) -> OperationMetrics:
        """Get aggregated metrics for one operation (empty if never measured)."""
        return self._metrics.get(operation, OperationMetrics(operation=operation))

    def reset_metrics(self, operation: Optional[str] = None) -> None:
        """Reset aggregated metrics for one operation or all of them."""
        if operation:
            self._metrics.pop(operation, None)
        else:
            self._metrics.clear()

    def get_summary(self) -> Dict[str, Any]:
        """Summarize all measured operations."""
        total_calls = sum(m.total_calls for m in self._metrics.values())
        total_successful = sum(m.successful_calls for m in self._metrics.values())
        total_duration = sum(m.total_duration for m in self._metrics.values())

        return {
            "total_operations": len(self._metrics),
            "total_calls": total_calls,
            "total_duration": total_duration,
            "total_duration_formatted": FormatUtils.format_duration(total_duration),
            "overall_success_rate": (total_successful / total_calls * 100) if total_calls else 0.0,
            "operations": {name: m.to_dict() for name, m in self._metrics.items()},
        }

    def __repr__(self) -> str:
        return (
            f"PerformanceLogger("
            f"name={self.name!r}, "
            f"operations={len(self._metrics)}, "
            f"auto_log={self.auto_log})"
        )
