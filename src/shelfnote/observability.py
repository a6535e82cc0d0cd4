"""Observability utilities for the Shelfnote content store.

Provides rotating file logging, per-operation timing metrics and a tracing
decorator for service methods.
"""
import functools
import json
import logging
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

# Root of every module logger in the package
LOGGER_NAME = "shelfnote"

# Logging format with ISO 8601 timestamps
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Ids picked out of keyword arguments for trace logs
TRACE_CONTEXT_KEYS = ("folder_id", "note_id", "tag_id", "mark_id")

F = TypeVar('F', bound=Callable[..., Any])

_logging_configured = False


def configure_logging(
    log_dir: Union[str, Path],
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB per file
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Configure persistent file logging with rotation.

    Attaches a rotating file handler (and optionally a console handler) to
    the ``shelfnote`` logger, so every ``logging.getLogger(__name__)`` in the
    package writes to it. Calling it again does not duplicate handlers.

    Args:
        log_dir: Directory for log files, created if missing.
        level: Logging level.
        max_bytes: Maximum size per log file before rotation.
        backup_count: Number of rotated files to keep.
        console: Also log to stderr.

    Returns:
        Path to the log directory.
    """
    global _logging_configured

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / "shelfnote.log"

    root_logger = logging.getLogger(LOGGER_NAME)
    root_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    if not any(
        isinstance(h, RotatingFileHandler) and Path(h.baseFilename) == log_file.resolve()
        for h in root_logger.handlers
    ):
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    if console and not any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
        for h in root_logger.handlers
    ):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    for handler in root_logger.handlers:
        handler.setLevel(level)

    _logging_configured = True
    root_logger.info(f"Logging configured: {log_file} (max {max_bytes} bytes, {backup_count} backups)")
    return log_path


def is_logging_configured() -> bool:
    """Check if file logging has been configured."""
    return _logging_configured


@dataclass
class OperationMetrics:
    """Metrics for a single operation type."""
    count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: float = float('inf')
    max_duration_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None


class MetricsCollector:
    """Thread-safe timing and failure counts per operation.

    Operations are keyed by name (``create_note``, ``move_folder``...).
    Counters live in memory; ``save_metrics`` writes a JSON snapshot when a
    metrics file is configured.
    """

    def __init__(self, metrics_file: Optional[Union[str, Path]] = None):
        self._metrics: Dict[str, OperationMetrics] = defaultdict(OperationMetrics)
        self._lock = Lock()
        self._start_time = datetime.now(timezone.utc)
        self._metrics_file = Path(metrics_file) if metrics_file else None

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None
    ) -> None:
        """Record one run of an operation."""
        with self._lock:
            m = self._metrics[operation]
            m.count += 1
            m.total_duration_ms += duration_ms
            m.min_duration_ms = min(m.min_duration_ms, duration_ms)
            m.max_duration_ms = max(m.max_duration_ms, duration_ms)

            if success:
                m.success_count += 1
            else:
                m.error_count += 1
                m.last_error = error
                m.last_error_time = datetime.now(timezone.utc)

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Get a snapshot of all metrics, keyed by operation name."""
        with self._lock:
            return {op: self._snapshot(m) for op, m in self._metrics.items()}

    def get_summary(self) -> Dict[str, Any]:
        """Get aggregate counts across every operation."""
        with self._lock:
            total_ops = sum(m.count for m in self._metrics.values())
            total_success = sum(m.success_count for m in self._metrics.values())
            total_errors = sum(m.error_count for m in self._metrics.values())

            return {
                'uptime_seconds': (datetime.now(timezone.utc) - self._start_time).total_seconds(),
                'total_operations': total_ops,
                'total_success': total_success,
                'total_errors': total_errors,
                'overall_success_rate': total_success / total_ops if total_ops > 0 else 1.0,
                'operations_tracked': sorted(self._metrics.keys())
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._metrics.clear()
            self._start_time = datetime.now(timezone.utc)

    def set_metrics_file(self, metrics_file: Optional[Union[str, Path]]) -> None:
        """Point persistence at a file, or disable it with None."""
        with self._lock:
            self._metrics_file = Path(metrics_file) if metrics_file else None

    def save_metrics(self) -> bool:
        """Write the current snapshot to the metrics file.

        Returns:
            True if saved, False when no file is configured or writing failed.
        """
        with self._lock:
            if self._metrics_file is None:
                return False
            data = {
                "start_time": self._start_time.isoformat(),
                "saved_at": datetime.now(timezone.utc).isoformat(),
                "operations": {op: self._snapshot(m) for op, m in self._metrics.items()},
            }
            try:
                self._metrics_file.parent.mkdir(parents=True, exist_ok=True)
                # Atomic write via temp file
                temp_file = self._metrics_file.with_suffix(".tmp")
                with open(temp_file, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                temp_file.replace(self._metrics_file)
                return True
            except OSError as e:
                logger.error(f"Failed to save metrics to {self._metrics_file}: {e}")
                return False

    @staticmethod
    def _snapshot(m: OperationMetrics) -> Dict[str, Any]:
        avg_duration = m.total_duration_ms / m.count if m.count > 0 else 0
        min_dur = m.min_duration_ms if m.min_duration_ms != float('inf') else 0
        return {
            'count': m.count,
            'success_count': m.success_count,
            'error_count': m.error_count,
            'success_rate': m.success_count / m.count if m.count > 0 else 0,
            'avg_duration_ms': round(avg_duration, 2),
            'min_duration_ms': round(min_dur, 2),
            'max_duration_ms': round(m.max_duration_ms, 2),
            'last_error': m.last_error,
            'last_error_time': m.last_error_time.isoformat() if m.last_error_time else None
        }


# Global metrics collector instance
metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context):
    """Time a block, record it in ``metrics`` and log start and end.

    Args:
        operation: Name of the operation being performed
        **context: Additional context to include in log messages

    Yields:
        A dictionary where you can store result info (e.g., result_count)

    Example:
        with timed_operation('list_notes', folder_id=folder_id) as op:
            notes = service.list_notes(folder_id=folder_id)
            op['result_count'] = len(notes)
    """
    correlation_id = str(uuid.uuid4())[:8]
    start_time = time.perf_counter()
    result_info: Dict[str, Any] = {'correlation_id': correlation_id}

    context_str = ', '.join(f'{k}={v}' for k, v in context.items())
    logger.debug(f"[{correlation_id}] START {operation} ({context_str})")

    error_msg = None
    success = True

    try:
        yield result_info
    except Exception as e:
        success = False
        error_msg = str(e)
        raise
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000
        metrics.record_operation(operation, duration_ms, success, error_msg)

        result_str = ', '.join(f'{k}={v}' for k, v in result_info.items() if k != 'correlation_id')
        status = 'OK' if success else f'ERROR: {error_msg}'
        logger.debug(
            f"[{correlation_id}] END {operation} "
            f"({duration_ms:.2f}ms) [{status}] {result_str}"
        )


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Decorator that runs a function inside ``timed_operation``.

    Entity ids passed as keyword arguments are added to the log context.

    Args:
        operation_name: Name to use for the operation. If None, uses function name.

    Example:
        @traced('create_folder')
        def create_folder(self, name: str, parent_id: Optional[str] = None) -> Folder:
            ...
    """
    def decorator(func: F) -> F:
        op_name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            context = {k: kwargs[k] for k in TRACE_CONTEXT_KEYS if k in kwargs}

            with timed_operation(op_name, **context) as op:
                result = func(*args, **kwargs)
                if isinstance(result, (list, tuple)):
                    op['result_count'] = len(result)
                elif result is not None:
                    op['has_result'] = True
                return result

        return wrapper  # type: ignore
    return decorator
