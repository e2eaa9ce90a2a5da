"""Observability utilities for the note storage engine.

Provides rotating disk logs, per-operation timing, and a breakdown of
failures by error kind so capacity rejections and corruption reports
can be told apart from ordinary validation errors.
"""
import functools
import json
import logging
import re
import time
import uuid
from collections import Counter, defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = Path.home() / ".notestore" / "logs"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

_MAX_ERROR_LENGTH = 200

# Kind recorded for exceptions that are not NoteStoreError
UNCLASSIFIED_KIND = "unclassified"

F = TypeVar('F', bound=Callable[..., Any])


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Attach a rotating ``notestore.log`` handler to the notestore loggers.

    Args:
        log_dir: Directory for log files. Defaults to ~/.notestore/logs/
        level: Logging level for the notestore hierarchy
        max_bytes: Size at which the log file rotates
        backup_count: Number of rotated files to keep
        console: Also log to stderr

    Returns:
        Path to the log directory
    """
    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)

    store_logger = logging.getLogger("notestore")
    store_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    log_file = log_path / "notestore.log"
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    store_logger.addHandler(file_handler)

    if console and not any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
        for h in store_logger.handlers
    ):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        store_logger.addHandler(console_handler)

    store_logger.info(f"Logging to {log_file} (rotate at {max_bytes} bytes, keep {backup_count})")
    return log_path


def _sanitize_error_message(message: Optional[str]) -> Optional[str]:
    """Make an error message safe to keep in metrics.

    Replaces the home directory with ``~``, flattens newlines and truncates.
    """
    if message is None:
        return None
    sanitized = message.replace(str(Path.home()), "~")
    sanitized = re.sub(r"[\r\n]+", " ", sanitized)
    if len(sanitized) > _MAX_ERROR_LENGTH:
        sanitized = sanitized[: _MAX_ERROR_LENGTH - 3] + "..."
    return sanitized


def error_kind_of(exc: BaseException) -> str:
    """Return the ``ErrorKind`` value of an engine error, else ``unclassified``."""
    kind = getattr(exc, "kind", None)
    return getattr(kind, "value", UNCLASSIFIED_KIND)


@dataclass
class OperationMetrics:
    count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: float = float('inf')
    max_duration_ms: float = 0.0
    errors_by_kind: Counter = field(default_factory=Counter)
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None


class MetricsCollector:
    """Thread-safe per-operation counters for engine calls."""

    def __init__(self, metrics_file: Optional[Union[str, Path]] = None):
        self._metrics: Dict[str, OperationMetrics] = defaultdict(OperationMetrics)
        self._lock = Lock()
        self._start_time = datetime.now(timezone.utc)
        self.metrics_file = Path(metrics_file) if metrics_file else None

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None,
        error_kind: str = UNCLASSIFIED_KIND,
    ) -> None:
        """Record one call of ``operation``.

        Args:
            operation: The operation name (e.g. 'create_note', 'search_title')
            duration_ms: Duration in milliseconds
            success: Whether the operation succeeded
            error: Error message if the operation failed
            error_kind: ``ErrorKind`` value of the failure
        """
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
                m.errors_by_kind[error_kind] += 1
                m.last_error = _sanitize_error_message(error)
                m.last_error_time = datetime.now(timezone.utc)

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot of every operation's counters."""
        with self._lock:
            result = {}
            for op, m in self._metrics.items():
                avg_duration = m.total_duration_ms / m.count if m.count > 0 else 0
                min_dur = m.min_duration_ms if m.min_duration_ms != float('inf') else 0
                result[op] = {
                    'count': m.count,
                    'success_count': m.success_count,
                    'error_count': m.error_count,
                    'errors_by_kind': dict(m.errors_by_kind),
                    'avg_duration_ms': round(avg_duration, 2),
                    'min_duration_ms': round(min_dur, 2),
                    'max_duration_ms': round(m.max_duration_ms, 2),
                    'last_error': m.last_error,
                    'last_error_time': m.last_error_time.isoformat() if m.last_error_time else None
                }
            return result

    def get_summary(self) -> Dict[str, Any]:
        """Totals across operations, with failures grouped by error kind."""
        with self._lock:
            errors_by_kind: Counter = Counter()
            for m in self._metrics.values():
                errors_by_kind.update(m.errors_by_kind)
            return {
                'uptime_seconds': (datetime.now(timezone.utc) - self._start_time).total_seconds(),
                'total_operations': sum(m.count for m in self._metrics.values()),
                'total_errors': sum(m.error_count for m in self._metrics.values()),
                'errors_by_kind': dict(errors_by_kind),
                'capacity_rejections': errors_by_kind.get('capacity_exceeded', 0),
                'operations_tracked': sorted(self._metrics.keys()),
            }

    def reset(self) -> None:
        with self._lock:
            self._metrics.clear()
            self._start_time = datetime.now(timezone.utc)

    def save_metrics(self) -> bool:
        """Write metrics to ``metrics_file`` through a temp file.

        Returns:
            True if saved, False if no file is set or the write failed.
        """
        if self.metrics_file is None:
            return False
        data = {
            "start_time": self._start_time.isoformat(),
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "summary": self.get_summary(),
            "operations": self.get_metrics(),
        }
        try:
            self.metrics_file.parent.mkdir(parents=True, exist_ok=True)
            temp_file = self.metrics_file.with_suffix(".tmp")
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            temp_file.replace(self.metrics_file)
            return True
        except (OSError, TypeError) as e:
            logger.error(f"Failed to save metrics to {self.metrics_file}: {e}")
            return False


metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context):
    """Time a block, log START/END at DEBUG and record it in ``metrics``.

    Yields a dict the block may fill with result details, e.g.
    ``op['result_count'] = len(notes)``.
    """
    correlation_id = str(uuid.uuid4())[:8]
    start_time = time.perf_counter()
    result_info: Dict[str, Any] = {'correlation_id': correlation_id}

    context_str = ', '.join(f'{k}={v}' for k, v in context.items())
    logger.debug(f"[{correlation_id}] START {operation} ({context_str})")

    error_msg = None
    error_kind = UNCLASSIFIED_KIND
    success = True

    try:
        yield result_info
    except Exception as e:
        success = False
        error_msg = str(e)
        error_kind = error_kind_of(e)
        raise
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000
        metrics.record_operation(operation, duration_ms, success, error_msg, error_kind)

        result_str = ', '.join(f'{k}={v}' for k, v in result_info.items() if k != 'correlation_id')
        status = 'OK' if success else f'{error_kind.upper()}: {error_msg}'
        logger.debug(
            f"[{correlation_id}] END {operation} "
            f"({duration_ms:.2f}ms) [{status}] {result_str}"
        )


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Run a service method inside ``timed_operation``.

    The note ID (keyword ``note_id`` or the first string argument) is
    logged as context, and list or dict results record their length.
    """
    def decorator(func: F) -> F:
        op_name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            context = {}
            if 'note_id' in kwargs:
                context['note_id'] = kwargs['note_id']
            elif args[1:] and isinstance(args[1], str):
                context['arg'] = args[1][:50]

            with timed_operation(op_name, **context) as op:
                result = func(*args, **kwargs)
                if isinstance(result, (list, tuple, dict)):
                    op['result_count'] = len(result)
                elif result is not None:
                    op['has_result'] = True
                return result

        return wrapper  # type: ignore
    return decorator
