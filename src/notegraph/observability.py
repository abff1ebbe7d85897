"""Logging setup, per-operation metrics and tracing for the engine.

Engine entry points are wrapped with ``@traced``, which times each call,
feeds the process-wide ``metrics`` collector and logs START/END lines
tagged with a short correlation id. Diagnostic conditions that are not
errors (an ambiguous title, for instance) are counted as events.
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

from notegraph.config import config

logger = logging.getLogger(__name__)

NOTEGRAPH_HOME = Path.home() / ".notegraph"
DEFAULT_LOG_DIR = NOTEGRAPH_HOME / "logs"
DEFAULT_METRICS_FILE = NOTEGRAPH_HOME / "metrics.json"
LOG_FILE_NAME = "notegraph.log"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

F = TypeVar('F', bound=Callable[..., Any])

_logging_configured = False


def _has_file_handler(target: logging.Logger, log_file: Path) -> bool:
    return any(
        isinstance(h, RotatingFileHandler)
        and Path(h.baseFilename).resolve() == log_file.resolve()
        for h in target.handlers
    )


def _has_console_handler(target: logging.Logger) -> bool:
    return any(
        type(h) is logging.StreamHandler for h in target.handlers
    )


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: Optional[int] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Attach a rotating log file (and optionally stderr) to the ``notegraph`` logger.

    Calling this again with the same directory does not add a second file
    handler, so it is safe to call from every entry script.

    Args:
        log_dir: Directory for ``notegraph.log``. Defaults to ~/.notegraph/logs/
        level: Logging level. Defaults to config.log_level.
        max_bytes: Size at which the log file is rotated (default: 10 MB)
        backup_count: Number of rotated files to keep
        console: Also log to stderr

    Returns:
        The log directory.
    """
    global _logging_configured

    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / LOG_FILE_NAME
    if level is None:
        level = logging.getLevelName(config.log_level)

    package_logger = logging.getLogger("notegraph")
    package_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    handlers = []
    if not _has_file_handler(package_logger, log_file):
        handlers.append(
            RotatingFileHandler(
                log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
        )
    if console and not _has_console_handler(package_logger):
        handlers.append(logging.StreamHandler())

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)

    _logging_configured = True
    package_logger.info(
        f"Logging to {log_file} (rotate at {max_bytes} bytes, keep {backup_count})"
    )
    return log_path


def is_logging_configured() -> bool:
    """True once configure_logging() has run in this process."""
    return _logging_configured


@dataclass
class OperationMetrics:
    """Running totals for one operation name."""
    count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: Optional[float] = None
    max_duration_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None

    def add(self, duration_ms: float, error: Optional[str]) -> None:
        self.count += 1
        self.total_duration_ms += duration_ms
        if self.min_duration_ms is None or duration_ms < self.min_duration_ms:
            self.min_duration_ms = duration_ms
        self.max_duration_ms = max(self.max_duration_ms, duration_ms)
        if error is None:
            self.success_count += 1
        else:
            self.error_count += 1
            self.last_error = error
            self.last_error_time = datetime.now(timezone.utc)

    def snapshot(self) -> Dict[str, Any]:
        return {
            'count': self.count,
            'success_count': self.success_count,
            'error_count': self.error_count,
            'success_rate': self.success_count / self.count if self.count else 0,
            'avg_duration_ms': round(self.total_duration_ms / self.count, 2) if self.count else 0,
            'min_duration_ms': round(self.min_duration_ms or 0, 2),
            'max_duration_ms': round(self.max_duration_ms, 2),
            'last_error': self.last_error,
            'last_error_time': self.last_error_time.isoformat() if self.last_error_time else None,
        }

    def to_json(self) -> Dict[str, Any]:
        data = {k: v for k, v in self.__dict__.items() if k != 'last_error_time'}
        data['last_error_time'] = self.last_error_time.isoformat() if self.last_error_time else None
        return data

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "OperationMetrics":
        fields = dict(data)
        stamp = fields.pop('last_error_time', None)
        m = cls(**{k: v for k, v in fields.items() if k in cls.__dataclass_fields__})
        m.last_error_time = datetime.fromisoformat(stamp) if stamp else None
        return m


class MetricsCollector:
    """Thread-safe counters and timings for engine operations.

    Operations (content_committed, note_deleted, ...) get timing and
    success/error totals; events (ambiguous_title, ...) are plain counters.
    Nothing touches disk unless a metrics file is given or save_metrics()
    is called.
    """

    def __init__(
        self,
        metrics_file: Optional[Union[str, Path]] = None,
        auto_save_interval: int = 0,
    ):
        """Initialize the collector.

        Args:
            metrics_file: JSON file to load from and save to. Defaults to
                ~/.notegraph/metrics.json, which is only read when passed explicitly.
            auto_save_interval: Save every N recorded operations (0 disables)
        """
        self._lock = Lock()
        self._operations: Dict[str, OperationMetrics] = defaultdict(OperationMetrics)
        self._events: Dict[str, int] = defaultdict(int)
        self._start_time = datetime.now(timezone.utc)
        self._metrics_file = Path(metrics_file) if metrics_file else DEFAULT_METRICS_FILE
        self._auto_save_interval = auto_save_interval
        self._unsaved = 0

        if metrics_file is not None:
            self._load()

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None
    ) -> None:
        """Add one call of ``operation`` to the totals."""
        with self._lock:
            self._operations[operation].add(
                duration_ms, None if success else (error or "unknown error")
            )
            self._unsaved += 1
            if self._auto_save_interval and self._unsaved >= self._auto_save_interval:
                self._save_unlocked()

    def record_event(self, event: str, count: int = 1) -> None:
        """Increment a diagnostic event counter."""
        with self._lock:
            self._events[event] += count

    def get_event_count(self, event: str) -> int:
        with self._lock:
            return self._events.get(event, 0)

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Per-operation snapshot, keyed by operation name."""
        with self._lock:
            return {op: m.snapshot() for op, m in self._operations.items()}

    def get_summary(self) -> Dict[str, Any]:
        """Totals across all operations, plus event counters."""
        with self._lock:
            ops = self._operations.values()
            total = sum(m.count for m in ops)
            succeeded = sum(m.success_count for m in ops)
            return {
                'uptime_seconds': (datetime.now(timezone.utc) - self._start_time).total_seconds(),
                'total_operations': total,
                'total_success': succeeded,
                'total_errors': sum(m.error_count for m in ops),
                'overall_success_rate': succeeded / total if total else 1.0,
                'operations_tracked': list(self._operations),
                'events': dict(self._events),
            }

    def reset(self) -> None:
        """Drop every total and counter (used by tests)."""
        with self._lock:
            self._operations.clear()
            self._events.clear()
            self._start_time = datetime.now(timezone.utc)
            self._unsaved = 0

    def _load(self) -> bool:
        if not self._metrics_file.exists():
            return False
        try:
            data = json.loads(self._metrics_file.read_text(encoding="utf-8"))
            start = data.get("start_time")
            if start:
                self._start_time = datetime.fromisoformat(start)
            for op, op_data in data.get("operations", {}).items():
                self._operations[op] = OperationMetrics.from_json(op_data)
            self._events.update(data.get("events", {}))
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring unreadable metrics file {self._metrics_file}: {e}")
            self._operations.clear()
            self._events.clear()
            return False
        logger.debug(f"Loaded metrics from {self._metrics_file}")
        return True

    def _save_unlocked(self) -> bool:
        data = {
            "start_time": self._start_time.isoformat(),
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "operations": {op: m.to_json() for op, m in self._operations.items()},
            "events": dict(self._events),
        }
        try:
            self._metrics_file.parent.mkdir(parents=True, exist_ok=True)
            # Write to a sibling file and swap it in
            temp_file = self._metrics_file.with_suffix(".tmp")
            temp_file.write_text(json.dumps(data, indent=2), encoding="utf-8")
            temp_file.replace(self._metrics_file)
        except OSError as e:
            logger.error(f"Failed to save metrics to {self._metrics_file}: {e}")
            return False
        self._unsaved = 0
        return True

    def save_metrics(self) -> bool:
        """Write the current totals to the metrics file."""
        with self._lock:
            return self._save_unlocked()

    def get_metrics_file(self) -> Path:
        return self._metrics_file


metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context):
    """Time a block, record it in ``metrics`` and log START/END at DEBUG.

    The yielded dict carries the correlation id; anything else put into
    it is appended to the END line.

    Example:
        with timed_operation('content_committed', note_id=note_id) as op:
            script = differ.diff(...)
            op['edits'] = script.size
    """
    correlation_id = uuid.uuid4().hex[:8]
    info: Dict[str, Any] = {'correlation_id': correlation_id}
    context_str = ', '.join(f'{k}={v}' for k, v in context.items())
    logger.debug(f"[{correlation_id}] START {operation} ({context_str})")

    started = time.perf_counter()
    error: Optional[str] = None
    try:
        yield info
    except Exception as e:
        error = str(e)
        raise
    finally:
        duration_ms = (time.perf_counter() - started) * 1000
        metrics.record_operation(operation, duration_ms, error is None, error)
        extra = ', '.join(f'{k}={v}' for k, v in info.items() if k != 'correlation_id')
        status = 'OK' if error is None else f'ERROR: {error}'
        logger.debug(
            f"[{correlation_id}] END {operation} ({duration_ms:.2f}ms) [{status}] {extra}"
        )


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Run a method inside timed_operation().

    The note id is taken from a ``note_id`` keyword or from the first
    positional argument after ``self`` when it is a string.

    Example:
        @traced('note_deleted')
        def on_note_deleted(self, note_id: str) -> bool:
            ...
    """
    def decorator(func: F) -> F:
        op_name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            context = {}
            if 'note_id' in kwargs:
                context['note_id'] = kwargs['note_id']
            elif len(args) > 1 and isinstance(args[1], str):
                context['note_id'] = args[1]

            with timed_operation(op_name, **context) as op:
                result = func(*args, **kwargs)
                if hasattr(result, '__len__'):
                    op['result_count'] = len(result)
                elif result is not None:
                    op['result'] = result if isinstance(result, (bool, int)) else type(result).__name__
                return result

        return wrapper  # type: ignore
    return decorator
