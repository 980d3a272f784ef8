import functools
import logging
import threading
import time
from typing import Dict, Optional

from orderflow.core import config

logger = logging.getLogger(__name__)


class PerformanceMetrics:
    """Execution time statistics per operation, safe to share between threads"""

    def __init__(self):
        self._lock = threading.Lock()
        self._stats: Dict[str, dict] = {}

    def record(self, operation: str, elapsed_ms: float, outcome: str = "ok") -> None:
        with self._lock:
            stats = self._stats.setdefault(
                operation,
                {"calls": 0, "failures": 0, "total_ms": 0.0, "max_ms": 0.0, "outcomes": {}},
            )
            stats["calls"] += 1
            stats["total_ms"] += elapsed_ms
            stats["max_ms"] = max(stats["max_ms"], elapsed_ms)
            if outcome != "ok":
                stats["failures"] += 1
            stats["outcomes"][outcome] = stats["outcomes"].get(outcome, 0) + 1

    def snapshot(self) -> Dict[str, dict]:
        with self._lock:
            return {
                operation: {
                    **stats,
                    "outcomes": dict(stats["outcomes"]),
                    "avg_ms": stats["total_ms"] / stats["calls"],
                }
                for operation, stats in self._stats.items()
            }

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()


def instrumented(operation: Optional[str] = None, slow_threshold_ms: Optional[float] = None):
    """
    Log and time a service method.

    The wrapped method's instance may expose a ``metrics`` attribute holding a
    PerformanceMetrics; when present every call is recorded there, tagged
    with the name of the business error it raised, if any.
    """
    def decorator(func):
        name = operation or func.__qualname__

        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            threshold = slow_threshold_ms if slow_threshold_ms is not None else config.SLOW_OPERATION_THRESHOLD_MS
            outcome = "ok"
            start = time.perf_counter()
            try:
                return func(self, *args, **kwargs)
            except Exception as e:
                outcome = type(e).__name__
                raise
            finally:
                elapsed_ms = (time.perf_counter() - start) * 1000
                metrics = getattr(self, "metrics", None)
                if metrics is not None:
                    metrics.record(name, elapsed_ms, outcome)
                if elapsed_ms > threshold:
                    logger.warning(f"SLOW OPERATION: {name} took {elapsed_ms:.1f}ms ({outcome})")
                else:
                    logger.debug(f"{name} finished in {elapsed_ms:.1f}ms ({outcome})")

        return wrapper

    return decorator
