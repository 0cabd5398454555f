"""
Operation monitoring utilities for Tipster
Provides a decorator that tracks start, progress, completion and errors of
core operations without touching their control flow
"""

import functools
import threading
import time
from datetime import datetime, timezone

from flask import current_app, has_app_context

from tipster.utils.logging_config import get_logger

logger = get_logger(__name__)


class OperationMonitor:
    """Process-wide counters for monitored operations"""

    def __init__(self):
        self._lock = threading.Lock()
        self.stats = {}

    def _entry(self, name):
        if name not in self.stats:
            self.stats[name] = {
                "total_runs": 0,
                "successful_runs": 0,
                "failed_runs": 0,
                "running": 0,
                "last_started": None,
                "last_completed": None,
                "last_duration": None,
                "last_error": None,
                "progress": None,
            }
        return self.stats[name]

    def start(self, name):
        with self._lock:
            entry = self._entry(name)
            entry["total_runs"] += 1
            entry["running"] += 1
            entry["last_started"] = datetime.now(timezone.utc).isoformat()
            entry["progress"] = None

    def progress(self, name, done, total=None):
        """Record how far a long-running operation has got"""
        with self._lock:
            self._entry(name)["progress"] = {"done": done, "total": total}
        logger.debug(f"Operation '{name}' progress: {done}/{total if total is not None else '?'}")

    def complete(self, name, duration):
        with self._lock:
            entry = self._entry(name)
            entry["successful_runs"] += 1
            entry["running"] = max(entry["running"] - 1, 0)
            entry["last_completed"] = datetime.now(timezone.utc).isoformat()
            entry["last_duration"] = round(duration, 3)

    def fail(self, name, duration, error):
        with self._lock:
            entry = self._entry(name)
            entry["failed_runs"] += 1
            entry["running"] = max(entry["running"] - 1, 0)
            entry["last_duration"] = round(duration, 3)
            entry["last_error"] = str(error)

    def get_status(self):
        """Get a snapshot of every operation's counters"""
        with self._lock:
            return {name: dict(entry) for name, entry in self.stats.items()}

    def reset(self):
        with self._lock:
            self.stats = {}


operation_monitor = OperationMonitor()


def monitored_operation(name, monitor=None):
    """
    Decorator to track a core operation

    Args:
        name: Operation name used in logs and monitor counters
        monitor: OperationMonitor to record into (defaults to the global one)

    Returns:
        Wrapped function that logs and records start, completion and failure
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            active_monitor = monitor or operation_monitor
            active_monitor.start(name)
            logger.info(f"Operation '{name}' started")
            start_time = time.time()

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration = time.time() - start_time
                active_monitor.fail(name, duration, e)
                logger.error(
                    f"Operation '{name}' failed after {duration:.2f}s: {str(e)}"
                )
                raise

            duration = time.time() - start_time
            active_monitor.complete(name, duration)

            threshold = 5.0
            if has_app_context():
                threshold = current_app.config.get("SLOW_OPERATION_THRESHOLD", 5.0)
            if duration > threshold:
                logger.warning(
                    f"Slow operation '{name}' took {duration:.2f}s "
                    f"(threshold: {threshold}s)"
                )
            else:
                logger.info(f"Operation '{name}' completed in {duration:.2f}s")

            return result

        return wrapper

    return decorator
