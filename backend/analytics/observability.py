"""
Module: observability.py
Description: Logging and metrics tracking for the analytics engine.

Features:
    - Structured logging with context
    - Timing decorators for performance monitoring
    - Metrics collection and reporting

Usage:
    from analytics.observability import logger, metrics, timed

    @timed("predict_spending")
    async def predict_spending(query):
        logger.info("Predicting spending", user_id=query.user_id)
        ...

Author: Budget Analytics Team
Created: 2025-02-10
"""

import inspect
import time
import logging
import functools
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Callable
from collections import defaultdict
from contextlib import contextmanager


# =============================================================================
# Structured Logger
# =============================================================================

class StructuredLogger:
    """
    Structured logger emitting `message | key=value` lines.

    Context fields (user_id, operation) set with set_context() are
    appended to every message until clear_context() is called.
    """

    def __init__(self, name: str = "budget-analytics"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setLevel(logging.INFO)
            formatter = logging.Formatter(
                '%(asctime)s | %(levelname)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

        self._context: Dict[str, Any] = {}

    def set_context(self, **kwargs) -> None:
        """Set context fields that will be included in all logs."""
        self._context.update(kwargs)

    def clear_context(self) -> None:
        self._context = {}

    def _format_message(self, message: str, **kwargs) -> str:
        fields = {**self._context, **kwargs}
        if fields:
            field_str = " | ".join(f"{k}={v}" for k, v in fields.items())
            return f"{message} | {field_str}"
        return message

    def info(self, message: str, **kwargs) -> None:
        self.logger.info(self._format_message(message, **kwargs))

    def warning(self, message: str, **kwargs) -> None:
        self.logger.warning(self._format_message(message, **kwargs))

    def error(self, message: str, **kwargs) -> None:
        self.logger.error(self._format_message(message, **kwargs))

    def debug(self, message: str, **kwargs) -> None:
        self.logger.debug(self._format_message(message, **kwargs))

    def exception(self, message: str, **kwargs) -> None:
        """Log exception with traceback."""
        self.logger.exception(self._format_message(message, **kwargs))


# =============================================================================
# Metrics Collector
# =============================================================================

class MetricsCollector:
    """
    In-memory counters, gauges and timings for the engine's operations.

    Note: In production, replace with a Prometheus/StatsD client.
    """

    MAX_TIMINGS = 1000

    def __init__(self):
        self.counters: Dict[str, int] = defaultdict(int)
        self.gauges: Dict[str, float] = {}
        self.timings: Dict[str, list] = defaultdict(list)
        self._start_time = datetime.now(timezone.utc)

    def increment(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None) -> None:
        key = self._make_key(name, tags)
        self.counters[key] += value

    def gauge(self, name: str, value: float, tags: Optional[Dict[str, str]] = None) -> None:
        key = self._make_key(name, tags)
        self.gauges[key] = value

    def timing(self, name: str, duration_ms: float, tags: Optional[Dict[str, str]] = None) -> None:
        key = self._make_key(name, tags)
        self.timings[key].append(duration_ms)
        if len(self.timings[key]) > self.MAX_TIMINGS:
            self.timings[key] = self.timings[key][-self.MAX_TIMINGS:]

    def _make_key(self, name: str, tags: Optional[Dict[str, str]] = None) -> str:
        if tags:
            tag_str = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
            return f"{name}:{tag_str}"
        return name

    def reset(self) -> None:
        self.counters.clear()
        self.gauges.clear()
        self.timings.clear()

    def get_summary(self) -> Dict[str, Any]:
        """Get summary of all metrics."""
        summary = {
            "uptime_seconds": (datetime.now(timezone.utc) - self._start_time).total_seconds(),
            "counters": dict(self.counters),
            "gauges": dict(self.gauges),
            "timings": {},
        }

        for name, values in self.timings.items():
            if values:
                ordered = sorted(values)
                summary["timings"][name] = {
                    "count": len(values),
                    "avg_ms": sum(values) / len(values),
                    "min_ms": ordered[0],
                    "max_ms": ordered[-1],
                    "p50_ms": ordered[len(values) // 2],
                    "p95_ms": ordered[int(len(values) * 0.95)] if len(values) >= 20 else None,
                }

        return summary


# =============================================================================
# Timing Decorator
# =============================================================================

def timed(name: Optional[str] = None):
    """
    Decorator to time function execution and record metrics.

    Works for both plain functions and coroutines.

    Example:
        @timed("anomaly_detection")
        def detect_anomalies(transactions):
            ...
    """
    def decorator(func: Callable) -> Callable:
        metric_name = name or func.__name__

        def _finish(start: float) -> None:
            duration_ms = (time.perf_counter() - start) * 1000
            metrics.timing(metric_name, duration_ms)
            logger.debug(f"{metric_name} completed", duration_ms=f"{duration_ms:.2f}")

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
                metrics.increment(f"{metric_name}.success")
                return result
            except Exception:
                metrics.increment(f"{metric_name}.error")
                raise
            finally:
                _finish(start)

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
                metrics.increment(f"{metric_name}.success")
                return result
            except Exception:
                metrics.increment(f"{metric_name}.error")
                raise
            finally:
                _finish(start)

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


# =============================================================================
# Global Instances
# =============================================================================

logger = StructuredLogger()

metrics = MetricsCollector()


# =============================================================================
# Convenience Functions
# =============================================================================

def log_analysis_start(operation: str, user_id: str, record_count: int) -> None:
    """Log the start of an analytics call."""
    logger.set_context(user_id=user_id[:8], operation=operation)
    logger.info("Analysis started", records=record_count)
    metrics.increment("analysis.started", tags={"operation": operation})


def log_analysis_complete(operation: str, results: Dict[str, Any]) -> None:
    """Log completion of an analytics call and drop the context."""
    logger.info("Analysis completed", **results)
    metrics.increment("analysis.completed", tags={"operation": operation})
    logger.clear_context()


def log_anomaly_detected(severity: str, amount: float) -> None:
    logger.info("Anomaly detected", severity=severity, amount=f"${amount:.2f}")
    metrics.increment("anomalies.detected", tags={"severity": severity})


@contextmanager
def analysis_context(operation: str, user_id: str, record_count: int):
    """
    Wrap one analytics call: log_analysis_start on entry, and the logger
    context is dropped on every exit. Failures are logged and counted
    before being re-raised.

    Example:
        with analysis_context("predict_spending", user_id, len(history)):
            prediction = forecaster.predict(history, start, end)
            log_analysis_complete("predict_spending", {...})
    """
    log_analysis_start(operation, user_id, record_count)
    try:
        yield
    except Exception as e:
        logger.warning("Analysis failed", error_type=type(e).__name__, error=str(e))
        metrics.increment("analysis.failed", tags={"operation": operation})
        raise
    finally:
        logger.clear_context()
