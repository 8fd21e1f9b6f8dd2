"""Logging and observability utilities for md-tasker.

This module provides structured logging, performance monitoring,
and observability hooks for document mutations.
"""

from __future__ import annotations

import json
import time
import logging as std_logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union
from functools import wraps

LOGGER_NAME = "mdtasker"


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


# Configure structured logging
def setup_logging(log_level: Union[str, int] = std_logging.INFO, log_file: Optional[Path] = None) -> None:
    """Setup structured logging for md-tasker."""

    logger = std_logging.getLogger(LOGGER_NAME)
    logger.setLevel(log_level)

    # Clear existing handlers
    logger.handlers.clear()

    detailed_formatter = std_logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # stderr keeps stdout free for the MCP stdio transport
    console_handler = std_logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(detailed_formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = std_logging.FileHandler(log_file)
        file_handler.setLevel(std_logging.DEBUG)
        file_handler.setFormatter(JsonFormatter())
        logger.addHandler(file_handler)

    logger.info("md-tasker logging initialized")


class JsonFormatter(std_logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: std_logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_entry.update(record.extra_fields)

        return json.dumps(log_entry, default=str)


class PerformanceMonitor:
    """Collect timing metrics for engine operations."""

    def __init__(self):
        self.metrics: Dict[str, List[Dict[str, Any]]] = {}

    def record_metric(self, name: str, value: Any, tags: Optional[Dict[str, str]] = None) -> None:
        """Record a performance metric."""
        metric = {
            "timestamp": _utcnow(),
            "name": name,
            "value": value,
            "tags": tags or {}
        }
        self.metrics.setdefault(name, []).append(metric)

        logger = std_logging.getLogger(f"{LOGGER_NAME}.performance")
        logger.debug(f"Metric recorded: {name}={value}", extra={"extra_fields": metric})

    def get_metrics(self, name: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
        """Get recorded metrics."""
        if name:
            return {name: self.metrics.get(name, [])}
        return self.metrics.copy()

    def summary(self, name: str) -> Dict[str, float]:
        values = [metric["value"] for metric in self.metrics.get(name, [])]
        if not values:
            return {"count": 0}
        return {
            "count": len(values),
            "average": sum(values) / len(values),
            "min": min(values),
            "max": max(values),
        }

    def reset(self) -> None:
        self.metrics.clear()


# Global performance monitor instance
performance_monitor = PerformanceMonitor()


def log_performance(operation_name: str):
    """Decorator to log performance metrics for operations."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            logger = std_logging.getLogger(f"{LOGGER_NAME}.performance")

            try:
                result = func(*args, **kwargs)

                duration = time.perf_counter() - start_time
                performance_monitor.record_metric(
                    f"{operation_name}_duration",
                    duration,
                    {"status": "success"}
                )
                logger.debug(
                    f"Completed operation: {operation_name} in {duration:.3f}s",
                    extra={"extra_fields": {
                        "operation": operation_name,
                        "duration": duration,
                        "status": "success"
                    }}
                )
                return result

            except Exception as e:
                duration = time.perf_counter() - start_time
                performance_monitor.record_metric(
                    f"{operation_name}_duration",
                    duration,
                    {"status": "error", "error_type": type(e).__name__}
                )
                logger.warning(
                    f"Failed operation: {operation_name} after {duration:.3f}s - {str(e)}",
                    extra={"extra_fields": {
                        "operation": operation_name,
                        "duration": duration,
                        "status": "error",
                        "error_type": type(e).__name__,
                        "error_message": str(e)
                    }}
                )
                raise

        return wrapper
    return decorator


@contextmanager
def log_operation(operation_name: str, **extra_fields):
    """Context manager to log operations with custom fields."""
    logger = std_logging.getLogger(f"{LOGGER_NAME}.operations")
    start_time = time.perf_counter()

    logger.debug(f"Starting operation: {operation_name}", extra={"extra_fields": {
        "operation": operation_name,
        "status": "started",
        **extra_fields
    }})

    try:
        yield

        duration = time.perf_counter() - start_time
        logger.info(f"Completed operation: {operation_name} in {duration:.3f}s", extra={"extra_fields": {
            "operation": operation_name,
            "status": "completed",
            "duration": duration,
            **extra_fields
        }})

    except Exception as e:
        duration = time.perf_counter() - start_time
        logger.warning(f"Failed operation: {operation_name} after {duration:.3f}s - {str(e)}", extra={"extra_fields": {
            "operation": operation_name,
            "status": "failed",
            "duration": duration,
            "error_type": type(e).__name__,
            "error_message": str(e),
            **extra_fields
        }})

        raise


class ObservabilityHooks:
    """Callbacks fired after committed document changes."""

    def __init__(self):
        self.hooks: Dict[str, List[Callable[..., Any]]] = {}
        self.logger = std_logging.getLogger(f"{LOGGER_NAME}.observability")

    def register_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        """Register a callback for a specific event type."""
        self.hooks.setdefault(event_type, []).append(callback)
        self.logger.debug(f"Registered hook for event: {event_type}")

    def unregister_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        callbacks = self.hooks.get(event_type, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def trigger_hooks(self, event_type: str, **data) -> None:
        """Trigger all callbacks for a specific event type."""
        if event_type in self.hooks:
            self.logger.debug(f"Triggering {len(self.hooks[event_type])} hooks for event: {event_type}")
            for hook in self.hooks[event_type]:
                try:
                    hook(**data)
                except Exception as e:
                    # A failing subscriber must not undo a committed change.
                    self.logger.error(f"Hook failed for event {event_type}: {e}")

    def log_document_event(self, event_type: str, revision: Optional[int] = None, **data) -> None:
        """Log a document event and trigger hooks."""
        event_data = {
            "timestamp": _utcnow(),
            "event_type": event_type,
            "revision": revision,
            **data
        }

        self.logger.info(f"Document event: {event_type}", extra={"extra_fields": event_data})

        hook_data = {k: v for k, v in event_data.items() if k != "event_type"}
        self.trigger_hooks(event_type, **hook_data)


# Global observability hooks instance
observability_hooks = ObservabilityHooks()


def log_section_change(event_type: str, start_line: int, end_line: int, revision: int, **extra_fields):
    """Log a section-level change."""
    observability_hooks.log_document_event(
        f"section_{event_type.lower()}",
        revision=revision,
        start_line=start_line,
        end_line=end_line,
        **extra_fields
    )


def log_task_change(event_type: str, line_index: int, revision: int, **extra_fields):
    """Log a task-level change."""
    observability_hooks.log_document_event(
        f"task_{event_type.lower()}",
        revision=revision,
        line_index=line_index,
        **extra_fields
    )


def log_archive_event(event_type: str, revision: int, blocks: List[Any], **extra_fields):
    """Log an archive or restore."""
    observability_hooks.log_document_event(
        event_type.lower(),
        revision=revision,
        blocks=[list(block) for block in blocks],
        **extra_fields
    )


def log_error_with_context(error: Exception, context: Dict[str, Any], **extra_fields):
    """Log an error with rich context information."""
    logger = std_logging.getLogger(f"{LOGGER_NAME}.errors")

    error_data = {
        "timestamp": _utcnow(),
        "error_type": type(error).__name__,
        "error_message": str(error),
        "context": context,
        **extra_fields
    }

    logger.error(
        f"Error in {context.get('operation', 'unknown operation')}: {str(error)}",
        extra={"extra_fields": error_data},
        exc_info=True
    )
