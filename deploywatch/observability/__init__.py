"""Observability module for logging, metrics and request tracing."""

from deploywatch.observability.logging_config import setup_logging
from deploywatch.observability.metrics import MetricsCollector
from deploywatch.observability.middleware import ObservabilityMiddleware

__all__ = ["setup_logging", "MetricsCollector", "ObservabilityMiddleware"]
