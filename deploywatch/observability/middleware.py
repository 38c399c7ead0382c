"""Request/response logging and latency metrics."""

import logging
import time

from flask import g, request

from deploywatch.observability.metrics import metrics_collector

logger = logging.getLogger(__name__)


class ObservabilityMiddleware:
    """Track request latency and log every request's start and end."""

    def __init__(self, app=None):
        self.app = app
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        app.before_request(self.before_request)
        app.after_request(self.after_request)
        app.teardown_request(self.teardown_request)

    @staticmethod
    def before_request():
        g.start_time = time.time()
        g.request_id = request.headers.get("X-Request-ID", "unknown")

        logger.info(
            "Request started",
            extra={
                "request_id": g.request_id,
                "method": request.method,
                "path": request.path,
                "endpoint": request.endpoint,
                "remote_addr": request.remote_addr,
            },
        )

    @staticmethod
    def after_request(response):
        """Log completion, record metrics and echo tracing headers."""
        if hasattr(g, "start_time"):
            latency_ms = (time.time() - g.start_time) * 1000

            logger.info(
                "Request completed",
                extra={
                    "request_id": getattr(g, "request_id", "unknown"),
                    "method": request.method,
                    "path": request.path,
                    "endpoint": request.endpoint,
                    "status_code": response.status_code,
                    "latency_ms": round(latency_ms, 2),
                },
            )

            metrics_collector.record_request(
                endpoint=request.endpoint or request.path,
                method=request.method,
                status_code=response.status_code,
                latency_ms=latency_ms,
            )

            response.headers["X-Request-ID"] = getattr(
                g, "request_id", "unknown"
            )
            response.headers["X-Response-Time"] = str(round(latency_ms, 2))

        return response

    @staticmethod
    def teardown_request(exception=None):
        if exception is None:
            return

        latency_ms = (
            (time.time() - g.start_time) * 1000
            if hasattr(g, "start_time")
            else 0
        )
        logger.error(
            "Request failed with exception",
            extra={
                "request_id": getattr(g, "request_id", "unknown"),
                "method": request.method,
                "path": request.path,
                "exception_type": type(exception).__name__,
                "latency_ms": round(latency_ms, 2),
            },
            exc_info=exception,
        )
        metrics_collector.record_request(
            endpoint=request.endpoint or request.path,
            method=request.method,
            status_code=500,
            latency_ms=latency_ms,
        )
