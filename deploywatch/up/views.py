import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from lib.util_datetime import utcnow
from deploywatch.extensions import db
from deploywatch.initializers import redis
from deploywatch.observability.metrics import metrics_collector

logger = logging.getLogger(__name__)

up = Blueprint("up", __name__, url_prefix="/up")


@up.get("/")
def index():
    """Liveness check - returns 200 if the app is running."""
    return ""


@up.get("/health")
def health():
    """
    Readiness check covering the database, Redis and Celery workers.

    Returns 200 when every component is healthy, 503 otherwise.
    """
    components = {
        "database": _timed_check("postgres", _ping_database),
        "redis": _timed_check("redis", redis.ping),
    }

    celery_health = check_celery()
    if celery_health:
        components["celery"] = celery_health

    overall_healthy = all(c["healthy"] for c in components.values())

    for component, status in components.items():
        metrics_collector.record_health_check(component, status["healthy"])

    return jsonify(
        {
            "status": "healthy" if overall_healthy else "unhealthy",
            "timestamp": utcnow().isoformat(),
            "service": "deploywatch",
            "components": components,
        }
    ), (200 if overall_healthy else 503)


def _ping_database():
    with db.engine.connect() as connection:
        connection.execute(text("SELECT 1"))


def _timed_check(dependency, probe):
    """
    Run a connectivity probe and report its latency.

    :param dependency: Dependency name used for metrics
    :param probe: Callable that raises when the dependency is down
    :return: dict
    """
    start_time = time.time()
    try:
        probe()
    except Exception as e:
        latency_ms = (time.time() - start_time) * 1000
        metrics_collector.record_dependency_call(
            dependency=dependency, latency_ms=latency_ms, success=False
        )
        logger.error(
            "Health check failed",
            extra={"dependency": dependency, "error": str(e)},
        )
        return {
            "healthy": False,
            "latency_ms": round(latency_ms, 2),
            "error": str(e),
        }

    latency_ms = (time.time() - start_time) * 1000
    metrics_collector.record_dependency_call(
        dependency=dependency, latency_ms=latency_ms, success=True
    )
    return {"healthy": True, "latency_ms": round(latency_ms, 2)}


def check_celery():
    """Return Celery worker status, or None when Celery is not set up."""
    celery = current_app.extensions.get("celery")
    if not celery:
        return None

    try:
        stats = celery.control.inspect(timeout=1.0).stats()
    except Exception as e:
        logger.error("Celery health check failed", extra={"error": str(e)})
        return {"healthy": False, "worker_count": 0, "error": str(e)}

    worker_count = len(stats or {})
    return {"healthy": worker_count > 0, "worker_count": worker_count}
