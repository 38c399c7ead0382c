"""CloudWatch metrics for the incident engine and its HTTP surface."""

import logging
import os
from typing import Optional

import boto3

from lib.util_datetime import utcnow

logger = logging.getLogger(__name__)


class MetricsCollector:
    """Collects metrics, logs them locally and sends them to CloudWatch."""

    def __init__(self, namespace="DeployWatch", enabled=None):
        """
        Initialize the metrics collector.

        Args:
            namespace: CloudWatch metrics namespace
            enabled: Whether metrics are sent (defaults to env var)
        """
        self.namespace = namespace
        self.enabled = (
            enabled
            if enabled is not None
            else os.getenv("ENABLE_CLOUDWATCH_METRICS", "false").lower()
            == "true"
        )
        self.client = None

        if self.enabled:
            self.client = boto3.client(
                "cloudwatch",
                region_name=os.getenv("AWS_REGION", "us-east-1"),
            )
            logger.info(
                "CloudWatch metrics enabled",
                extra={"namespace": self.namespace},
            )

    def put_metric(
        self,
        metric_name: str,
        value: float,
        unit: str = "None",
        dimensions: Optional[dict] = None,
    ):
        """
        Send a metric to CloudWatch.

        Args:
            metric_name: Name of the metric
            value: Metric value
            unit: Unit of measurement (Count, Milliseconds, etc.)
            dimensions: Optional dimensions for the metric
        """
        dimensions = dimensions or {}

        logger.debug(
            f"Metric: {metric_name}",
            extra={
                "metric_name": metric_name,
                "value": value,
                "unit": unit,
                "dimensions": dimensions,
            },
        )

        if not (self.enabled and self.client):
            return

        metric_data = {
            "MetricName": metric_name,
            "Value": value,
            "Unit": unit,
            "Timestamp": utcnow(),
        }
        if dimensions:
            metric_data["Dimensions"] = [
                {"Name": k, "Value": str(v)} for k, v in dimensions.items()
            ]

        try:
            self.client.put_metric_data(
                Namespace=self.namespace, MetricData=[metric_data]
            )
        except Exception as e:
            # Metrics never fail the caller.
            logger.error(
                "Failed to send metric to CloudWatch",
                extra={"metric_name": metric_name, "error": str(e)},
            )

    def record_request(
        self,
        endpoint: str,
        method: str,
        status_code: int,
        latency_ms: float,
    ):
        """Record latency, count and 5xx errors for an HTTP request."""
        dimensions = {
            "Endpoint": endpoint,
            "Method": method,
            "StatusCode": str(status_code),
        }

        self.put_metric(
            "RequestLatency",
            latency_ms,
            unit="Milliseconds",
            dimensions=dimensions,
        )
        self.put_metric("RequestCount", 1, unit="Count", dimensions=dimensions)

        if 500 <= status_code < 600:
            self.put_metric(
                "ErrorCount", 1, unit="Count", dimensions=dimensions
            )

    def record_dependency_call(
        self, dependency: str, latency_ms: float, success: bool
    ):
        """
        Record metrics for a dependency call (DB, Redis, external API).

        Args:
            dependency: Name of the dependency
            latency_ms: Call latency in milliseconds
            success: Whether the call succeeded
        """
        dimensions = {"Dependency": dependency, "Success": str(success)}

        self.put_metric(
            "DependencyLatency",
            latency_ms,
            unit="Milliseconds",
            dimensions=dimensions,
        )

        if not success:
            self.put_metric(
                "DependencyError", 1, unit="Count", dimensions=dimensions
            )

    def record_health_check(self, component: str, healthy: bool):
        self.put_metric(
            "HealthStatus",
            1 if healthy else 0,
            unit="Count",
            dimensions={"Component": component},
        )

    def record_batch(self, deployment_id: str, processed: int, error_worthy: int):
        """Record the size of one clustered log batch."""
        dimensions = {"Deployment": deployment_id}
        self.put_metric(
            "LogsProcessed", processed, unit="Count", dimensions=dimensions
        )
        self.put_metric(
            "ErrorLogs", error_worthy, unit="Count", dimensions=dimensions
        )

    def record_incident_event(self, opened: bool):
        self.put_metric(
            "IncidentsOpened" if opened else "IncidentsExtended",
            1,
            unit="Count",
        )

    def record_notification(self, success: bool):
        self.put_metric(
            "NotificationsSent" if success else "NotificationsFailed",
            1,
            unit="Count",
        )

    def record_approval(self, action: str, outcome: str):
        """Record a token redemption attempt and how it ended."""
        self.put_metric(
            "ApprovalOutcome",
            1,
            unit="Count",
            dimensions={"Action": str(action), "Outcome": outcome},
        )


# Global metrics collector instance
metrics_collector = MetricsCollector()
