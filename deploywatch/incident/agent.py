"""One polling cycle: fetch logs, cluster them, announce new incidents."""

from __future__ import annotations

import logging

from deploywatch.incident.clusterer import register_deployment
from deploywatch.vercel.client import to_log_record

logger = logging.getLogger(__name__)


def run_agent(services, session, project_id: str | None = None) -> dict:
    """Run the agent once against the latest production deployment.

    Returns ``{"status": "no_deployment"}``, ``{"status": "no_logs"}`` or
    ``{"status": "success", "incidents_found": n}``.
    """
    project_id = project_id or services.vercel.project_id
    if not project_id:
        raise RuntimeError("VERCEL_PROJECT_ID is not configured.")

    latest = services.vercel.get_latest_deployment(project_id)
    if not latest:
        logger.info("No production deployment found for %s", project_id)
        return {"status": "no_deployment"}

    deployment_id = latest["uid"]
    register_deployment(
        session, deployment_id, target=latest.get("target") or "production"
    )

    logs = [
        to_log_record(event)
        for event in services.vercel.stream_logs(
            deployment_id,
            max_events=services.log_stream_max_events,
            max_duration=services.log_stream_max_duration,
        )
    ]
    if not logs:
        logger.info("No new logs fetched for %s", deployment_id)
        return {"status": "no_logs"}

    services.clusterer.process_batch(deployment_id, logs)
    notified = services.lifecycle.handle_new_incidents(deployment_id)

    logger.info(
        "Agent run finished for %s: %d logs, %d incidents notified",
        deployment_id,
        len(logs),
        notified,
    )
    return {"status": "success", "incidents_found": notified}
