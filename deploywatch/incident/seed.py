"""Demo data: one OPEN timeout incident ready to be notified."""

import logging

from sqlalchemy import delete

from lib.util_datetime import from_epoch_ms, to_epoch_ms, utcnow
from deploywatch.incident.clusterer import register_deployment
from deploywatch.incident.fingerprint import signature
from deploywatch.incident.models import (
    Analysis,
    Approval,
    Incident,
    IncidentEvent,
    IncidentStatus,
)

logger = logging.getLogger(__name__)

DEMO_DEPLOYMENT_ID = "dpl_mock_123"
DEMO_PATH = "/api/users"


def seed_demo_incident(session, now=None):
    """
    Replace all incident data with a single demo incident.

    :param session: SQLAlchemy session
    :param now: Naive UTC datetime used as the newest event time
    :return: Incident
    """
    now_ms = to_epoch_ms(now or utcnow())
    deployment = register_deployment(session, DEMO_DEPLOYMENT_ID)

    for model in (IncidentEvent, Approval, Incident, Analysis):
        session.execute(delete(model))

    first_message = "upstream request timeout"
    incident = Incident(
        error_signature=signature(first_message, DEMO_PATH),
        title=first_message,
        status=IncidentStatus.OPEN,
        severity="P1",
        deployment_id=deployment.id,
        request_path=DEMO_PATH,
        event_count=2,
        first_seen_at=from_epoch_ms(now_ms - 1000),
        last_seen_at=from_epoch_ms(now_ms),
    )
    incident.events = [
        IncidentEvent(
            row_id="row_1",
            timestamp_in_ms=now_ms,
            level="error",
            message=first_message,
            request_path=DEMO_PATH,
            response_status_code=504,
        ),
        IncidentEvent(
            row_id="row_2",
            timestamp_in_ms=now_ms - 1000,
            level="error",
            message="Connection timed out after 30000ms",
            request_path=DEMO_PATH,
            response_status_code=504,
        ),
    ]
    session.add(incident)
    session.commit()

    logger.info("Seeded demo incident %s on %s", incident.id, DEMO_DEPLOYMENT_ID)
    return incident
