"""Incident lifecycle – notify new incidents and apply operator decisions.

::

    OPEN ──notify──▶ NOTIFIED ──approve──▶ APPROVED_REDEPLOY ──hook──▶ REDEPLOY_TRIGGERED
      │                 │
      └──────dismiss────┴──────────────▶ DISMISSED

Every transition is a conditional UPDATE on the expected source status, so
two workers racing on the same incident cannot both move it. No lock is held
while the diagnosis, mail or deploy hook collaborators are called.
"""

from __future__ import annotations

import datetime
import logging
import time
from typing import Callable

from sqlalchemy import select, update

from lib.util_datetime import from_epoch_ms, utcnow
from deploywatch.incident.approvals import APPROVAL_TTL
from deploywatch.incident.errors import (
    DeploymentNotFound,
    IncidentNotFound,
    InvalidTransition,
    RemediationFailed,
)
from deploywatch.incident.models import (
    ApprovalAction,
    Deployment,
    Incident,
    IncidentEvent,
    IncidentStatus,
)
from deploywatch.incident.notification import action_url, render_incident_email
from deploywatch.observability.metrics import metrics_collector

logger = logging.getLogger(__name__)

EVIDENCE_LINES = 10

# Statuses from which an emailed token may still be redeemed.
PENDING_STATUSES = (IncidentStatus.OPEN, IncidentStatus.NOTIFIED)

# Statuses an operator may still act on directly.
ACTIONABLE_STATUSES = PENDING_STATUSES + (IncidentStatus.APPROVED_REDEPLOY,)


class IncidentLifecycle:
    """Drive incidents through their states using injected collaborators."""

    def __init__(
        self,
        session,
        diagnosis,
        mailer,
        approvals,
        remediation,
        base_url: str,
        notify_to: str,
        evidence_lines: int = EVIDENCE_LINES,
        approval_ttl: datetime.timedelta = APPROVAL_TTL,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self._session = session
        self._diagnosis = diagnosis
        self._mailer = mailer
        self._approvals = approvals
        self._remediation = remediation
        self._base_url = base_url
        self._notify_to = notify_to
        self._evidence_lines = evidence_lines
        self._approval_ttl = approval_ttl
        self._clock = clock

    # -- notification --------------------------------------------------------

    def handle_new_incidents(self, deployment_id: str) -> int:
        """Diagnose and announce every OPEN incident of a deployment.

        A failure on one incident leaves it OPEN for the next run and does
        not stop the others. Returns how many incidents were notified.
        """
        deployment = self._session.scalar(
            select(Deployment).filter_by(external_id=deployment_id)
        )
        if deployment is None:
            raise DeploymentNotFound(deployment_id)

        incident_ids = self._session.scalars(
            select(Incident.id)
            .where(
                Incident.deployment_id == deployment.id,
                Incident.status == IncidentStatus.OPEN,
            )
            .order_by(Incident.first_seen_at)
        ).all()

        notified = 0
        for incident_id in incident_ids:
            try:
                if self._notify(incident_id):
                    notified += 1
            except Exception:
                self._session.rollback()
                logger.exception("Failed to notify incident %s", incident_id)
                metrics_collector.record_notification(success=False)

        return notified

    def _notify(self, incident_id: int) -> bool:
        incident = self._session.get(Incident, incident_id)
        if incident is None or incident.status != IncidentStatus.OPEN:
            return False

        events = self._session.scalars(
            select(IncidentEvent)
            .filter_by(incident_id=incident_id)
            .order_by(IncidentEvent.timestamp_in_ms.desc())
            .limit(self._evidence_lines)
        ).all()
        evidence = [
            f"[{from_epoch_ms(e.timestamp_in_ms).isoformat()}Z] {e.message}"
            for e in events
        ]

        analysis = self._diagnosis.diagnose(incident.error_signature, evidence)

        raw_token = self._approvals.issue(
            incident_id, ApprovalAction.APPROVE, self._approval_ttl
        )
        subject, html = render_incident_email(
            incident,
            analysis,
            approve_url=action_url(self._base_url, "approve", incident_id, raw_token),
            dismiss_url=action_url(self._base_url, "dismiss", incident_id, raw_token),
        )
        self._mailer.send(self._notify_to, subject, html)

        result = self._session.execute(
            update(Incident)
            .where(
                Incident.id == incident_id,
                Incident.status == IncidentStatus.OPEN,
            )
            .values(status=IncidentStatus.NOTIFIED, analysis_id=analysis.id)
            .execution_options(synchronize_session=False)
        )
        self._session.commit()

        if result.rowcount != 1:
            logger.warning(
                "Incident %s left OPEN before it could be marked NOTIFIED",
                incident_id,
            )
            return False

        logger.info("Notified incident %s to %s", incident_id, self._notify_to)
        metrics_collector.record_notification(success=True)
        return True

    # -- operator decisions --------------------------------------------------

    def apply_action(self, incident_id: int, action: str) -> str:
        """Apply an operator decision without a token.

        ``approve`` fires the deploy hook and only moves the incident when it
        succeeds. APPROVED_REDEPLOY is accepted as a source so a redeploy
        whose hook failed on the token path can be retried. Either way,
        emailed tokens that are still outstanding stop working.

        :raises IncidentNotFound: unknown incident
        :raises InvalidTransition: the incident is already closed
        :raises RemediationFailed: the deploy hook did not succeed
        """
        action = ApprovalAction(action)
        incident = self._get(incident_id)

        if action == ApprovalAction.APPROVE:
            target = IncidentStatus.REDEPLOY_TRIGGERED
        else:
            target = IncidentStatus.DISMISSED

        if incident.status not in ACTIONABLE_STATUSES:
            raise InvalidTransition(
                f"Incident {incident_id} is already {incident.status}"
            )

        if action == ApprovalAction.APPROVE:
            self._trigger_remediation(incident_id)

        self._transition(incident_id, ACTIONABLE_STATUSES, target)
        return target

    def confirm_approval(self, incident_id: int, raw_token: str) -> str:
        """Redeem an approve token, then redeploy.

        :raises ApprovalRejected: the token was refused
        :raises InvalidTransition: the incident is no longer pending
        :raises RemediationFailed: the deploy hook did not succeed; the
            incident stays APPROVED_REDEPLOY
        """
        self._get(incident_id)
        self._approvals.redeem(incident_id, raw_token, ApprovalAction.APPROVE)
        self._transition(
            incident_id, PENDING_STATUSES, IncidentStatus.APPROVED_REDEPLOY
        )

        self._trigger_remediation(incident_id)
        self._transition(
            incident_id,
            (IncidentStatus.APPROVED_REDEPLOY,),
            IncidentStatus.REDEPLOY_TRIGGERED,
        )
        return IncidentStatus.REDEPLOY_TRIGGERED

    def confirm_dismissal(self, incident_id: int, raw_token: str) -> str:
        """Redeem a token as a dismissal.

        :raises ApprovalRejected: the token was refused
        :raises InvalidTransition: the incident is no longer pending
        """
        self._get(incident_id)
        self._approvals.redeem(incident_id, raw_token, ApprovalAction.DISMISS)
        self._transition(incident_id, PENDING_STATUSES, IncidentStatus.DISMISSED)
        return IncidentStatus.DISMISSED

    # -- helpers -------------------------------------------------------------

    def _get(self, incident_id: int) -> Incident:
        incident = self._session.get(Incident, incident_id)
        if incident is None:
            raise IncidentNotFound(incident_id)
        return incident

    def _transition(self, incident_id, sources, target) -> None:
        result = self._session.execute(
            update(Incident)
            .where(Incident.id == incident_id, Incident.status.in_(sources))
            .values(status=target)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self._session.rollback()
            raise InvalidTransition(
                f"Incident {incident_id} cannot move to {target}"
            )

        self._approvals.revoke_outstanding(incident_id)
        self._session.commit()
        self._session.expire_all()
        logger.info("Incident %s moved to %s", incident_id, target)

    def _trigger_remediation(self, incident_id: int) -> None:
        started = time.time()
        triggered = False
        try:
            triggered = self._remediation.trigger()
        finally:
            metrics_collector.record_dependency_call(
                dependency="deploy_hook",
                latency_ms=(time.time() - started) * 1000,
                success=triggered,
            )

        if not triggered:
            logger.error("Deploy hook rejected redeploy for incident %s", incident_id)
            raise RemediationFailed("Failed to trigger redeploy via hook")
