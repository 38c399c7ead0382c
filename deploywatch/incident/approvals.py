"""Approval tokens – single-use, time-limited bearer authorizations.

The raw token only ever exists in the notification link. The database keeps
its SHA-256 digest, so a leaked table cannot be replayed into approvals.
"""

from __future__ import annotations

import datetime
import hashlib
import logging
import secrets
from typing import Callable

from sqlalchemy import select, update

from lib.util_datetime import utcnow
from deploywatch.incident.errors import (
    TokenAlreadyUsed,
    TokenExpired,
    TokenInvalid,
)
from deploywatch.incident.models import Approval, ApprovalAction
from deploywatch.observability.metrics import metrics_collector

logger = logging.getLogger(__name__)

APPROVAL_TTL = datetime.timedelta(hours=24)
TOKEN_BYTES = 32


def hash_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


class ApprovalTokenService:
    """Issue, redeem and revoke approval tokens for incidents."""

    def __init__(
        self,
        session,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self._session = session
        self._clock = clock

    def issue(
        self,
        incident_id: int,
        action: str = ApprovalAction.APPROVE,
        ttl: datetime.timedelta = APPROVAL_TTL,
    ) -> str:
        """Persist a new approval and return its raw token.

        The row is only flushed; the caller commits it together with the
        rest of its unit of work.
        """
        raw_token = secrets.token_hex(TOKEN_BYTES)
        approval = Approval(
            incident_id=incident_id,
            token_hash=hash_token(raw_token),
            token_expires_at=self._clock() + ttl,
            action=ApprovalAction(action),
        )
        self._session.add(approval)
        self._session.flush()

        logger.info(
            "Issued %s approval %s for incident %s (expires %s)",
            approval.action,
            approval.id,
            incident_id,
            approval.token_expires_at.isoformat(),
        )
        return raw_token

    def redeem(
        self,
        incident_id: int,
        raw_token: str,
        expected_action: str,
    ) -> Approval:
        """Consume a token for ``expected_action`` on ``incident_id``.

        A dismiss redemption accepts the incident's approve token and
        records the action as ``dismiss``.

        :raises TokenInvalid: no approval matches the token for this incident
        :raises TokenAlreadyUsed: the approval was already consumed
        :raises TokenExpired: the approval is past its expiry
        """
        action = ApprovalAction(expected_action)
        approval = self._lookup(raw_token)

        try:
            if approval is None or approval.incident_id != incident_id:
                raise TokenInvalid()
            if (
                action == ApprovalAction.APPROVE
                and approval.action != ApprovalAction.APPROVE
            ):
                raise TokenInvalid()
            if approval.used_at is not None:
                raise TokenAlreadyUsed()

            now = self._clock()
            if approval.token_expires_at < now:
                raise TokenExpired()

            result = self._session.execute(
                update(Approval)
                .where(Approval.id == approval.id, Approval.used_at.is_(None))
                .values(used_at=now, action=action)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self._session.rollback()
                raise TokenAlreadyUsed()
            self._session.commit()
        except (TokenInvalid, TokenAlreadyUsed, TokenExpired) as exc:
            logger.warning(
                "Rejected %s token for incident %s: %s",
                action,
                incident_id,
                exc,
            )
            metrics_collector.record_approval(
                action, outcome=type(exc).__name__
            )
            raise

        logger.info(
            "Redeemed approval for incident %s as %s", incident_id, action
        )
        metrics_collector.record_approval(action, outcome="Redeemed")
        return self._session.get(Approval, approval.id)

    def revoke_outstanding(self, incident_id: int) -> int:
        """Consume every unused approval of an incident.

        Flushed only; the caller commits. Returns how many were revoked.
        """
        result = self._session.execute(
            update(Approval)
            .where(
                Approval.incident_id == incident_id,
                Approval.used_at.is_(None),
            )
            .values(used_at=self._clock())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(
                "Revoked %d outstanding approval(s) for incident %s",
                result.rowcount,
                incident_id,
            )
        return result.rowcount

    def _lookup(self, raw_token: str) -> Approval | None:
        return self._session.scalar(
            select(Approval).filter_by(token_hash=hash_token(raw_token or ""))
        )
