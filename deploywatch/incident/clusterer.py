"""Incident clusterer – folds error-worthy log lines into incidents.

For every new batch of log records belonging to one deployment:

1. Drop records at or below the deployment's high-water mark.
2. Pick the error-worthy records (level ``error``, status >= 500, or an
   ``error|failed|exception`` message).
3. For each one, in the order given, append it to the OPEN incident with
   the same signature seen inside the dedup window, or open a new incident.
4. Advance the high-water mark to the newest timestamp of the batch.

Step 3 runs in its own transaction per record. The ``row_id`` unique
constraint makes a record that a concurrent run already attached a no-op.
"""

from __future__ import annotations

import datetime
import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterable

from sqlalchemy import case, select, text, update
from sqlalchemy.exc import IntegrityError

from lib.util_datetime import from_epoch_ms, utcnow
from deploywatch.incident.errors import DeploymentNotFound
from deploywatch.incident.fingerprint import signature
from deploywatch.incident.models import (
    Deployment,
    Incident,
    IncidentEvent,
    IncidentStatus,
)
from deploywatch.incident.redaction import redact
from deploywatch.observability.metrics import metrics_collector

logger = logging.getLogger(__name__)

DEDUP_WINDOW = datetime.timedelta(minutes=30)
TITLE_LENGTH = 100

_ERROR_MESSAGE_RE = re.compile(r"error|failed|exception", re.IGNORECASE)


@dataclass(frozen=True)
class LogRecord:
    """A raw log line as yielded by the log source."""

    row_id: str
    timestamp_in_ms: int
    level: str
    message: str
    source: str | None = None
    request_method: str | None = None
    request_path: str | None = None
    response_status_code: int | None = None

    @property
    def timestamp(self) -> datetime.datetime:
        return from_epoch_ms(self.timestamp_in_ms)


def is_error_worthy(log: LogRecord) -> bool:
    """Return True when a log line should be clustered into an incident."""
    if log.level == "error":
        return True
    if log.response_status_code is not None and log.response_status_code >= 500:
        return True
    return bool(_ERROR_MESSAGE_RE.search(log.message or ""))


def register_deployment(session, external_id: str, target: str = "production"):
    """Upsert a deployment by its provider id and return the row."""
    stmt = select(Deployment).filter_by(external_id=external_id)
    deployment = session.scalar(stmt)
    if deployment is not None:
        return deployment

    session.add(Deployment(external_id=external_id, target=target))
    try:
        session.commit()
    except IntegrityError:
        # A concurrent poll registered it first.
        session.rollback()
    else:
        logger.info("Registered deployment %s (%s)", external_id, target)

    return session.scalar(stmt)


class IncidentClusterer:
    """Assign error-worthy log records to incidents."""

    def __init__(
        self,
        session,
        clock: Callable[[], datetime.datetime] = utcnow,
        window: datetime.timedelta = DEDUP_WINDOW,
    ) -> None:
        self._session = session
        self._clock = clock
        self._window = window

    def process_batch(self, deployment_id: str, logs: Iterable[LogRecord]) -> None:
        """Cluster one batch of log records for a registered deployment.

        :raises DeploymentNotFound: when the deployment was never registered
        """
        deployment = self._session.scalar(
            select(Deployment).filter_by(external_id=deployment_id)
        )
        if deployment is None:
            raise DeploymentNotFound(deployment_id)

        high_water_mark = deployment.last_processed_timestamp_in_ms or 0
        fresh = [log for log in logs if log.timestamp_in_ms > high_water_mark]
        if not fresh:
            logger.debug(
                "No logs newer than %s for deployment %s",
                high_water_mark,
                deployment_id,
            )
            return

        deployment_pk = deployment.id
        latest = max(log.timestamp_in_ms for log in fresh)
        errors = [log for log in fresh if is_error_worthy(log)]

        opened = 0
        for log in errors:
            if self._record(deployment_pk, log):
                opened += 1

        self._advance_high_water_mark(deployment_pk, latest)

        logger.info(
            "Processed %d new logs for deployment %s: %d error-worthy, "
            "%d incidents opened",
            len(fresh),
            deployment_id,
            len(errors),
            opened,
        )
        metrics_collector.record_batch(
            deployment_id, processed=len(fresh), error_worthy=len(errors)
        )

    def _record(self, deployment_pk: int, log: LogRecord) -> bool:
        """Append ``log`` to its active incident or open a new one.

        Returns True when a new incident was opened.
        """
        error_signature = signature(log.message, log.request_path)
        message = redact(log.message)
        seen_at = log.timestamp
        cutoff = self._clock() - self._window

        try:
            self._lock_signature(error_signature)

            incident = self._session.scalar(
                select(Incident)
                .where(
                    Incident.error_signature == error_signature,
                    Incident.status == IncidentStatus.OPEN,
                    Incident.last_seen_at >= cutoff,
                )
                .order_by(Incident.last_seen_at.desc())
                .limit(1)
                .with_for_update()
            )

            if incident is None:
                # Titled from the redacted message; raw text is never stored.
                incident = Incident(
                    error_signature=error_signature,
                    title=message[:TITLE_LENGTH],
                    status=IncidentStatus.OPEN,
                    deployment_id=deployment_pk,
                    request_path=log.request_path,
                    event_count=1,
                    first_seen_at=seen_at,
                    last_seen_at=seen_at,
                )
                self._session.add(incident)
                self._session.flush()
                opened = True
            else:
                self._session.execute(
                    update(Incident)
                    .where(Incident.id == incident.id)
                    .values(
                        event_count=Incident.event_count + 1,
                        last_seen_at=case(
                            (Incident.last_seen_at < seen_at, seen_at),
                            else_=Incident.last_seen_at,
                        ),
                        first_seen_at=case(
                            (Incident.first_seen_at > seen_at, seen_at),
                            else_=Incident.first_seen_at,
                        ),
                    )
                    .execution_options(synchronize_session=False)
                )
                opened = False

            self._session.add(_event_from_log(incident.id, log, message))
            self._session.commit()
        except IntegrityError:
            self._session.rollback()
            recorded = self._session.scalar(
                select(IncidentEvent.id).filter_by(row_id=log.row_id)
            )
            if recorded is None:
                raise
            logger.info("Log %s was already recorded, skipping", log.row_id)
            return False
        except Exception:
            self._session.rollback()
            raise

        if opened:
            logger.info(
                "Opened incident %s for signature %s",
                incident.id,
                error_signature[:12],
            )
        metrics_collector.record_incident_event(opened=opened)
        return opened

    def _lock_signature(self, error_signature: str) -> None:
        """Serialise create-or-append per signature across engine instances."""
        if self._session.get_bind().dialect.name != "postgresql":
            return
        self._session.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:signature))"),
            {"signature": error_signature},
        )

    def _advance_high_water_mark(self, deployment_pk: int, latest: int) -> None:
        column = Deployment.last_processed_timestamp_in_ms
        self._session.execute(
            update(Deployment)
            .where(Deployment.id == deployment_pk)
            .values(
                last_processed_timestamp_in_ms=case(
                    (column < latest, latest), else_=column
                ),
                last_polled_at=self._clock(),
            )
            .execution_options(synchronize_session=False)
        )
        self._session.commit()


def _event_from_log(incident_id: int, log: LogRecord, message: str) -> IncidentEvent:
    return IncidentEvent(
        incident_id=incident_id,
        row_id=log.row_id,
        timestamp_in_ms=log.timestamp_in_ms,
        level=log.level,
        source=log.source,
        message=message,
        request_method=log.request_method,
        request_path=log.request_path,
        response_status_code=log.response_status_code,
    )
