"""Tests for the incident clusterer."""

import datetime
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from deploywatch.incident.clusterer import (
    IncidentClusterer,
    LogRecord,
    is_error_worthy,
    register_deployment,
)
from deploywatch.incident.errors import DeploymentNotFound
from deploywatch.incident.fingerprint import signature
from deploywatch.incident.models import (
    Deployment,
    Incident,
    IncidentEvent,
    IncidentStatus,
)

NOW_MS = 1772366400000  # 2026-03-01T12:00:00Z, matches the frozen clock


def _log(row_id, offset_ms=0, message="upstream request timeout", **kwargs):
    kwargs.setdefault("level", "error")
    kwargs.setdefault("request_path", "/api/users")
    return LogRecord(
        row_id=row_id,
        timestamp_in_ms=NOW_MS + offset_ms,
        message=message,
        **kwargs,
    )


def _count(session, model):
    return session.scalar(select(func.count()).select_from(model))


@pytest.fixture
def clusterer(session, clock):
    return IncidentClusterer(session, clock=clock)


class TestIsErrorWorthy:
    def test_error_level(self):
        assert is_error_worthy(_log("r1", level="error", message="x"))

    def test_server_error_status(self):
        assert is_error_worthy(
            _log("r1", level="info", message="GET /", response_status_code=502)
        )

    def test_error_keyword_in_message(self):
        assert is_error_worthy(
            _log("r1", level="warn", message="Payment FAILED for order")
        )

    def test_plain_info_line(self):
        assert not is_error_worthy(
            _log("r1", level="info", message="GET / 200", response_status_code=200)
        )


class TestRegisterDeployment:
    def test_creates_then_reuses(self, session):
        first = register_deployment(session, "dpl_1")
        second = register_deployment(session, "dpl_1", target="preview")

        assert first.id == second.id
        assert second.target == "production"
        assert _count(session, Deployment) == 1


class TestProcessBatch:
    def test_unknown_deployment(self, clusterer):
        with pytest.raises(DeploymentNotFound):
            clusterer.process_batch("dpl_missing", [_log("r1")])

    def test_same_signature_collapses_into_one_incident(
        self, session, clusterer, deployment
    ):
        logs = [_log(f"r{i}", offset_ms=-i * 1000) for i in range(5)]

        clusterer.process_batch("dpl_test", logs)

        incident = session.scalars(select(Incident)).one()
        assert incident.event_count == 5
        assert incident.status == IncidentStatus.OPEN
        assert incident.error_signature == signature(
            "upstream request timeout", "/api/users"
        )
        assert incident.title == "upstream request timeout"
        assert _count(session, IncidentEvent) == 5

    def test_span_covers_newest_first_batches(self, session, clusterer, deployment):
        clusterer.process_batch(
            "dpl_test", [_log("r1", offset_ms=0), _log("r2", offset_ms=-1000)]
        )

        incident = session.scalars(select(Incident)).one()
        assert incident.last_seen_at == datetime.datetime(2026, 3, 1, 12, 0, 0)
        assert incident.first_seen_at == datetime.datetime(2026, 3, 1, 11, 59, 59)

    def test_ids_in_messages_do_not_split_incidents(
        self, session, clusterer, deployment
    ):
        clusterer.process_batch(
            "dpl_test",
            [
                _log("r1", offset_ms=-2000, message="Order 17 failed"),
                _log("r2", offset_ms=-1000, message="Order 4512 failed"),
            ],
        )

        assert _count(session, Incident) == 1

    def test_different_paths_open_different_incidents(
        self, session, clusterer, deployment
    ):
        clusterer.process_batch(
            "dpl_test",
            [
                _log("r1", offset_ms=-2000, request_path="/a"),
                _log("r2", offset_ms=-1000, request_path="/b"),
            ],
        )

        assert _count(session, Incident) == 2

    def test_resubmitting_a_batch_is_a_noop(self, session, clusterer, deployment):
        logs = [_log("r1", offset_ms=-1000), _log("r2")]
        clusterer.process_batch("dpl_test", logs)
        clusterer.process_batch("dpl_test", logs)

        incident = session.scalars(select(Incident)).one()
        assert incident.event_count == 2
        assert _count(session, IncidentEvent) == 2

    def test_high_water_mark_only_moves_forward(
        self, session, clusterer, deployment
    ):
        clusterer.process_batch("dpl_test", [_log("r1", offset_ms=0)])
        clusterer.process_batch("dpl_test", [_log("r0", offset_ms=-5000)])

        session.expire_all()
        assert session.get(Deployment, deployment.id).last_processed_timestamp_in_ms == NOW_MS
        assert _count(session, IncidentEvent) == 1

    def test_non_error_logs_only_advance_the_high_water_mark(
        self, session, clusterer, deployment
    ):
        clusterer.process_batch(
            "dpl_test",
            [
                _log("r1", level="info", message="GET /", response_status_code=200),
                _log("r2", offset_ms=500, level="info", message="GET /health"),
            ],
        )

        session.expire_all()
        stored = session.get(Deployment, deployment.id)
        assert _count(session, Incident) == 0
        assert stored.last_processed_timestamp_in_ms == NOW_MS + 500
        assert stored.last_polled_at == datetime.datetime(2026, 3, 1, 12, 0, 0)

    def test_empty_batch_has_no_side_effects(self, session, clusterer, deployment):
        clusterer.process_batch("dpl_test", [])

        session.expire_all()
        stored = session.get(Deployment, deployment.id)
        assert stored.last_processed_timestamp_in_ms == 0
        assert stored.last_polled_at is None

    def test_occurrence_outside_window_opens_new_incident(
        self, session, deployment
    ):
        start = datetime.datetime(2026, 3, 1, 12, 0, 0)
        now = {"value": start}
        clusterer = IncidentClusterer(session, clock=lambda: now["value"])

        clusterer.process_batch("dpl_test", [_log("r1")])

        now["value"] = start + datetime.timedelta(minutes=31)
        clusterer.process_batch(
            "dpl_test", [_log("r2", offset_ms=31 * 60 * 1000)]
        )

        incidents = session.scalars(select(Incident)).all()
        assert len(incidents) == 2
        assert [i.event_count for i in incidents] == [1, 1]

    def test_only_open_incidents_absorb_new_occurrences(
        self, session, clusterer, deployment
    ):
        clusterer.process_batch("dpl_test", [_log("r1", offset_ms=-1000)])
        incident = session.scalars(select(Incident)).one()
        incident.status = IncidentStatus.NOTIFIED
        session.commit()

        clusterer.process_batch("dpl_test", [_log("r2")])

        assert _count(session, Incident) == 2

    def test_messages_are_stored_redacted(self, session, clusterer, deployment):
        clusterer.process_batch(
            "dpl_test",
            [_log("r1", message="Login error for alice@example.com")],
        )

        event = session.scalars(select(IncidentEvent)).one()
        incident = session.scalars(select(Incident)).one()
        assert event.message == "Login error for [EMAIL]"
        assert incident.title == "Login error for [EMAIL]"

    def test_row_already_recorded_elsewhere_is_skipped(
        self, session, clusterer, deployment, make_incident
    ):
        make_incident(signature="b" * 64, row_id="r1")

        clusterer.process_batch("dpl_test", [_log("r1"), _log("r2", offset_ms=10)])

        assert _count(session, IncidentEvent) == 2
        opened = session.scalars(
            select(Incident).where(Incident.error_signature != "b" * 64)
        ).one()
        assert opened.event_count == 1

    def test_other_constraint_failures_are_raised(
        self, session, clusterer, deployment
    ):
        orphan = IncidentEvent(row_id="r1", timestamp_in_ms=NOW_MS, level="error")

        with patch(
            "deploywatch.incident.clusterer._event_from_log", return_value=orphan
        ):
            with pytest.raises(IntegrityError):
                clusterer.process_batch("dpl_test", [_log("r1")])

        assert _count(session, Incident) == 0
        assert _count(session, IncidentEvent) == 0

    def test_records_batch_metrics(self, clusterer, deployment):
        with patch(
            "deploywatch.incident.clusterer.metrics_collector"
        ) as metrics:
            clusterer.process_batch(
                "dpl_test", [_log("r1"), _log("r2", level="info", message="ok")]
            )

        metrics.record_batch.assert_called_once_with(
            "dpl_test", processed=2, error_worthy=1
        )
        metrics.record_incident_event.assert_called_once_with(opened=True)
