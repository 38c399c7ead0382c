"""Tests for the incident and token confirmation blueprints."""

from unittest.mock import patch

import pytest
from flask import current_app

from lib.test import ViewTestMixin
from deploywatch.incident.errors import RemediationFailed, TokenExpired
from deploywatch.incident.models import Analysis, IncidentStatus


@pytest.fixture
def services(app):
    return app.extensions["incident"]


class TestTokenViews(ViewTestMixin):
    def test_approve_requires_parameters(self):
        response = self.client.get("/api/approve?incidentId=1")

        assert response.status_code == 400
        assert response.data == b"Missing parameters"

    def test_dismiss_rejects_non_numeric_incident(self):
        response = self.client.get("/api/dismiss?incidentId=abc&token=t")
        assert response.status_code == 400

    def test_approve_rejects_unknown_token(self, make_incident):
        incident = make_incident(status=IncidentStatus.NOTIFIED)

        response = self.client.get(
            f"/api/approve?incidentId={incident.id}&token=bogus"
        )

        assert response.status_code == 403
        assert response.mimetype == "text/plain"
        assert response.data == b"Invalid token"

    def test_approve_triggers_redeploy(self, services, make_incident):
        incident = make_incident(status=IncidentStatus.NOTIFIED)
        raw_token = services.approvals.issue(incident.id)
        self.session.commit()

        with patch.object(services.remediation, "trigger", return_value=True):
            response = self.client.get(
                f"/api/approve?incidentId={incident.id}&token={raw_token}"
            )
            replay = self.client.get(
                f"/api/approve?incidentId={incident.id}&token={raw_token}"
            )

        assert response.status_code == 200
        assert response.data == b"Redeploy successfully triggered!"
        assert replay.status_code == 403
        assert replay.data == b"Token already used"

    def test_approve_reports_hook_failure(self, services):
        with patch.object(
            services.lifecycle,
            "confirm_approval",
            side_effect=RemediationFailed("Failed to trigger redeploy via hook"),
        ):
            response = self.client.get("/api/approve?incidentId=1&token=t")

        assert response.status_code == 502
        assert response.data == b"Failed to trigger redeploy via hook"

    def test_dismiss(self, services, make_incident):
        incident = make_incident(status=IncidentStatus.NOTIFIED)
        raw_token = services.approvals.issue(incident.id)
        self.session.commit()

        response = self.client.get(
            f"/api/dismiss?incidentId={incident.id}&token={raw_token}"
        )

        assert response.status_code == 200
        assert response.data == b"Incident successfully dismissed."

    def test_dismiss_expired(self, services):
        with patch.object(
            services.lifecycle, "confirm_dismissal", side_effect=TokenExpired()
        ):
            response = self.client.get("/api/dismiss?incidentId=1&token=t")

        assert response.status_code == 403
        assert response.data == b"Token expired"


class TestAgentViews(ViewTestMixin):
    @patch("deploywatch.incident.views.run_agent")
    def test_poll_now(self, run_agent):
        run_agent.return_value = {"status": "success", "incidents_found": 2}

        response = self.client.post("/api/poll-now")

        assert response.status_code == 200
        assert response.get_json() == {"status": "success", "incidents_found": 2}
        assert run_agent.call_args.args[0] is current_app.extensions["incident"]

    @patch("deploywatch.incident.views.run_agent")
    def test_cron_poll_reports_errors(self, run_agent):
        run_agent.side_effect = RuntimeError("VERCEL_TOKEN is not configured.")

        response = self.client.get("/api/cron/poll-logs")

        assert response.status_code == 500
        assert response.get_json() == {"error": "VERCEL_TOKEN is not configured."}


class TestIncidentViews(ViewTestMixin):
    def test_list_incidents_empty(self):
        response = self.client.get("/incidents/")
        assert response.status_code == 200
        assert response.get_json() == []

    def test_list_includes_deployment(self, make_incident):
        make_incident()

        data = self.client.get("/incidents/").get_json()

        assert len(data) == 1
        assert data[0]["deployment"]["external_id"] == "dpl_test"
        assert data[0]["status"] == "OPEN"

    def test_get_incident_not_found(self):
        response = self.client.get("/incidents/9999")

        assert response.status_code == 404
        assert response.get_json() == {"error": "Incident 9999 not found"}

    def test_get_incident_detail(self, make_incident):
        incident = make_incident()
        analysis = Analysis(error_signature=incident.error_signature, summary="s")
        self.session.add(analysis)
        self.session.flush()
        incident.analysis_id = analysis.id
        self.session.commit()

        data = self.client.get(f"/incidents/{incident.id}").get_json()

        assert data["analysis"]["summary"] == "s"
        assert [e["row_id"] for e in data["events"]] == ["row_1"]

    def test_action_dismiss(self, make_incident):
        incident = make_incident()

        response = self.client.post(
            f"/incidents/{incident.id}/action", json={"action": "dismiss"}
        )

        assert response.status_code == 200
        assert response.get_json() == {"success": True, "status": "DISMISSED"}

    def test_action_redeploy_alias(self, services, make_incident):
        incident = make_incident()

        with patch.object(services.remediation, "trigger", return_value=True):
            response = self.client.post(
                f"/incidents/{incident.id}/action", json={"action": "redeploy"}
            )

        assert response.get_json()["status"] == "REDEPLOY_TRIGGERED"

    def test_action_without_hook_is_bad_gateway(self, make_incident):
        incident = make_incident()

        response = self.client.post(
            f"/incidents/{incident.id}/action", json={"action": "approve"}
        )

        assert response.status_code == 502
        assert response.get_json() == {"error": "DEPLOY_HOOK_URL not configured"}

    def test_action_on_closed_incident_is_conflict(self, make_incident):
        incident = make_incident(status=IncidentStatus.DISMISSED)

        response = self.client.post(
            f"/incidents/{incident.id}/action", json={"action": "approve"}
        )

        assert response.status_code == 409

    def test_action_invalid(self, make_incident):
        incident = make_incident()

        response = self.client.post(
            f"/incidents/{incident.id}/action", json={"action": "reboot"}
        )

        assert response.status_code == 400
        assert response.get_json() == {"error": "Invalid action"}

    def test_action_unknown_incident(self):
        response = self.client.post(
            "/incidents/9999/action", json={"action": "dismiss"}
        )
        assert response.status_code == 404
