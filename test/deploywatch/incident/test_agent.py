"""Tests for one agent polling cycle."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy import select

from deploywatch.incident.agent import run_agent
from deploywatch.incident.clusterer import IncidentClusterer
from deploywatch.incident.models import Deployment, Incident

NOW_MS = 1772366400000


@pytest.fixture
def services(session, clock):
    services = MagicMock()
    services.vercel.project_id = "prj_test"
    services.clusterer = IncidentClusterer(session, clock=clock)
    services.lifecycle.handle_new_incidents.return_value = 1
    services.log_stream_max_events = 300
    services.log_stream_max_duration = 2.0
    return services


class TestRunAgent:
    def test_no_deployment(self, session, services):
        services.vercel.get_latest_deployment.return_value = None

        assert run_agent(services, session) == {"status": "no_deployment"}
        services.vercel.stream_logs.assert_not_called()

    def test_no_logs_still_registers_deployment(self, session, services):
        services.vercel.get_latest_deployment.return_value = {"uid": "dpl_1"}
        services.vercel.stream_logs.return_value = iter([])

        assert run_agent(services, session) == {"status": "no_logs"}
        assert session.scalars(select(Deployment)).one().external_id == "dpl_1"
        services.lifecycle.handle_new_incidents.assert_not_called()

    def test_success(self, session, services):
        services.vercel.get_latest_deployment.return_value = {
            "uid": "dpl_1",
            "target": "production",
        }
        services.vercel.stream_logs.return_value = iter(
            [
                {
                    "id": "row_1",
                    "timestamp": NOW_MS,
                    "level": "error",
                    "message": "upstream request timeout",
                    "proxy": {"method": "GET", "path": "/api/users", "statusCode": 504},
                },
                {
                    "id": "row_2",
                    "timestamp": NOW_MS + 1000,
                    "level": "info",
                    "message": "GET /api/health 200",
                },
            ]
        )

        result = run_agent(services, session)

        assert result == {"status": "success", "incidents_found": 1}
        services.vercel.get_latest_deployment.assert_called_once_with("prj_test")
        services.vercel.stream_logs.assert_called_once_with(
            "dpl_1", max_events=300, max_duration=2.0
        )
        services.lifecycle.handle_new_incidents.assert_called_once_with("dpl_1")

        incident = session.scalars(select(Incident)).one()
        assert incident.request_path == "/api/users"

    def test_requires_project(self, session, services):
        services.vercel.project_id = ""

        with pytest.raises(RuntimeError, match="VERCEL_PROJECT_ID"):
            run_agent(services, session)
