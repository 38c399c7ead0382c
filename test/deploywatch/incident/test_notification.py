"""Tests for the new-incident email."""

from deploywatch.incident.models import Analysis, Incident
from deploywatch.incident.notification import action_url, render_incident_email


def _incident(title="upstream request timeout"):
    return Incident(
        id=7,
        error_signature="f" * 64,
        title=title,
        request_path="/api/users",
        event_count=3,
        severity="P2",
    )


def test_action_url_encodes_parameters():
    url = action_url("https://watch.example.com/", "approve", 7, "abc123")

    assert url == "https://watch.example.com/api/approve?incidentId=7&token=abc123"


def test_subject_truncates_title():
    subject, _ = render_incident_email(
        _incident(title="x" * 80), None, "https://a", "https://d"
    )
    assert subject == "[Incident] " + "x" * 50


def test_body_includes_analysis_and_links():
    analysis = Analysis(
        summary="Pool exhausted",
        recommended_action="redeploy",
        likely_causes_json='[{"cause": "Too many clients", "confidence": 0.8, "evidence": "504s"}]',
        next_steps_json='["Approve the redeploy"]',
    )

    _, html = render_incident_email(
        _incident(),
        analysis,
        "https://watch.example.com/api/approve?incidentId=7&token=t",
        "https://watch.example.com/api/dismiss?incidentId=7&token=t",
    )

    assert "Pool exhausted" in html
    assert "Too many clients" in html
    assert "Approve the redeploy" in html
    assert "/api/approve?incidentId=7&amp;token=t" in html
    assert "/api/dismiss?incidentId=7&amp;token=t" in html
    assert "f" * 64 in html


def test_body_escapes_log_content():
    _, html = render_incident_email(
        _incident(title="<script>alert(1)</script>"), None, "https://a", "https://d"
    )

    assert "<script>" not in html
    assert "&lt;script&gt;" in html
