"""Render the new-incident email."""

from urllib.parse import urlencode

from jinja2 import Environment, PackageLoader, select_autoescape

SUBJECT_TITLE_LENGTH = 50

_env = Environment(
    loader=PackageLoader("deploywatch.incident", "templates"),
    autoescape=select_autoescape(["html"]),
)


def action_url(base_url, action, incident_id, raw_token):
    """Build the approve / dismiss link carried by the email."""
    query = urlencode({"incidentId": incident_id, "token": raw_token})
    return f"{base_url.rstrip('/')}/api/{action}?{query}"


def render_incident_email(incident, analysis, approve_url, dismiss_url):
    """
    Return the subject and HTML body of a new-incident notification.

    :param incident: Incident being announced
    :param analysis: Its Analysis, or None
    :return: tuple of (subject, html)
    """
    subject = f"[Incident] {incident.title[:SUBJECT_TITLE_LENGTH]}"
    html = _env.get_template("incident/email/new_incident.html").render(
        incident=incident,
        analysis=analysis,
        approve_url=approve_url,
        dismiss_url=dismiss_url,
    )
    return subject, html
