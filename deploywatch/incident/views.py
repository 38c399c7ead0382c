"""Incident blueprints.

Token confirmation (plain text – opened from the notification email)
--------------------------------------------------------------------
GET  /api/approve?incidentId=&token=  – redeem an approve token and redeploy
GET  /api/dismiss?incidentId=&token=  – redeem a token as a dismissal

Agent triggers (JSON)
---------------------
POST /api/poll-now                    – run one polling cycle now
GET  /api/cron/poll-logs              – scheduler tick

Incidents (JSON)
----------------
GET  /incidents/                      – all incidents, most recently seen first
GET  /incidents/<id>                  – detail with newest events and analysis
POST /incidents/<id>/action           – direct approve / redeploy / dismiss
"""

from __future__ import annotations

import logging

from flask import Blueprint, Response, current_app, jsonify, request
from sqlalchemy import select

from deploywatch.extensions import db
from deploywatch.incident.agent import run_agent
from deploywatch.incident.errors import IncidentError, IncidentNotFound
from deploywatch.incident.models import ApprovalAction, Incident, IncidentEvent

logger = logging.getLogger(__name__)

DETAIL_EVENT_LIMIT = 50

# Operator-facing action names accepted by the direct action endpoint.
ACTION_ALIASES = {
    "approve": ApprovalAction.APPROVE,
    "redeploy": ApprovalAction.APPROVE,
    "dismiss": ApprovalAction.DISMISS,
}

api = Blueprint("api", __name__, url_prefix="/api")

incident_bp = Blueprint("incident", __name__, url_prefix="/incidents")


def _services():
    return current_app.extensions["incident"]


def _text(body, status=200):
    return Response(body, status=status, mimetype="text/plain")


# ---------------------------------------------------------------------------
# Token confirmation
# ---------------------------------------------------------------------------

def _token_params():
    incident_id = request.args.get("incidentId", type=int)
    token = request.args.get("token")
    if incident_id is None or not token:
        return None, None
    return incident_id, token


@api.get("/approve")
def approve():
    incident_id, token = _token_params()
    if incident_id is None:
        return _text("Missing parameters", 400)

    try:
        _services().lifecycle.confirm_approval(incident_id, token)
    except IncidentError as exc:
        return _text(str(exc), exc.status_code)

    return _text("Redeploy successfully triggered!")


@api.get("/dismiss")
def dismiss():
    incident_id, token = _token_params()
    if incident_id is None:
        return _text("Missing parameters", 400)

    try:
        _services().lifecycle.confirm_dismissal(incident_id, token)
    except IncidentError as exc:
        return _text(str(exc), exc.status_code)

    return _text("Incident successfully dismissed.")


# ---------------------------------------------------------------------------
# Agent triggers
# ---------------------------------------------------------------------------

def _run_agent_response():
    try:
        result = run_agent(_services(), db.session)
    except Exception as exc:
        logger.exception("Agent run failed")
        return jsonify({"error": str(exc)}), 500
    return jsonify(result)


@api.post("/poll-now")
def poll_now():
    """Run the agent immediately (manual trigger)."""
    return _run_agent_response()


@api.get("/cron/poll-logs")
def cron_poll_logs():
    """Run the agent on a scheduler tick."""
    return _run_agent_response()


# ---------------------------------------------------------------------------
# Incidents
# ---------------------------------------------------------------------------

@incident_bp.errorhandler(IncidentError)
def handle_incident_error(exc):
    return jsonify({"error": str(exc)}), exc.status_code


@incident_bp.get("/")
def list_incidents():
    """Return all incidents ordered by most recently seen first."""
    incidents = db.session.scalars(
        select(Incident).order_by(Incident.last_seen_at.desc())
    ).all()

    payload = []
    for incident in incidents:
        data = incident.to_dict()
        data["deployment"] = incident.deployment.to_dict()
        payload.append(data)
    return jsonify(payload)


@incident_bp.get("/<int:incident_id>")
def get_incident(incident_id: int):
    """Return an incident with its newest events and analysis."""
    incident = db.session.get(Incident, incident_id)
    if incident is None:
        raise IncidentNotFound(incident_id)

    events = db.session.scalars(
        select(IncidentEvent)
        .filter_by(incident_id=incident_id)
        .order_by(IncidentEvent.timestamp_in_ms.desc())
        .limit(DETAIL_EVENT_LIMIT)
    ).all()

    data = incident.to_dict()
    data["deployment"] = incident.deployment.to_dict()
    data["events"] = [e.to_dict() for e in events]
    data["analysis"] = incident.analysis.to_dict() if incident.analysis else None
    return jsonify(data)


@incident_bp.post("/<int:incident_id>/action")
def incident_action(incident_id: int):
    """Apply an operator decision without a token.

    Expects JSON body::

        {"action": "redeploy"}   # or "approve" / "dismiss"
    """
    data = request.get_json(force=True, silent=True) or {}
    action = ACTION_ALIASES.get(str(data.get("action", "")).lower())
    if action is None:
        return jsonify({"error": "Invalid action"}), 400

    status = _services().lifecycle.apply_action(incident_id, action)
    return jsonify({"success": True, "status": status})
