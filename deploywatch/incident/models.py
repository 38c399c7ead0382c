import enum
import json

from lib.util_datetime import utcnow
from deploywatch.extensions import db


class IncidentStatus(enum.StrEnum):
    OPEN = "OPEN"
    NOTIFIED = "NOTIFIED"
    APPROVED_REDEPLOY = "APPROVED_REDEPLOY"
    REDEPLOY_TRIGGERED = "REDEPLOY_TRIGGERED"
    DISMISSED = "DISMISSED"


class ApprovalAction(enum.StrEnum):
    APPROVE = "approve"
    DISMISS = "dismiss"


class Deployment(db.Model):
    """A release target whose runtime logs are polled."""

    __tablename__ = "deployments"

    id = db.Column(db.Integer, primary_key=True)

    # Deployment id assigned by the provider, e.g. dpl_abc123.
    external_id = db.Column(db.String(128), nullable=False, unique=True)

    target = db.Column(db.String(64), nullable=False, default="production")

    # High-water mark: logs at or below this timestamp are already ingested.
    last_processed_timestamp_in_ms = db.Column(
        db.BigInteger, nullable=False, default=0
    )
    last_polled_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "external_id": self.external_id,
            "target": self.target,
            "last_processed_timestamp_in_ms": (
                self.last_processed_timestamp_in_ms
            ),
            "last_polled_at": _isoformat(self.last_polled_at),
            "created_at": _isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<Deployment {self.external_id}>"


class Analysis(db.Model):
    """Diagnosis report, cached once per error signature."""

    __tablename__ = "analyses"

    id = db.Column(db.Integer, primary_key=True)
    error_signature = db.Column(db.String(64), nullable=False, unique=True)
    summary = db.Column(db.Text, nullable=False, default="")

    # Ordered [{"cause", "confidence", "evidence"}] stored as JSON text.
    likely_causes_json = db.Column(db.Text, nullable=False, default="[]")
    recommended_action = db.Column(db.Text, nullable=False, default="")
    next_steps_json = db.Column(db.Text, nullable=False, default="[]")
    model_used = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    @property
    def likely_causes(self):
        return json.loads(self.likely_causes_json or "[]")

    @property
    def next_steps(self):
        return json.loads(self.next_steps_json or "[]")

    def to_dict(self):
        return {
            "id": self.id,
            "error_signature": self.error_signature,
            "summary": self.summary,
            "likely_causes": self.likely_causes,
            "recommended_action": self.recommended_action,
            "next_steps": self.next_steps,
            "model_used": self.model_used,
            "created_at": _isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<Analysis {self.error_signature[:12]}>"


class Incident(db.Model):
    """A cluster of error events sharing one signature."""

    __tablename__ = "incidents"
    __table_args__ = (
        db.Index(
            "ix_incidents_signature_status_last_seen",
            "error_signature",
            "status",
            "last_seen_at",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    error_signature = db.Column(db.String(64), nullable=False, index=True)

    # First 100 characters of the (redacted) first message.
    title = db.Column(db.String(100), nullable=False, default="")

    status = db.Column(
        db.String(32), nullable=False, default=IncidentStatus.OPEN
    )
    severity = db.Column(db.String(16), nullable=False, default="P2")

    deployment_id = db.Column(
        db.Integer,
        db.ForeignKey("deployments.id"),
        nullable=False,
        index=True,
    )
    request_path = db.Column(db.Text, nullable=True)

    event_count = db.Column(db.Integer, nullable=False, default=0)
    first_seen_at = db.Column(db.DateTime, nullable=False)
    last_seen_at = db.Column(db.DateTime, nullable=False)

    analysis_id = db.Column(
        db.Integer, db.ForeignKey("analyses.id"), nullable=True
    )

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    deployment = db.relationship("Deployment")
    analysis = db.relationship("Analysis")
    events = db.relationship(
        "IncidentEvent",
        back_populates="incident",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="IncidentEvent.timestamp_in_ms.desc()",
    )
    approvals = db.relationship(
        "Approval",
        back_populates="incident",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def to_dict(self):
        """Serialise for JSON responses."""
        return {
            "id": self.id,
            "error_signature": self.error_signature,
            "title": self.title,
            "status": self.status,
            "severity": self.severity,
            "deployment_id": self.deployment_id,
            "request_path": self.request_path,
            "event_count": self.event_count,
            "first_seen_at": _isoformat(self.first_seen_at),
            "last_seen_at": _isoformat(self.last_seen_at),
            "analysis_id": self.analysis_id,
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<Incident {self.id} [{self.status}] x{self.event_count}>"


class IncidentEvent(db.Model):
    """One redacted log occurrence. Immutable once written."""

    __tablename__ = "incident_events"

    id = db.Column(db.Integer, primary_key=True)
    incident_id = db.Column(
        db.Integer,
        db.ForeignKey("incidents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Provider row id; unique so a log line is attached at most once.
    row_id = db.Column(db.String(128), nullable=False, unique=True)
    timestamp_in_ms = db.Column(db.BigInteger, nullable=False)
    level = db.Column(db.String(16), nullable=False, default="info")
    source = db.Column(db.String(64), nullable=True)
    message = db.Column(db.Text, nullable=False, default="")
    request_method = db.Column(db.String(16), nullable=True)
    request_path = db.Column(db.Text, nullable=True)
    response_status_code = db.Column(db.Integer, nullable=True)

    incident = db.relationship("Incident", back_populates="events")

    def to_dict(self):
        return {
            "id": self.id,
            "incident_id": self.incident_id,
            "row_id": self.row_id,
            "timestamp_in_ms": self.timestamp_in_ms,
            "level": self.level,
            "source": self.source,
            "message": self.message,
            "request_method": self.request_method,
            "request_path": self.request_path,
            "response_status_code": self.response_status_code,
        }

    def __repr__(self):
        return f"<IncidentEvent {self.row_id} incident={self.incident_id}>"


class Approval(db.Model):
    """Single-use, time-limited authorization for one incident action.

    Only the SHA-256 digest of the bearer token is stored.
    """

    __tablename__ = "approvals"

    id = db.Column(db.Integer, primary_key=True)
    incident_id = db.Column(
        db.Integer,
        db.ForeignKey("incidents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token_hash = db.Column(db.String(64), nullable=False, unique=True)
    token_expires_at = db.Column(db.DateTime, nullable=False)

    # Set exactly once, on redemption or revocation.
    used_at = db.Column(db.DateTime, nullable=True)
    action = db.Column(
        db.String(16), nullable=False, default=ApprovalAction.APPROVE
    )

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    incident = db.relationship("Incident", back_populates="approvals")

    def to_dict(self):
        return {
            "id": self.id,
            "incident_id": self.incident_id,
            "token_expires_at": _isoformat(self.token_expires_at),
            "used_at": _isoformat(self.used_at),
            "action": self.action,
            "created_at": _isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<Approval {self.id} incident={self.incident_id}>"


def _isoformat(value):
    return value.isoformat() if value else None
