"""Exceptions raised by the incident engine.

Each carries the HTTP status the blueprints answer with.
"""


class IncidentError(Exception):
    status_code = 500


class DeploymentNotFound(IncidentError):
    status_code = 404

    def __init__(self, deployment_id):
        super().__init__(f"Deployment {deployment_id} not found")
        self.deployment_id = deployment_id


class IncidentNotFound(IncidentError):
    status_code = 404

    def __init__(self, incident_id):
        super().__init__(f"Incident {incident_id} not found")
        self.incident_id = incident_id


class ApprovalRejected(IncidentError):
    """Base for every approval-token rejection. Never retried."""

    status_code = 403


class TokenInvalid(ApprovalRejected):
    def __init__(self, message="Invalid token"):
        super().__init__(message)


class TokenAlreadyUsed(ApprovalRejected):
    def __init__(self, message="Token already used"):
        super().__init__(message)


class TokenExpired(ApprovalRejected):
    def __init__(self, message="Token expired"):
        super().__init__(message)


class InvalidTransition(IncidentError):
    status_code = 409


class RemediationFailed(IncidentError):
    status_code = 502


class DiagnosisError(IncidentError):
    status_code = 502


class NotificationError(IncidentError):
    status_code = 502
