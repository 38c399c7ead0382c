"""Process-wide wiring of the incident engine and its collaborators."""

import datetime
import logging
from dataclasses import dataclass

from deploywatch.incident.approvals import ApprovalTokenService
from deploywatch.incident.clusterer import IncidentClusterer
from deploywatch.incident.diagnosis import DiagnosisService
from deploywatch.incident.lifecycle import IncidentLifecycle
from deploywatch.incident.mailer import Mailer
from deploywatch.vercel.client import RemediationHook, VercelClient

logger = logging.getLogger(__name__)


@dataclass
class IncidentServices:
    vercel: VercelClient
    remediation: RemediationHook
    mailer: Mailer
    diagnosis: DiagnosisService
    clusterer: IncidentClusterer
    approvals: ApprovalTokenService
    lifecycle: IncidentLifecycle
    log_stream_max_events: int = 300
    log_stream_max_duration: float = 2.0

    def close(self):
        """Release pooled connections held by the collaborators."""
        self.vercel.close()
        logger.debug("Incident services closed")


def build_services(config, session):
    """
    Build every collaborator once from the app config.

    :param config: Flask config mapping
    :param session: Scoped SQLAlchemy session shared by the engine
    :return: IncidentServices
    """
    vercel = VercelClient(
        token=config["VERCEL_TOKEN"],
        project_id=config["VERCEL_PROJECT_ID"],
        team_id=config.get("VERCEL_TEAM_ID", ""),
        team_slug=config.get("VERCEL_TEAM_SLUG", ""),
        api_url=config.get("VERCEL_API_URL", "https://api.vercel.com"),
    )
    remediation = RemediationHook(config.get("DEPLOY_HOOK_URL", ""))
    mailer = Mailer(
        smtp_host=config.get("SMTP_HOST", ""),
        from_address=config["MAIL_FROM"],
        smtp_port=config.get("SMTP_PORT", 587),
        username=config.get("SMTP_USERNAME"),
        password=config.get("SMTP_PASSWORD"),
        use_tls=config.get("SMTP_USE_TLS", True),
        timeout=config.get("SMTP_TIMEOUT", 30),
    )
    diagnosis = DiagnosisService(
        session,
        api_key=config.get("BACKBOARD_API_KEY", ""),
        thread_id=config.get("BACKBOARD_THREAD_ID", ""),
        base_url=config.get("BACKBOARD_BASE_URL", "https://app.backboard.io/api"),
        llm_provider=config.get("BACKBOARD_LLM_PROVIDER", "openai"),
        model_name=config.get("BACKBOARD_MODEL_NAME", "gpt-4o-mini"),
    )
    clusterer = IncidentClusterer(
        session,
        window=datetime.timedelta(minutes=config.get("DEDUP_WINDOW_MINUTES", 30)),
    )
    approvals = ApprovalTokenService(session)
    lifecycle = IncidentLifecycle(
        session,
        diagnosis=diagnosis,
        mailer=mailer,
        approvals=approvals,
        remediation=remediation,
        base_url=config["BASE_URL"],
        notify_to=config.get("NOTIFY_TO_EMAIL", ""),
        evidence_lines=config.get("EVIDENCE_LINES", 10),
        approval_ttl=datetime.timedelta(hours=config.get("APPROVAL_TTL_HOURS", 24)),
    )

    return IncidentServices(
        vercel=vercel,
        remediation=remediation,
        mailer=mailer,
        diagnosis=diagnosis,
        clusterer=clusterer,
        approvals=approvals,
        lifecycle=lifecycle,
        log_stream_max_events=config.get("LOG_STREAM_MAX_EVENTS", 300),
        log_stream_max_duration=config.get("LOG_STREAM_MAX_DURATION_SECONDS", 2.0),
    )
