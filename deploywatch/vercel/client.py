"""Vercel REST boundary: deployments, runtime logs and the deploy hook.

Runtime logs are served as NDJSON over a long-lived response. The stream is
read with ``requests`` and cut short after ``max_events`` lines or
``max_duration`` seconds, whichever comes first, so one poll never blocks a
worker for long.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Iterator

import requests

from lib.util_datetime import to_epoch_ms, utcnow
from deploywatch.incident.clusterer import LogRecord
from deploywatch.incident.errors import RemediationFailed

logger = logging.getLogger(__name__)

VERCEL_API_URL = "https://api.vercel.com"


class VercelClient:
    """Read-only access to a Vercel project's deployments and logs."""

    def __init__(
        self,
        token: str,
        project_id: str,
        team_id: str = "",
        team_slug: str = "",
        api_url: str = VERCEL_API_URL,
        timeout: float = 10.0,
    ) -> None:
        self._token = token
        self._project_id = project_id
        self._team_id = team_id
        self._team_slug = team_slug
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._session = requests.Session()

    @property
    def project_id(self) -> str:
        return self._project_id

    def close(self) -> None:
        self._session.close()

    def _get(self, path: str, params: dict | None = None, stream: bool = False):
        if not self._token:
            raise RuntimeError("VERCEL_TOKEN is not configured.")

        params = dict(params or {})
        if self._team_id:
            params["teamId"] = self._team_id
        elif self._team_slug:
            params["slug"] = self._team_slug

        response = self._session.get(
            f"{self._api_url}{path}",
            params=params,
            headers={"Authorization": f"Bearer {self._token}"},
            timeout=self._timeout,
            stream=stream,
        )
        if not response.ok:
            body = response.text
            response.close()
            raise requests.HTTPError(
                f"Vercel API error ({response.status_code}): {body}",
                response=response,
            )
        return response

    def get_latest_deployment(self, project_id: str | None = None) -> dict | None:
        """Return the newest READY production deployment, or None."""
        response = self._get(
            "/v6/deployments",
            params={
                "projectId": project_id or self._project_id,
                "target": "production",
                "state": "READY",
                "limit": 1,
            },
        )
        deployments = response.json().get("deployments") or []
        return deployments[0] if deployments else None

    def stream_logs(
        self,
        deployment_id: str,
        max_events: int = 300,
        max_duration: float = 2.0,
    ) -> Iterator[dict]:
        """Yield raw runtime-log events for a deployment."""
        if not self._project_id:
            raise RuntimeError("VERCEL_PROJECT_ID is not configured.")

        response = self._get(
            f"/v1/projects/{self._project_id}/deployments/{deployment_id}"
            "/runtime-logs",
            stream=True,
        )

        count = 0
        started = time.monotonic()
        try:
            for line in response.iter_lines(decode_unicode=True):
                if line and line.strip():
                    try:
                        event = json.loads(line)
                    except ValueError:
                        logger.warning(
                            "Skipping malformed log line for %s", deployment_id
                        )
                    else:
                        yield event
                        count += 1

                if count >= max_events:
                    break
                if time.monotonic() - started > max_duration:
                    break
        finally:
            response.close()

        logger.debug("Read %d log events for %s", count, deployment_id)


def to_log_record(event: dict) -> LogRecord:
    """Map a raw Vercel log event onto a ``LogRecord``."""
    proxy = event.get("proxy") or {}
    status_code = proxy.get("statusCode")

    return LogRecord(
        row_id=str(event.get("id") or event.get("rowId") or uuid.uuid4()),
        timestamp_in_ms=int(
            event.get("timestamp")
            or event.get("timestampInMs")
            or to_epoch_ms(utcnow())
        ),
        level=event.get("level") or "info",
        message=event.get("message") or "",
        source=event.get("source"),
        request_method=proxy.get("method"),
        request_path=proxy.get("path"),
        response_status_code=int(status_code) if status_code is not None else None,
    )


class RemediationHook:
    """POST to a deploy hook to redeploy the last production build."""

    def __init__(self, url: str, timeout: float = 10.0) -> None:
        self.url = url
        self.timeout = timeout

    def trigger(self) -> bool:
        """
        Fire the hook.

        :raises RemediationFailed: no hook configured, or the request failed
        :return: True when the hook answered 2xx
        """
        if not self.url:
            raise RemediationFailed("DEPLOY_HOOK_URL not configured")

        try:
            response = requests.post(self.url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise RemediationFailed(f"Deploy hook request failed: {exc}") from exc

        logger.info("Deploy hook answered %s", response.status_code)
        return 200 <= response.status_code < 300
