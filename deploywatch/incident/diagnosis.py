"""Diagnosis service – turns incident evidence into a cached Analysis.

This module is the single integration point between the incident engine and
the Backboard.io LLM. It exposes synchronous helpers (safe to call from
Flask views and Celery tasks) that internally run the async Backboard client
via ``asyncio.run``.

Analyses are keyed by error signature: the first incident with a signature
pays for the LLM call, later incidents sharing it reuse the stored report.
Re-requesting a diagnosis for an incident that stayed OPEN is therefore safe.

Typical flow
------------
1. ``setup_assistant()``                 – one-time: create assistant + thread
2. ``DiagnosisService.diagnose(sig, …)`` – cached lookup, else LLM request
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from deploywatch.incident.backboard_client import BackboardClient
from deploywatch.incident.errors import DiagnosisError
from deploywatch.incident.models import Analysis

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a site reliability assistant. Given an error signature and "
    "recent redacted log lines from a production deployment, explain the "
    "most likely causes and whether redeploying the last good build is "
    "an appropriate remediation. Always answer with a single JSON object."
)

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


@dataclass
class LikelyCause:
    cause: str
    confidence: float
    evidence: str = ""


@dataclass
class DiagnosisReport:
    summary: str
    likely_causes: list[LikelyCause] = field(default_factory=list)
    recommended_action: str = ""
    next_steps: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _run_async(coro: Any) -> Any:
    """Run an async coroutine from synchronous code."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop and loop.is_running():
        import concurrent.futures

        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()

    return asyncio.run(coro)


def build_prompt(error_signature: str, evidence_lines: list[str]) -> str:
    """Build the diagnosis request text sent to the LLM."""
    parts = [
        f"Error signature: {error_signature}",
        "Recent log lines (newest first):",
    ]
    parts.extend(f"- {line}" for line in evidence_lines)
    parts.append(
        "Respond with JSON only, using exactly these keys:\n"
        '{"summary": string, '
        '"likely_causes": [{"cause": string, "confidence": number 0..1, '
        '"evidence": string}], '
        '"recommended_action": string, '
        '"next_steps": [string]}\n'
        "Order likely_causes from most to least likely."
    )
    return "\n".join(parts)


def parse_report(content: str) -> DiagnosisReport:
    """Parse the LLM answer into a ``DiagnosisReport``.

    Tolerates prose or code fences around the JSON object.

    :raises DiagnosisError: when no usable JSON object is found
    """
    match = _JSON_OBJECT_RE.search(content or "")
    if not match:
        raise DiagnosisError("Diagnosis response contained no JSON object")

    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise DiagnosisError(f"Diagnosis response is not valid JSON: {exc}") from exc

    if not isinstance(payload, dict) or not payload.get("summary"):
        raise DiagnosisError("Diagnosis response is missing a summary")

    causes = []
    for item in payload.get("likely_causes") or []:
        if not isinstance(item, dict) or not item.get("cause"):
            continue
        try:
            confidence = float(item.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0
        causes.append(
            LikelyCause(
                cause=str(item["cause"]),
                confidence=min(max(confidence, 0.0), 1.0),
                evidence=str(item.get("evidence") or ""),
            )
        )

    return DiagnosisReport(
        summary=str(payload["summary"]),
        likely_causes=causes,
        recommended_action=str(payload.get("recommended_action") or ""),
        next_steps=[str(step) for step in payload.get("next_steps") or []],
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def setup_assistant(
    api_key: str,
    base_url: str,
    name: str = "DeployWatch Diagnosis Assistant",
    system_prompt: str = SYSTEM_PROMPT,
) -> dict:
    """Create a Backboard assistant **and** an initial thread.

    Returns a dict with ``assistant_id`` and ``thread_id``.
    Both should be persisted in ``.env`` as ``BACKBOARD_ASSISTANT_ID``
    and ``BACKBOARD_THREAD_ID`` respectively.
    """

    async def _inner() -> dict:
        async with BackboardClient(api_key=api_key, base_url=base_url) as client:
            assistant = await client.create_assistant(
                name=name,
                system_prompt=system_prompt,
            )
            thread = await client.create_thread(assistant.assistant_id)
            return {
                "assistant_id": assistant.assistant_id,
                "thread_id": thread.thread_id,
            }

    result = _run_async(_inner())
    logger.info(
        "Backboard assistant created: assistant_id=%s thread_id=%s",
        result["assistant_id"],
        result["thread_id"],
    )
    return result


class DiagnosisService:
    """Get-or-create the Analysis for an error signature."""

    def __init__(
        self,
        session,
        api_key: str,
        thread_id: str,
        base_url: str = "https://app.backboard.io/api",
        llm_provider: str = "openai",
        model_name: str = "gpt-4o-mini",
        timeout: float = 60.0,
    ) -> None:
        self._session = session
        self._api_key = api_key
        self._thread_id = thread_id
        self._base_url = base_url
        self._llm_provider = llm_provider
        self._model_name = model_name
        self._timeout = timeout

    def diagnose(self, error_signature: str, evidence_lines: list[str]) -> Analysis:
        """Return the cached Analysis for a signature, requesting it if new."""
        analysis = self._cached(error_signature)
        if analysis is not None:
            logger.debug("Reusing analysis %s", analysis.id)
            return analysis

        report = self.request_report(error_signature, evidence_lines)

        self._session.add(
            Analysis(
                error_signature=error_signature,
                summary=report.summary,
                likely_causes_json=json.dumps(
                    [
                        {
                            "cause": c.cause,
                            "confidence": c.confidence,
                            "evidence": c.evidence,
                        }
                        for c in report.likely_causes
                    ]
                ),
                recommended_action=report.recommended_action,
                next_steps_json=json.dumps(report.next_steps),
                model_used=self._model_name,
            )
        )
        try:
            self._session.commit()
        except IntegrityError:
            # Another run stored the same signature first; keep theirs.
            self._session.rollback()

        analysis = self._cached(error_signature)
        logger.info(
            "Stored analysis %s for signature %s",
            analysis.id,
            error_signature[:12],
        )
        return analysis

    def request_report(
        self, error_signature: str, evidence_lines: list[str]
    ) -> DiagnosisReport:
        """Ask Backboard for a diagnosis of the given evidence."""
        if not self._thread_id:
            raise RuntimeError(
                "BACKBOARD_THREAD_ID is not configured.  "
                "Run `flask setup-assistant` first and save both "
                "BACKBOARD_ASSISTANT_ID and BACKBOARD_THREAD_ID."
            )

        prompt = build_prompt(error_signature, evidence_lines)

        async def _inner():
            async with BackboardClient(
                api_key=self._api_key,
                base_url=self._base_url,
                timeout=self._timeout,
            ) as client:
                return await client.add_message(
                    thread_id=self._thread_id,
                    content=prompt,
                    llm_provider=self._llm_provider,
                    model_name=self._model_name,
                )

        response = _run_async(_inner())
        return parse_report(response.content)

    def _cached(self, error_signature: str) -> Analysis | None:
        return self._session.scalar(
            select(Analysis).filter_by(error_signature=error_signature)
        )
