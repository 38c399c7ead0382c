"""Thin wrapper around the Backboard.io REST API used for diagnosis.

Uses ``httpx`` for async HTTP; the diagnosis service drives it from sync
code (Flask views, Celery tasks) via ``asyncio.run``.

API Reference: https://docs.backboard.io/

Key operations
--------------
* ``create_assistant``  – provision the diagnosis assistant
* ``create_thread``     – create a conversation thread under an assistant
* ``add_message``       – send a diagnosis prompt and get the LLM response
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lightweight response containers
# ---------------------------------------------------------------------------

@dataclass
class AssistantInfo:
    assistant_id: str
    name: str
    raw: dict = field(default_factory=dict, repr=False)


@dataclass
class ThreadInfo:
    thread_id: str
    raw: dict = field(default_factory=dict, repr=False)


@dataclass
class MessageResponse:
    content: str
    raw: dict = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class BackboardClient:
    """Async context-manager client for Backboard.io.

    Base URL: ``https://app.backboard.io/api``
    Auth: ``X-API-Key`` header.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://app.backboard.io/api",
        timeout: float = 60.0,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    # -- context manager -----------------------------------------------------

    async def __aenter__(self) -> "BackboardClient":
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"X-API-Key": self._api_key},
            timeout=self._timeout,
        )
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # -- helpers -------------------------------------------------------------

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError(
                "BackboardClient must be used as an async context manager"
            )
        return self._client

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        client = self._ensure_client()
        response = await client.request(method, path, **kwargs)
        response.raise_for_status()
        return response.json()

    # -- public API ----------------------------------------------------------

    async def create_assistant(
        self,
        name: str,
        system_prompt: str,
    ) -> AssistantInfo:
        """Create a new Backboard assistant.

        POST /assistants
        """
        data = await self._request(
            "POST",
            "/assistants",
            json={"name": name, "system_prompt": system_prompt},
        )
        aid = data.get("assistant_id", "")
        logger.info("Created Backboard assistant: %s", aid)
        return AssistantInfo(
            assistant_id=aid,
            name=data.get("name", name),
            raw=data,
        )

    async def create_thread(self, assistant_id: str) -> ThreadInfo:
        """Create a conversation thread under an assistant.

        POST /assistants/{assistant_id}/threads
        """
        data = await self._request(
            "POST",
            f"/assistants/{assistant_id}/threads",
            json={},
        )
        tid = data.get("thread_id", "")
        logger.info("Created thread %s for assistant %s", tid, assistant_id)
        return ThreadInfo(thread_id=tid, raw=data)

    async def add_message(
        self,
        thread_id: str,
        content: str,
        llm_provider: str = "openai",
        model_name: str = "gpt-4o-mini",
        memory: str = "Off",
    ) -> MessageResponse:
        """Send a message to a thread and return the LLM answer.

        POST /threads/{thread_id}/messages  (multipart form data)
        """
        client = self._ensure_client()
        response = await client.post(
            f"/threads/{thread_id}/messages",
            data={
                "content": content,
                "llm_provider": llm_provider,
                "model_name": model_name,
                "memory": memory,
                "stream": "false",
            },
        )
        response.raise_for_status()
        data = response.json()

        return MessageResponse(
            content=data.get("content", data.get("message", "")),
            raw=data,
        )
