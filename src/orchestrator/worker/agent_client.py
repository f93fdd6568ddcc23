from __future__ import annotations

import logging
from typing import Any

import httpx

from src.setup.worker_config import WorkerSettings, get_worker_settings

logger = logging.getLogger(__name__)


class AgentRuntimeError(Exception):
    """The agent runtime could not run a skill."""


class AgentRuntimeClient:
    """
    HTTP client for the agent runtime that executes skills.

    The runtime receives the worker message as JSON at ``POST /skills/{skill_id}/run``
    and answers with ``{"result": ...}``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 900.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: WorkerSettings | None = None) -> AgentRuntimeClient:
        settings = settings or get_worker_settings()
        return cls(settings.AGENT_RUNTIME_URL, timeout=settings.AGENT_TIMEOUT_SEC)

    async def run(self, message: dict[str, Any]) -> Any:
        # Timeouts follow the task's own budget when it is tighter than the client default.
        timeout = min(self._timeout, float(message.get("timeout_seconds") or self._timeout))
        url = f"{self._base_url}/skills/{message['skill_id']}/run"
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(url, json=message)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPError as exc:
            logger.warning(
                "Agent runtime call failed",
                extra={"task_id": message.get("task_id"), "skill_id": message.get("skill_id")},
            )
            raise AgentRuntimeError(f"{type(exc).__name__}: {exc}") from exc
        except ValueError as exc:
            raise AgentRuntimeError("Agent runtime returned a non-JSON body") from exc

        if not isinstance(body, dict) or "result" not in body:
            raise AgentRuntimeError("Agent runtime response has no result")
        return body["result"]
