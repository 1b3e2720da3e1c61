from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from duksitext.services.local_reply import generate_local_reply
from duksitext.services.personas import resolve_bot

logger = logging.getLogger(__name__)


class ReplyError(Exception):
    """A reply could not be obtained for one send cycle."""


@dataclass(frozen=True)
class ReplyRequest:
    contact: str
    message: str
    history: list[dict[str, str]] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {"contact": self.contact, "message": self.message, "history": self.history}


class ReplyClient(Protocol):
    async def reply(self, request: ReplyRequest) -> str: ...

    async def aclose(self) -> None: ...


class RemoteReplyClient:
    """Calls the backend's POST /api/chat."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout_sec: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout=timeout_sec),
            transport=transport,
        )

    async def reply(self, request: ReplyRequest) -> str:
        try:
            response = await self._client.post("/api/chat", json=request.to_payload())
        except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError) as exc:
            logger.warning("reply_request_failed contact=%s err=%s", request.contact, exc)
            raise ReplyError(f"transport error: {exc}") from exc

        if response.status_code != 200:
            details = _error_details(response)
            logger.warning(
                "reply_request_rejected contact=%s status=%s details=%s",
                request.contact,
                response.status_code,
                details,
            )
            raise ReplyError(details or f"http_{response.status_code}")

        try:
            data: Any = response.json()
        except ValueError as exc:
            raise ReplyError("reply body is not JSON") from exc
        reply = data.get("reply") if isinstance(data, dict) else None
        if not isinstance(reply, str):
            raise ReplyError("reply body has no 'reply' string")
        return reply

    async def aclose(self) -> None:
        await self._client.aclose()


class LocalReplyClient:
    """Rule-based replies generated in-process, for running without a backend."""

    async def reply(self, request: ReplyRequest) -> str:
        return generate_local_reply(resolve_bot(request.contact), request.message, request.history)

    async def aclose(self) -> None:
        return None


def _error_details(response: httpx.Response) -> str | None:
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict) and isinstance(data.get("details"), str):
        return data["details"]
    return None
