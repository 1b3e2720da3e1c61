from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

logger = logging.getLogger(__name__)


class UpstreamStatus(StrEnum):
    OK = "ok"
    DISABLED = "disabled"
    UNAVAILABLE = "unavailable"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class UpstreamResult:
    status: UpstreamStatus
    reply: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == UpstreamStatus.OK and self.reply is not None


class UpstreamReplyClient:
    """
    Optional HTTP client for an external reply model.
    POSTs {"bot", "message", "history"} and expects {"reply": "..."} back.
    """

    def __init__(self, *, url: str | None, timeout_sec: float = 12.0) -> None:
        self._url = (url or "").strip()
        self._timeout_sec = max(float(timeout_sec), 0.5)

    @property
    def enabled(self) -> bool:
        return bool(self._url)

    @property
    def url(self) -> str:
        return self._url

    def generate_reply(
        self,
        *,
        bot: str,
        message: str,
        history: list[dict[str, Any]],
    ) -> UpstreamResult:
        if not self.enabled:
            return UpstreamResult(status=UpstreamStatus.DISABLED, error="upstream_not_configured")

        payload = {"bot": bot, "message": message, "history": history}
        request = Request(
            self._url,
            data=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urlopen(request, timeout=self._timeout_sec) as response:
                body = response.read()
        except HTTPError as exc:
            logger.warning("upstream_reply_failed status=%s bot=%s", exc.code, bot)
            return UpstreamResult(status=UpstreamStatus.UNAVAILABLE, error=f"http_{exc.code}")
        except (URLError, TimeoutError, OSError) as exc:
            logger.warning("upstream_reply_failed bot=%s err=%s", bot, exc)
            return UpstreamResult(status=UpstreamStatus.UNAVAILABLE, error=str(exc))

        try:
            data: Any = json.loads(body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("upstream_reply_malformed bot=%s detail=invalid_json", bot)
            return UpstreamResult(status=UpstreamStatus.MALFORMED, error="invalid_json")

        reply = data.get("reply") if isinstance(data, dict) else None
        if not isinstance(reply, str) or not reply.strip():
            logger.warning("upstream_reply_malformed bot=%s detail=missing_reply", bot)
            return UpstreamResult(status=UpstreamStatus.MALFORMED, error="missing_reply")
        return UpstreamResult(status=UpstreamStatus.OK, reply=reply)
