from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from duksitext.services.local_reply import generate_local_reply
from duksitext.services.personas import resolve_bot
from duksitext.services.upstream import UpstreamReplyClient

logger = logging.getLogger(__name__)

_HISTORY_ROLES = {"user", "assistant"}


@dataclass(frozen=True)
class ReplyOutcome:
    reply: str
    bot: str
    source: str


class ReplyService:
    """Stateless reply resolution: upstream model first, local rules as fallback."""

    def __init__(self, *, upstream: UpstreamReplyClient) -> None:
        self._upstream = upstream

    @property
    def upstream(self) -> UpstreamReplyClient:
        return self._upstream

    def reply(self, *, contact: Any, message: str, history: Any) -> ReplyOutcome:
        bot = resolve_bot(contact)
        normalized_history = normalize_history(history)

        result = self._upstream.generate_reply(
            bot=bot,
            message=message,
            history=normalized_history,
        )
        if result.ok:
            assert result.reply is not None
            return ReplyOutcome(reply=result.reply, bot=bot, source="upstream")
        if self._upstream.enabled:
            logger.info("reply_fallback_local bot=%s reason=%s", bot, result.status)

        return ReplyOutcome(
            reply=generate_local_reply(bot, message, normalized_history),
            bot=bot,
            source="local",
        )


def normalize_history(history: Any) -> list[dict[str, Any]]:
    if not isinstance(history, list):
        return []
    return [
        {"role": item["role"], "content": item["content"]}
        for item in history
        if isinstance(item, dict)
        and item.get("role") in _HISTORY_ROLES
        and isinstance(item.get("content"), str)
    ]
