from __future__ import annotations

import re
from typing import Any

_WORD_PATTERN = re.compile(r"[a-z']+")
_GREETING_WORDS = {"hello", "hi", "hey", "hiya"}
_HELP_WORDS = {"help", "assist"}
_LONG_MESSAGE_CHARS = 160


def generate_local_reply(bot: str, message: str, history: list[dict[str, Any]]) -> str:
    """Deterministic rule-based reply; needs no network and never raises for str input."""
    words = set(_WORD_PATTERN.findall(message.lower()))
    if words & _GREETING_WORDS:
        return f"Hi from {bot}! How can I help you today?"
    if words & _HELP_WORDS:
        return f"{bot} here. Tell me a bit more about what you need help with."

    if bot == "Duksi":
        opener = "Let me summarize that." if len(message) > _LONG_MESSAGE_CHARS else "Got it."
        tail = f'you said "{message[:120]}"...' if message else "ask me anything."
        return f"Duksi: {opener} I prefer short, direct answers, so here's my take: {tail}"
    if bot == "Micic":
        reply = (
            "Micic: I'll walk you through this step by step. "
            "First, clarify your goal, then list any constraints you have."
        )
        last_user = _last_user_content(history)
        if last_user:
            reply = f'{reply} From what you said last: "{last_user[:80]}"...'
        return reply
    if bot == "Skad":
        return (
            "Skad: here are a few ideas for you:\n"
            "1) Try a simple approach first.\n"
            "2) Experiment with a slightly crazy alternative.\n"
            "3) Combine pieces from both and see what happens."
        )
    return f'I\'m {bot}. I heard: "{message[:160]}". Tell me more.'


def _last_user_content(history: list[dict[str, Any]]) -> str | None:
    for item in reversed(history):
        if item.get("role") == "user":
            content = item.get("content")
            return content if isinstance(content, str) else None
    return None
