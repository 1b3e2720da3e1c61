from __future__ import annotations

from typing import Any

DEFAULT_BOT = "Duksi"

# Duksi: concise and friendly. Micic: detailed, step by step. Skad: brainstorming.
KNOWN_CONTACTS: tuple[str, ...] = ("Duksi", "Micic", "Skad")


def resolve_bot(contact: Any) -> str:
    """Map a requested contact onto a known persona, defaulting to Duksi."""
    if isinstance(contact, str) and contact in KNOWN_CONTACTS:
        return contact
    return DEFAULT_BOT
