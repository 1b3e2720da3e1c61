from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from duksitext.services.personas import DEFAULT_BOT


class Sender(StrEnum):
    USER = "you"
    CONTACT = "them"


@dataclass(frozen=True)
class Message:
    id: str
    sender: Sender
    text: str
    sent_at: str


@dataclass
class Settings:
    active_contact: str = DEFAULT_BOT
    auto_reply_enabled: bool = True
    sound_enabled: bool = False
    show_timestamps: bool = True
    show_typing_indicator: bool = True


@dataclass
class AppState:
    """Everything the client persists: settings, threads and fields it does not understand."""

    settings: Settings = field(default_factory=Settings)
    threads: dict[str, list[Message]] = field(default_factory=dict)
    extras: dict[str, object] = field(default_factory=dict)


def new_message_id() -> str:
    return f"{secrets.token_hex(6)}{int(time.time() * 1000):x}"


def clock_stamp(now: datetime | None = None) -> str:
    return (now or datetime.now()).strftime("%H:%M")
