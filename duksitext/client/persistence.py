from __future__ import annotations

import json
import logging
import os
import tempfile
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from duksitext.client.models import AppState, Message, Sender, Settings
from duksitext.services.personas import DEFAULT_BOT

logger = logging.getLogger(__name__)


class PersistedMessage(BaseModel):
    id: str = Field(min_length=1)
    who: Literal["you", "them"]
    text: str
    at: str = ""


class PersistedState(BaseModel):
    """On-disk layout. Unknown top-level keys are kept so newer clients do not lose data."""

    model_config = ConfigDict(extra="allow")

    contact: str = DEFAULT_BOT
    autoReply: bool = True
    sound: bool = False
    timestamps: bool = True
    typing: bool = True
    threads: dict[str, list[PersistedMessage]] = Field(default_factory=dict)

    @field_validator("contact", mode="before")
    @classmethod
    def _default_contact(cls, value: Any) -> Any:
        return value or DEFAULT_BOT

    @field_validator("threads", mode="before")
    @classmethod
    def _default_threads(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("threads")
    @classmethod
    def _unique_message_ids(
        cls, value: dict[str, list[PersistedMessage]]
    ) -> dict[str, list[PersistedMessage]]:
        for contact, items in value.items():
            ids = [item.id for item in items]
            if len(ids) != len(set(ids)):
                raise ValueError(f"duplicate message id in thread {contact}")
        return value


def state_from_payload(payload: Any) -> AppState | None:
    """Validate a decoded blob; any shape problem means "no prior state"."""
    if not isinstance(payload, dict):
        return None
    try:
        persisted = PersistedState.model_validate(payload)
    except ValidationError as exc:
        logger.warning("client_state_invalid errors=%s", exc.error_count())
        return None

    settings = Settings(
        active_contact=persisted.contact,
        auto_reply_enabled=persisted.autoReply,
        sound_enabled=persisted.sound,
        show_timestamps=persisted.timestamps,
        show_typing_indicator=persisted.typing,
    )
    threads = {
        contact: [
            Message(id=item.id, sender=Sender(item.who), text=item.text, sent_at=item.at)
            for item in items
        ]
        for contact, items in persisted.threads.items()
    }
    return AppState(settings=settings, threads=threads, extras=dict(persisted.model_extra or {}))


def state_to_payload(state: AppState) -> dict[str, Any]:
    payload: dict[str, Any] = dict(state.extras)
    payload.update(
        {
            "contact": state.settings.active_contact,
            "autoReply": state.settings.auto_reply_enabled,
            "sound": state.settings.sound_enabled,
            "timestamps": state.settings.show_timestamps,
            "typing": state.settings.show_typing_indicator,
            "threads": {
                contact: [
                    {"id": msg.id, "who": str(msg.sender), "text": msg.text, "at": msg.sent_at}
                    for msg in messages
                ]
                for contact, messages in state.threads.items()
            },
        }
    )
    return payload


class StateFile:
    """Single JSON record on local disk, replaced atomically on every write."""

    def __init__(self, path: str) -> None:
        self._path = path

    @property
    def path(self) -> str:
        return self._path

    def read(self) -> dict[str, Any] | None:
        try:
            with open(self._path, encoding="utf-8") as fh:
                payload = json.load(fh)
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("client_state_unreadable path=%s err=%s", self._path, exc)
            return None
        if not isinstance(payload, dict):
            return None
        return payload

    def write(self, payload: dict[str, Any]) -> None:
        directory = os.path.dirname(self._path) or "."
        os.makedirs(directory, exist_ok=True)

        temp_fd, temp_path = tempfile.mkstemp(
            prefix=".duksitext_state_",
            suffix=".tmp",
            dir=directory,
            text=True,
        )
        try:
            with os.fdopen(temp_fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, ensure_ascii=False, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(temp_path, self._path)
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass
