from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from duksitext.client.models import AppState, Message, Sender, Settings, clock_stamp, new_message_id
from duksitext.client.persistence import StateFile, state_from_payload, state_to_payload

logger = logging.getLogger(__name__)

SETTING_KEYS: dict[str, str] = {
    "autoReply": "auto_reply_enabled",
    "sound": "sound_enabled",
    "timestamps": "show_timestamps",
    "typing": "show_typing_indicator",
}


class ThreadStore:
    """Per-contact message threads plus settings, saved in full after every mutation."""

    def __init__(
        self,
        *,
        state_file: StateFile,
        state: AppState | None = None,
        clock: Callable[[], str] = clock_stamp,
        id_factory: Callable[[], str] = new_message_id,
    ) -> None:
        self._state_file = state_file
        self._state = state or AppState()
        self._clock = clock
        self._id_factory = id_factory
        self._last_save_ok = True
        self._last_save_error: str | None = None

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def settings(self) -> Settings:
        return self._state.settings

    @property
    def last_save_ok(self) -> bool:
        return self._last_save_ok

    @property
    def last_save_error(self) -> str | None:
        return self._last_save_error

    def contacts(self) -> list[str]:
        return list(self._state.threads)

    def thread(self, contact: str) -> list[Message]:
        return list(self.ensure_thread(contact))

    def ensure_thread(self, contact: str) -> list[Message]:
        return self._state.threads.setdefault(contact, [])

    def append_message(self, contact: str, sender: Sender, text: str) -> Message:
        message = self._build_message(sender, text)
        self.ensure_thread(contact).append(message)
        self.save()
        return message

    def clear_thread(self, contact: str) -> None:
        self.ensure_thread(contact).clear()
        self.save()

    def reset_thread(
        self,
        contact: str,
        seed_messages: Iterable[tuple[Sender, str]],
    ) -> list[Message]:
        seeded = [self._build_message(sender, text) for sender, text in seed_messages]
        self._state.threads[contact] = seeded
        self.save()
        return list(seeded)

    def set_contact(self, contact: str) -> None:
        self._state.settings.active_contact = contact
        self.ensure_thread(contact)
        self.save()

    def toggle(self, key: str) -> bool:
        attr = SETTING_KEYS[key]
        value = not getattr(self._state.settings, attr)
        setattr(self._state.settings, attr, value)
        self.save()
        return value

    def load(self) -> bool:
        payload = self._state_file.read()
        if payload is None:
            return False
        restored = state_from_payload(payload)
        if restored is None:
            return False
        self._state = restored
        logger.info(
            "thread_store_loaded path=%s contacts=%s",
            self._state_file.path,
            len(restored.threads),
        )
        return True

    def save(self) -> bool:
        try:
            self._state_file.write(state_to_payload(self._state))
        except OSError as exc:
            self._last_save_ok = False
            self._last_save_error = str(exc)
            logger.warning("thread_store_save_failed path=%s err=%s", self._state_file.path, exc)
            return False
        self._last_save_ok = True
        self._last_save_error = None
        return True

    def _build_message(self, sender: Sender, text: str) -> Message:
        return Message(
            id=self._id_factory(),
            sender=sender,
            text=text.strip(),
            sent_at=self._clock(),
        )
