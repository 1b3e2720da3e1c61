from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum

from duksitext.client.models import Message, Sender, clock_stamp
from duksitext.client.reply_client import ReplyClient, ReplyError, ReplyRequest
from duksitext.client.thread_store import SETTING_KEYS, ThreadStore
from duksitext.client.typing_indicator import TypingIndicator
from duksitext.client.view import ThreadView
from duksitext.services.personas import KNOWN_CONTACTS

logger = logging.getLogger(__name__)

WELCOME_TEXT = "Hey! What's up? How can I help?"
NEW_CHAT_TEXT = "What's up"
FALLBACK_REPLY = "Sorry, something went wrong. Make sure the backend server is running!"
HISTORY_WINDOW = 6
MAX_CHARS = 280


class SendState(StrEnum):
    IDLE = "idle"
    VALIDATING = "validating"
    SENT = "sent"
    AWAITING_REPLY = "awaiting_reply"
    REPLIED = "replied"
    FAILED = "failed"


@dataclass(frozen=True)
class SendResult:
    state: SendState
    user_message: Message | None = None
    reply_message: Message | None = None

    @property
    def accepted(self) -> bool:
        return self.user_message is not None


class ConversationController:
    """
    Drives one chat session: sending, the typing indicator, reply requests,
    contact switching, clearing and settings toggles.

    Replies for one contact are requested one at a time in send order, so a
    later reply can never land above an earlier one. A reply always goes to
    the thread it was requested for, even if the user has switched away.
    """

    def __init__(
        self,
        *,
        store: ThreadStore,
        view: ThreadView,
        reply_client: ReplyClient,
        indicator: TypingIndicator | None = None,
        contacts: Sequence[str] = KNOWN_CONTACTS,
        clock: Callable[[], str] = clock_stamp,
        on_sound: Callable[[], None] | None = None,
    ) -> None:
        self._store = store
        self._view = view
        self._reply_client = reply_client
        self._indicator = indicator or TypingIndicator(view)
        self._contacts = list(contacts)
        self._clock = clock
        self._on_sound = on_sound
        self._pending: dict[str, int] = defaultdict(int)
        self._locks: dict[str, asyncio.Lock] = {}
        self._state = SendState.IDLE

    @property
    def state(self) -> SendState:
        return self._state

    @property
    def contacts(self) -> list[str]:
        return list(self._contacts)

    @property
    def active_contact(self) -> str:
        return self._store.settings.active_contact

    @property
    def indicator(self) -> TypingIndicator:
        return self._indicator

    def pending(self, contact: str) -> int:
        return self._pending[contact]

    def start(self) -> bool:
        had_state = self._store.load()
        settings = self._store.settings
        if settings.active_contact not in self._contacts:
            settings.active_contact = self._contacts[0]
        for contact in self._contacts:
            self._store.ensure_thread(contact)

        seed_targets = [settings.active_contact] if had_state else self._contacts
        for contact in seed_targets:
            if not self._store.thread(contact):
                self._store.reset_thread(contact, [(Sender.CONTACT, WELCOME_TEXT)])
        self._store.save()
        self._render()
        logger.info(
            "conversation_started contact=%s restored=%s",
            settings.active_contact,
            had_state,
        )
        return had_state

    async def send(self, raw_text: str) -> SendResult:
        self._state = SendState.VALIDATING
        text = raw_text.strip()
        if not text or len(text) > MAX_CHARS:
            self._state = SendState.IDLE
            return SendResult(state=SendState.IDLE)

        contact = self.active_contact
        user_message = self._append(contact, Sender.USER, text)
        self._chime()
        self._state = SendState.SENT
        if not self._store.settings.auto_reply_enabled:
            if self._pending[contact]:
                self._show_typing(contact)
            self._state = SendState.IDLE
            return SendResult(state=SendState.SENT, user_message=user_message)

        request = self.build_reply_request(contact)
        self._pending[contact] += 1
        self._show_typing(contact)
        self._state = SendState.AWAITING_REPLY
        settled = False
        try:
            async with self._lock_for(contact):
                reply_text, outcome = await self._request_reply(request)
                self._pending[contact] -= 1
                settled = True
                self._hide_typing(contact)
                reply_message = self._append(contact, Sender.CONTACT, reply_text)
                if self._pending[contact]:
                    self._show_typing(contact)
        finally:
            # cancelled while waiting for the lock or the reply
            if not settled:
                self._pending[contact] = max(self._pending[contact] - 1, 0)
                if not self._pending[contact]:
                    self._hide_typing(contact)
            self._state = SendState.AWAITING_REPLY if self._has_pending() else SendState.IDLE

        return SendResult(state=outcome, user_message=user_message, reply_message=reply_message)

    def build_reply_request(self, contact: str) -> ReplyRequest:
        thread = self._store.thread(contact)
        window = thread[-HISTORY_WINDOW:]
        history = [
            {
                "role": "user" if msg.sender == Sender.USER else "assistant",
                "content": msg.text,
            }
            for msg in window[:-1]
        ]
        message = thread[-1].text if thread else ""
        return ReplyRequest(contact=contact, message=message, history=history)

    def switch_contact(self, contact: str) -> None:
        if contact not in self._contacts:
            raise ValueError(f"unknown contact: {contact}")
        self._chime()
        self._indicator.hide()
        self._store.set_contact(contact)
        self._render()
        if self._pending[contact]:
            self._show_typing(contact)

    def clear_thread(self) -> None:
        self._chime()
        self._indicator.hide()
        self._store.clear_thread(self.active_contact)
        self._render()

    def new_chat(self) -> None:
        self._chime()
        self._indicator.hide()
        self._store.reset_thread(self.active_contact, [(Sender.CONTACT, NEW_CHAT_TEXT)])
        self._render()

    def toggle(self, key: str) -> bool:
        if key not in SETTING_KEYS:
            raise KeyError(key)
        value = self._store.toggle(key)
        self._chime()
        if key == "timestamps":
            typing_contact = self._indicator.contact
            self._indicator.hide()
            self._render()
            if typing_contact is not None:
                self._show_typing(typing_contact)
        if key == "typing" and not value:
            self._indicator.hide()
        return value

    async def aclose(self) -> None:
        await self._indicator.aclose()
        await self._reply_client.aclose()

    async def _request_reply(self, request: ReplyRequest) -> tuple[str, SendState]:
        try:
            return await self._reply_client.reply(request), SendState.REPLIED
        except ReplyError as exc:
            logger.warning("reply_failed contact=%s err=%s", request.contact, exc)
        except Exception:
            logger.exception("reply_failed contact=%s err=unexpected", request.contact)
        return FALLBACK_REPLY, SendState.FAILED

    def _append(self, contact: str, sender: Sender, text: str) -> Message:
        message = self._store.append_message(contact, sender, text)
        if self._view.contact == contact:
            self._view.append_message(
                message,
                show_timestamps=self._store.settings.show_timestamps,
            )
        return message

    def _render(self) -> None:
        contact = self.active_contact
        self._view.render_thread(
            contact=contact,
            messages=self._store.thread(contact),
            show_timestamps=self._store.settings.show_timestamps,
        )

    def _show_typing(self, contact: str) -> None:
        settings = self._store.settings
        if not settings.show_typing_indicator:
            return
        if contact != settings.active_contact or self._view.contact != contact:
            return
        self._indicator.show(
            contact=contact,
            stamp=self._clock() if settings.show_timestamps else "",
        )

    def _hide_typing(self, contact: str) -> None:
        if self._indicator.contact in (None, contact):
            self._indicator.hide()

    def _has_pending(self) -> bool:
        return any(count > 0 for count in self._pending.values())

    def _lock_for(self, contact: str) -> asyncio.Lock:
        lock = self._locks.get(contact)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[contact] = lock
        return lock

    def _chime(self) -> None:
        if self._store.settings.sound_enabled and self._on_sound is not None:
            self._on_sound()
