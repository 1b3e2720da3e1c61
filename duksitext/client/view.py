from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from enum import StrEnum

from duksitext.client.models import Message, Sender


class ViewEvent(StrEnum):
    RESET = "reset"
    APPEND = "append"
    UPDATE = "update"
    REMOVE = "remove"


@dataclass(frozen=True)
class RenderedEntry:
    key: str
    author: str
    text: str
    stamp: str
    from_user: bool = False

    def as_line(self) -> str:
        prefix = f"[{self.stamp}] " if self.stamp else ""
        return f"{prefix}{self.author}: {self.text}"


ViewListener = Callable[[ViewEvent, RenderedEntry | None], None]


class ThreadView:
    """Rendered entries of the thread on screen, keyed by message id."""

    def __init__(self) -> None:
        self._entries: list[RenderedEntry] = []
        self._contact: str | None = None
        self._listeners: list[ViewListener] = []

    @property
    def contact(self) -> str | None:
        return self._contact

    @property
    def entries(self) -> list[RenderedEntry]:
        return list(self._entries)

    def subscribe(self, listener: ViewListener) -> None:
        self._listeners.append(listener)

    def keys(self) -> list[str]:
        return [entry.key for entry in self._entries]

    def has(self, key: str) -> bool:
        return any(entry.key == key for entry in self._entries)

    def get(self, key: str) -> RenderedEntry | None:
        for entry in self._entries:
            if entry.key == key:
                return entry
        return None

    def render_thread(
        self,
        *,
        contact: str,
        messages: Iterable[Message],
        show_timestamps: bool,
    ) -> None:
        self._contact = contact
        self._entries = [
            render_message(msg, contact=contact, show_timestamps=show_timestamps)
            for msg in messages
        ]
        self._emit(ViewEvent.RESET, None)

    def append_message(self, message: Message, *, show_timestamps: bool) -> RenderedEntry:
        entry = render_message(
            message,
            contact=self._contact or "",
            show_timestamps=show_timestamps,
        )
        return self.add(entry)

    def add(self, entry: RenderedEntry) -> RenderedEntry:
        self._entries.append(entry)
        self._emit(ViewEvent.APPEND, entry)
        return entry

    def update_text(self, key: str, text: str) -> bool:
        for index, entry in enumerate(self._entries):
            if entry.key == key:
                updated = replace(entry, text=text)
                self._entries[index] = updated
                self._emit(ViewEvent.UPDATE, updated)
                return True
        return False

    def remove(self, key: str) -> bool:
        for index, entry in enumerate(self._entries):
            if entry.key == key:
                del self._entries[index]
                self._emit(ViewEvent.REMOVE, entry)
                return True
        return False

    def _emit(self, event: ViewEvent, entry: RenderedEntry | None) -> None:
        for listener in self._listeners:
            listener(event, entry)


def render_message(message: Message, *, contact: str, show_timestamps: bool) -> RenderedEntry:
    from_user = message.sender == Sender.USER
    return RenderedEntry(
        key=message.id,
        author="You" if from_user else contact,
        text=message.text,
        stamp=message.sent_at if show_timestamps else "",
        from_user=from_user,
    )
