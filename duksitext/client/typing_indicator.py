from __future__ import annotations

import asyncio
import contextlib

from duksitext.client.view import RenderedEntry, ThreadView

TYPING_KEY = "typing"
DOT_INTERVAL_SEC = 0.32


class TypingIndicator:
    """
    The "Thinking..." bubble plus the repeating task that cycles its dots.
    At most one bubble exists; show() restarts it and hide() always cancels the task.
    """

    def __init__(self, view: ThreadView, *, interval_sec: float = DOT_INTERVAL_SEC) -> None:
        self._view = view
        self._interval_sec = interval_sec
        self._task: asyncio.Task[None] | None = None
        self._contact: str | None = None
        self._ticks = 0

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def contact(self) -> str | None:
        return self._contact if self.active else None

    @property
    def ticks(self) -> int:
        return self._ticks

    def show(self, *, contact: str, stamp: str) -> None:
        self.hide()
        self._contact = contact
        self._view.add(
            RenderedEntry(key=TYPING_KEY, author=contact, text="Thinking.", stamp=stamp)
        )
        self._task = asyncio.get_running_loop().create_task(self._cycle_dots())

    def hide(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        self._contact = None
        self._view.remove(TYPING_KEY)

    async def aclose(self) -> None:
        task = self._task
        self.hide()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _cycle_dots(self) -> None:
        dots = 1
        while True:
            await asyncio.sleep(self._interval_sec)
            dots = dots % 3 + 1
            self._ticks += 1
            self._view.update_text(TYPING_KEY, "Thinking" + "." * dots)
