from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from collections.abc import Sequence
from typing import TextIO

from duksitext.client.controller import MAX_CHARS, ConversationController, SendResult
from duksitext.client.persistence import StateFile
from duksitext.client.reply_client import LocalReplyClient, RemoteReplyClient, ReplyClient
from duksitext.client.thread_store import SETTING_KEYS, ThreadStore
from duksitext.client.typing_indicator import TYPING_KEY
from duksitext.client.view import RenderedEntry, ThreadView, ViewEvent
from duksitext.container import default_api_base, default_state_file, parse_bool

logger = logging.getLogger(__name__)

# replies still outstanding this long after /quit are abandoned
QUIT_GRACE_SEC = 5.0

HELP_TEXT = (
    "Commands: /contact NAME, /clear, /new, /toggle "
    + "|".join(SETTING_KEYS)
    + ", /show, /help, /quit"
)


class ConsolePrinter:
    """Prints view changes as plain lines; dot animation updates are not echoed."""

    def __init__(self, out: TextIO | None = None) -> None:
        self._out = out or sys.stdout

    def __call__(self, event: ViewEvent, entry: RenderedEntry | None) -> None:
        if event == ViewEvent.RESET:
            return
        if event == ViewEvent.APPEND and entry is not None:
            if entry.key == TYPING_KEY:
                self.write(f"({entry.author} is typing...)")
            else:
                self.write(entry.as_line())

    def show_thread(self, view: ThreadView) -> None:
        self.write(f"--- Chatting with {view.contact} ---")
        for entry in view.entries:
            if entry.key != TYPING_KEY:
                self.write(entry.as_line())

    def bell(self) -> None:
        self._out.write("\a")
        self._out.flush()

    def write(self, line: str) -> None:
        self._out.write(line + "\n")
        self._out.flush()


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="DuksiText console chat client")
    parser.add_argument("--api-base", default=default_api_base())
    parser.add_argument("--state-file", default=default_state_file())
    parser.add_argument(
        "--offline",
        action="store_true",
        default=parse_bool(os.getenv("DUKSITEXT_OFFLINE"), default=False),
        help="generate replies locally instead of calling the backend",
    )
    parser.add_argument("--timeout-sec", type=float, default=None)
    parser.add_argument("--verbose", action="store_true")
    return parser


async def handle_line(
    controller: ConversationController,
    printer: ConsolePrinter,
    view: ThreadView,
    line: str,
    pending: set[asyncio.Task[SendResult]],
) -> bool:
    """Process one input line. Returns False when the session should end."""
    if not line.startswith("/"):
        if len(line.strip()) > MAX_CHARS:
            printer.write(f"(message is longer than {MAX_CHARS} characters, not sent)")
            return True
        task = asyncio.create_task(controller.send(line))
        pending.add(task)
        task.add_done_callback(pending.discard)
        # let the send reach its first suspension point before reading more input
        await asyncio.sleep(0)
        return True

    command, _, argument = line[1:].partition(" ")
    argument = argument.strip()
    if command in {"quit", "exit"}:
        return False
    if command == "contact":
        if argument not in controller.contacts:
            printer.write(f"(known contacts: {', '.join(controller.contacts)})")
            return True
        controller.switch_contact(argument)
        printer.show_thread(view)
    elif command == "clear":
        controller.clear_thread()
        printer.show_thread(view)
    elif command == "new":
        controller.new_chat()
        printer.show_thread(view)
    elif command == "toggle":
        if argument not in SETTING_KEYS:
            printer.write(f"(settings: {', '.join(SETTING_KEYS)})")
            return True
        value = controller.toggle(argument)
        printer.write(f"({argument} is now {'on' if value else 'off'})")
        if argument == "timestamps":
            printer.show_thread(view)
    elif command == "show":
        printer.show_thread(view)
    else:
        printer.write(HELP_TEXT)
    return True


async def run_console(args: argparse.Namespace, *, stdin: TextIO | None = None) -> int:
    stdin = stdin or sys.stdin
    printer = ConsolePrinter()
    view = ThreadView()
    view.subscribe(printer)
    reply_client: ReplyClient
    if args.offline:
        reply_client = LocalReplyClient()
    else:
        reply_client = RemoteReplyClient(base_url=args.api_base, timeout_sec=args.timeout_sec)
    controller = ConversationController(
        store=ThreadStore(state_file=StateFile(args.state_file)),
        view=view,
        reply_client=reply_client,
        on_sound=printer.bell,
    )
    controller.start()
    printer.show_thread(view)
    printer.write(HELP_TEXT)

    pending: set[asyncio.Task[SendResult]] = set()
    try:
        while True:
            line = await asyncio.to_thread(stdin.readline)
            if not line:
                break
            if not await handle_line(controller, printer, view, line.rstrip("\n"), pending):
                break
        if pending:
            _, unfinished = await asyncio.wait(pending, timeout=QUIT_GRACE_SEC)
            if unfinished:
                logger.warning("console_quit_abandoned_replies count=%s", len(unfinished))
                for task in unfinished:
                    task.cancel()
                await asyncio.gather(*unfinished, return_exceptions=True)
    finally:
        await controller.aclose()
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    try:
        return asyncio.run(run_console(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
