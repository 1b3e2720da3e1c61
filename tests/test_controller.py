from __future__ import annotations

import asyncio
import json
from pathlib import Path

from duksitext.client.controller import (
    FALLBACK_REPLY,
    NEW_CHAT_TEXT,
    WELCOME_TEXT,
    ConversationController,
    SendState,
)
from duksitext.client.models import Sender
from duksitext.client.persistence import StateFile
from duksitext.client.reply_client import LocalReplyClient, ReplyError, ReplyRequest
from duksitext.client.thread_store import ThreadStore
from duksitext.client.typing_indicator import TYPING_KEY, TypingIndicator
from duksitext.client.view import ThreadView


class _EchoReplyClient:
    def __init__(self) -> None:
        self.requests: list[ReplyRequest] = []

    async def reply(self, request: ReplyRequest) -> str:
        self.requests.append(request)
        return f"re: {request.message}"

    async def aclose(self) -> None:
        return None


class _GatedReplyClient:
    """Each reply waits until the test resolves its future."""

    def __init__(self) -> None:
        self.requests: list[ReplyRequest] = []
        self.gates: list[asyncio.Future[str]] = []

    async def reply(self, request: ReplyRequest) -> str:
        self.requests.append(request)
        gate: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self.gates.append(gate)
        return await gate

    async def aclose(self) -> None:
        return None


class _FailingReplyClient:
    async def reply(self, request: ReplyRequest) -> str:
        _ = request
        raise ReplyError("backend down")

    async def aclose(self) -> None:
        return None


class _BrokenReplyClient:
    async def reply(self, request: ReplyRequest) -> str:
        _ = request
        raise RuntimeError("boom")

    async def aclose(self) -> None:
        return None


def _build(tmp_path: Path, reply_client, **kwargs):  # type: ignore[no-untyped-def]
    view = ThreadView()
    store = ThreadStore(
        state_file=StateFile(str(tmp_path / "state.json")),
        clock=lambda: "10:00",
    )
    controller = ConversationController(
        store=store,
        view=view,
        reply_client=reply_client,
        indicator=TypingIndicator(view, interval_sec=0.01),
        clock=lambda: "10:00",
        **kwargs,
    )
    return controller, store, view


async def _settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


def _texts(store: ThreadStore, contact: str) -> list[str]:
    return [m.text for m in store.thread(contact)]


def test_start_seeds_every_contact_on_first_run(tmp_path: Path) -> None:
    controller, store, view = _build(tmp_path, _EchoReplyClient())

    assert controller.start() is False

    for contact in ("Duksi", "Micic", "Skad"):
        assert _texts(store, contact) == [WELCOME_TEXT]
    assert view.contact == "Duksi"
    assert [e.text for e in view.entries] == [WELCOME_TEXT]
    assert (tmp_path / "state.json").exists()


def test_start_with_prior_state_resets_unknown_contact(tmp_path: Path) -> None:
    (tmp_path / "state.json").write_text(
        json.dumps({"contact": "Bob", "threads": {"Micic": []}}),
        encoding="utf-8",
    )
    controller, store, _ = _build(tmp_path, _EchoReplyClient())

    assert controller.start() is True

    assert controller.active_contact == "Duksi"
    assert _texts(store, "Duksi") == [WELCOME_TEXT]
    assert _texts(store, "Micic") == []
    assert _texts(store, "Skad") == []


def test_hello_to_duksi_offline_stores_two_messages(tmp_path: Path) -> None:
    controller, store, view = _build(tmp_path, LocalReplyClient())
    controller.start()
    controller.clear_thread()

    result = asyncio.run(controller.send("hello"))

    assert result.state == SendState.REPLIED
    thread = store.thread("Duksi")
    assert [(m.sender, m.text) for m in thread] == [
        (Sender.USER, "hello"),
        (Sender.CONTACT, "Hi from Duksi! How can I help you today?"),
    ]
    assert view.keys() == [m.id for m in thread]
    assert controller.state == SendState.IDLE


def test_blank_or_oversized_input_is_ignored(tmp_path: Path) -> None:
    client = _EchoReplyClient()
    controller, store, _ = _build(tmp_path, client)
    controller.start()

    for raw in ("", "   \n\t", "x" * 281):
        result = asyncio.run(controller.send(raw))
        assert result.state == SendState.IDLE
        assert result.accepted is False

    assert _texts(store, "Duksi") == [WELCOME_TEXT]
    assert client.requests == []


def test_auto_reply_off_only_stores_user_message(tmp_path: Path) -> None:
    client = _EchoReplyClient()
    controller, store, view = _build(tmp_path, client)
    controller.start()
    controller.toggle("autoReply")

    result = asyncio.run(controller.send("  anyone there?  "))

    assert result.state == SendState.SENT
    assert _texts(store, "Duksi") == [WELCOME_TEXT, "anyone there?"]
    assert client.requests == []
    assert not view.has(TYPING_KEY)


def test_sequential_sends_keep_call_order(tmp_path: Path) -> None:
    controller, store, view = _build(tmp_path, _EchoReplyClient())
    controller.start()
    controller.clear_thread()

    async def scenario() -> None:
        for text in ("one", "two", "three"):
            await controller.send(text)

    asyncio.run(scenario())

    expected = ["one", "re: one", "two", "re: two", "three", "re: three"]
    assert _texts(store, "Duksi") == expected
    assert [e.text for e in view.entries] == expected
    assert len({m.id for m in store.thread("Duksi")}) == len(expected)


def test_history_window_excludes_just_sent_message(tmp_path: Path) -> None:
    client = _EchoReplyClient()
    controller, store, _ = _build(tmp_path, client)
    controller.start()
    controller.clear_thread()
    for index in range(10):
        sender = Sender.USER if index % 2 == 0 else Sender.CONTACT
        store.append_message("Duksi", sender, f"m{index}")

    asyncio.run(controller.send("latest"))

    request = client.requests[0]
    assert request.contact == "Duksi"
    assert request.message == "latest"
    assert request.history == [
        {"role": "assistant", "content": "m5"},
        {"role": "user", "content": "m6"},
        {"role": "assistant", "content": "m7"},
        {"role": "user", "content": "m8"},
        {"role": "assistant", "content": "m9"},
    ]


def test_failed_reply_appends_fallback_and_keeps_user_message(tmp_path: Path) -> None:
    controller, store, view = _build(tmp_path, _FailingReplyClient())
    controller.start()

    result = asyncio.run(controller.send("are you up?"))

    assert result.state == SendState.FAILED
    assert _texts(store, "Duksi") == [WELCOME_TEXT, "are you up?", FALLBACK_REPLY]
    assert not view.has(TYPING_KEY)
    assert controller.indicator.active is False
    assert controller.state == SendState.IDLE


def test_unexpected_reply_error_still_settles_the_send(tmp_path: Path) -> None:
    controller, store, view = _build(tmp_path, _BrokenReplyClient())
    controller.start()

    result = asyncio.run(controller.send("hello"))

    assert result.state == SendState.FAILED
    assert result.reply_message is not None
    assert result.reply_message.text == FALLBACK_REPLY
    assert _texts(store, "Duksi") == [WELCOME_TEXT, "hello", FALLBACK_REPLY]
    assert controller.pending("Duksi") == 0
    assert controller.indicator.active is False
    assert not view.has(TYPING_KEY)
    assert controller.state == SendState.IDLE

    controller.switch_contact("Skad")
    controller.switch_contact("Duksi")
    assert not view.has(TYPING_KEY)


def test_overlapping_sends_reply_in_send_order(tmp_path: Path) -> None:
    client = _GatedReplyClient()
    controller, store, view = _build(tmp_path, client)
    controller.start()
    controller.clear_thread()

    async def scenario() -> None:
        first = asyncio.create_task(controller.send("first"))
        await _settle()
        second = asyncio.create_task(controller.send("second"))
        await _settle()

        assert _texts(store, "Duksi") == ["first", "second"]
        assert len(client.requests) == 1
        assert controller.pending("Duksi") == 2
        assert view.keys()[-1] == TYPING_KEY

        client.gates[0].set_result("reply one")
        await first
        await _settle()
        assert view.has(TYPING_KEY)
        assert len(client.requests) == 2
        assert client.requests[1].message == "second"
        assert client.requests[1].history == [{"role": "user", "content": "first"}]

        client.gates[1].set_result("reply two")
        await second
        await controller.aclose()

    asyncio.run(scenario())

    assert _texts(store, "Duksi") == ["first", "second", "reply one", "reply two"]
    assert not view.has(TYPING_KEY)
    assert controller.pending("Duksi") == 0


def test_disabling_typing_indicator_stops_its_timer(tmp_path: Path) -> None:
    client = _GatedReplyClient()
    controller, _, view = _build(tmp_path, client)
    controller.start()

    async def scenario() -> None:
        task = asyncio.create_task(controller.send("hi"))
        await asyncio.sleep(0.06)
        assert controller.indicator.active
        assert controller.indicator.ticks > 0
        assert view.get(TYPING_KEY) is not None

        assert controller.toggle("typing") is False
        ticks = controller.indicator.ticks
        await asyncio.sleep(0.06)

        assert controller.indicator.ticks == ticks
        assert controller.indicator.active is False
        assert not view.has(TYPING_KEY)

        client.gates[0].set_result("done")
        await task

    asyncio.run(scenario())

    assert [e.text for e in view.entries][-1] == "done"


def test_switching_contact_mid_reply_tears_down_indicator(tmp_path: Path) -> None:
    client = _GatedReplyClient()
    controller, store, view = _build(tmp_path, client)
    controller.start()

    async def scenario() -> None:
        task = asyncio.create_task(controller.send("question"))
        await _settle()
        assert view.has(TYPING_KEY)

        controller.switch_contact("Micic")
        assert controller.indicator.active is False
        assert not view.has(TYPING_KEY)

        client.gates[0].set_result("answer")
        await task
        assert view.contact == "Micic"
        assert [e.text for e in view.entries] == [WELCOME_TEXT]

    asyncio.run(scenario())

    assert _texts(store, "Duksi") == [WELCOME_TEXT, "question", "answer"]
    controller.switch_contact("Duksi")
    assert [e.text for e in view.entries] == [WELCOME_TEXT, "question", "answer"]
    assert [e.author for e in view.entries] == ["Duksi", "You", "Duksi"]


def test_returning_to_contact_with_pending_reply_shows_indicator(tmp_path: Path) -> None:
    client = _GatedReplyClient()
    controller, _, view = _build(tmp_path, client)
    controller.start()

    async def scenario() -> None:
        task = asyncio.create_task(controller.send("question"))
        await _settle()
        controller.switch_contact("Skad")
        controller.switch_contact("Duksi")

        assert controller.indicator.contact == "Duksi"
        assert view.keys().count(TYPING_KEY) == 1

        client.gates[0].set_result("answer")
        await task

    asyncio.run(scenario())

    assert not view.has(TYPING_KEY)


def test_clear_and_new_chat_remove_indicator(tmp_path: Path) -> None:
    client = _GatedReplyClient()
    controller, store, view = _build(tmp_path, client)
    controller.start()

    async def scenario() -> None:
        task = asyncio.create_task(controller.send("one"))
        await _settle()
        controller.clear_thread()
        assert not view.has(TYPING_KEY)
        assert view.entries == []

        controller.new_chat()
        assert [e.text for e in view.entries] == [NEW_CHAT_TEXT]
        assert controller.indicator.active is False

        client.gates[0].set_result("late")
        await task

    asyncio.run(scenario())

    assert _texts(store, "Duksi") == [NEW_CHAT_TEXT, "late"]


def test_timestamp_toggle_rerenders_thread(tmp_path: Path) -> None:
    controller, _, view = _build(tmp_path, _EchoReplyClient())
    controller.start()
    assert [e.stamp for e in view.entries] == ["10:00"]

    assert controller.toggle("timestamps") is False
    assert [e.stamp for e in view.entries] == [""]

    assert controller.toggle("timestamps") is True
    assert [e.stamp for e in view.entries] == ["10:00"]


def test_sound_hook_fires_only_when_enabled(tmp_path: Path) -> None:
    chimes: list[int] = []
    controller, _, _ = _build(
        tmp_path,
        _EchoReplyClient(),
        on_sound=lambda: chimes.append(1),
    )
    controller.start()

    asyncio.run(controller.send("quiet"))
    assert chimes == []

    controller.toggle("sound")
    asyncio.run(controller.send("loud"))
    assert len(chimes) == 2


def test_settings_survive_restart(tmp_path: Path) -> None:
    controller, _, _ = _build(tmp_path, _EchoReplyClient())
    controller.start()
    controller.switch_contact("Skad")
    controller.toggle("autoReply")
    asyncio.run(controller.send("note to self"))

    restarted, store, view = _build(tmp_path, _EchoReplyClient())
    assert restarted.start() is True

    assert restarted.active_contact == "Skad"
    assert store.settings.auto_reply_enabled is False
    assert _texts(store, "Skad") == [WELCOME_TEXT, "note to self"]
    assert view.contact == "Skad"
