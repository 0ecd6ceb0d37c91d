from __future__ import annotations

import threading

import pytest

from docschat.services.broadcast import meeting_channel
from docschat.services.conversation_store import ConversationStore
from docschat.services.llm.base import BackendUnavailable
from docschat.services.meeting_store import MeetingNotFound
from docschat.services.relay import DELIVERED, FAILED, RealtimeRelay

from conftest import FakeProvider


def _collect(hub, meeting_id) -> list[dict]:
    frames: list[dict] = []
    hub.subscribe(meeting_channel(meeting_id), frames.append)
    return frames


def test_partials_then_one_full_frame(relay, hub, meeting) -> None:
    frames = _collect(hub, meeting.id)

    outcome = relay.handle_chat_message(meeting.id, "What was decided?")

    assert outcome.status == DELIVERED
    assert outcome.content == "Hello, world"
    assert frames == [
        {"type": "partial", "content": "Hel"},
        {"type": "partial", "content": "lo, "},
        {"type": "partial", "content": "world"},
        {"type": "full", "content": "Hello, world"},
    ]
    partial_text = "".join(f["content"] for f in frames if f["type"] == "partial")
    assert partial_text == frames[-1]["content"]


def test_first_event_primes_with_transcript(relay, conversations, fake_provider, meeting) -> None:
    relay.handle_chat_message(meeting.id, "Who books the room?")

    assert fake_provider.calls[0] == [
        {"role": "user", "content": meeting.entry},
        {"role": "user", "content": "Who books the room?"},
    ]
    history = conversations.history(meeting.id)
    assert [(t.role, t.content) for t in history] == [
        ("user", meeting.entry),
        ("user", "Who books the room?"),
        ("assistant", "Hello, world"),
    ]


def test_priming_happens_once_per_conversation(
    meeting_store, conversations, hub, meeting
) -> None:
    provider = FakeProvider([["one"], ["two"], ["three"]])
    relay = RealtimeRelay(meeting_store, conversations, provider, hub)

    for question in ("a", "b", "c"):
        relay.handle_chat_message(meeting.id, question)

    history = conversations.history(meeting.id)
    assert [t.content for t in history].count(meeting.entry) == 1
    assert history[0].content == meeting.entry
    assert [t.content for t in history[1:]] == ["a", "one", "b", "two", "c", "three"]
    # Each call sees the full prior history
    assert len(provider.calls[2]) == 6


def test_empty_message_is_not_appended(relay, conversations, fake_provider, meeting) -> None:
    relay.handle_chat_message(meeting.id, "   ")

    assert fake_provider.calls[0] == [{"role": "user", "content": meeting.entry}]
    assert [t.role for t in conversations.history(meeting.id)] == ["user", "assistant"]


def test_failure_mid_stream_leaves_history_unchanged(
    meeting_store, conversations, hub, meeting
) -> None:
    provider = FakeProvider([["fine"], ["Hel", "lo", "never"]])
    relay = RealtimeRelay(meeting_store, conversations, provider, hub)
    relay.handle_chat_message(meeting.id, "first")
    before = conversations.history(meeting.id)

    provider.fail_after = 2
    frames = _collect(hub, meeting.id)
    outcome = relay.handle_chat_message(meeting.id, "second")

    assert outcome.status == FAILED
    assert outcome.error == "StreamInterrupted"
    assert outcome.partials == 2
    assert conversations.history(meeting.id) == before
    assert [f["type"] for f in frames] == ["partial", "partial"]


def test_backend_unavailable_fails_without_frames(
    meeting_store, conversations, hub, meeting
) -> None:
    provider = FakeProvider(
        [["x"]], fail_after=0, error=BackendUnavailable("connection refused")
    )
    relay = RealtimeRelay(meeting_store, conversations, provider, hub)
    frames = _collect(hub, meeting.id)

    outcome = relay.handle_chat_message(meeting.id, "hello")

    assert outcome.status == FAILED
    assert outcome.error == "BackendUnavailable"
    assert frames == []
    assert [t.role for t in conversations.history(meeting.id)] == ["user"]


def test_error_frame_is_opt_in(meeting_store, conversations, hub, meeting) -> None:
    provider = FakeProvider([["a", "b"]], fail_after=1)
    relay = RealtimeRelay(meeting_store, conversations, provider, hub, error_frames=True)
    frames = _collect(hub, meeting.id)

    relay.handle_chat_message(meeting.id, "hello")

    assert [f["type"] for f in frames] == ["partial", "error"]


def test_unknown_meeting_creates_no_history(relay, conversations, fake_provider) -> None:
    with pytest.raises(MeetingNotFound):
        relay.handle_chat_message(4242, "hello")

    assert 4242 not in conversations
    assert fake_provider.calls == []


def test_cancel_stops_stream_and_closes_source(
    meeting_store, conversations, hub, meeting
) -> None:
    provider = FakeProvider([["a", "b", "c"]])
    relay = RealtimeRelay(meeting_store, conversations, provider, hub)
    cancel = threading.Event()
    frames: list[dict] = []

    def sink(frame: dict) -> None:
        frames.append(frame)
        cancel.set()

    hub.subscribe(meeting_channel(meeting.id), sink)
    outcome = relay.handle_chat_message(meeting.id, "hello", cancel)

    assert outcome.status == FAILED
    assert outcome.error == "cancelled"
    assert frames == [{"type": "partial", "content": "a"}]
    assert provider.closed == 1
    assert [t.role for t in conversations.history(meeting.id)] == ["user"]


def test_frames_stay_on_their_own_channel(meeting_store, conversations, hub, meeting) -> None:
    other = meeting_store.create_meeting(meeting.model_copy(update={"uid": "G02_02022020"}))
    provider = FakeProvider([["for one"], ["for two"]])
    relay = RealtimeRelay(meeting_store, conversations, provider, hub)
    first = _collect(hub, meeting.id)
    second = _collect(hub, other.id)

    relay.handle_chat_message(meeting.id, "q1")
    relay.handle_chat_message(other.id, "q2")

    assert [f["content"] for f in first] == ["for one", "for one"]
    assert [f["content"] for f in second] == ["for two", "for two"]


def test_concurrent_conversations_do_not_interleave_turns(
    meeting_store, conversations, hub, meeting
) -> None:
    other = meeting_store.create_meeting(
        meeting.model_copy(update={"uid": "G03_03032020", "entry": "Second transcript"})
    )
    replies = {meeting.entry: ["m1-", "a", "b"], other.entry: ["m2-", "c", "d"]}

    class KeyedProvider(FakeProvider):
        def _call_api_stream(self, messages, temperature=None, timeout=120):
            barrier.wait(timeout=5)
            for delta in replies[messages[0]["content"]]:
                yield delta

    barrier = threading.Barrier(2)
    relay = RealtimeRelay(meeting_store, conversations, KeyedProvider(), hub)
    first = _collect(hub, meeting.id)
    second = _collect(hub, other.id)

    threads = [
        threading.Thread(target=relay.handle_chat_message, args=(meeting.id, "x")),
        threading.Thread(target=relay.handle_chat_message, args=(other.id, "y")),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    for frames, prefix in ((first, "m1-"), (second, "m2-")):
        partials = [f["content"] for f in frames if f["type"] == "partial"]
        fulls = [f["content"] for f in frames if f["type"] == "full"]
        assert frames[-1]["type"] == "full"
        assert fulls == ["".join(partials)]
        assert fulls[0].startswith(prefix)


def test_reply_survives_eviction_pressure_while_streaming(
    meeting_store, hub, meeting
) -> None:
    conversations = ConversationStore(max_conversations=1)
    relay = RealtimeRelay(meeting_store, conversations, FakeProvider([["a", "b"]]), hub)

    def open_other_conversation(frame: dict) -> None:
        if frame["type"] == "partial":
            conversations.get_or_create("other", lambda: "other transcript")

    hub.subscribe(meeting_channel(meeting.id), open_other_conversation)

    outcome = relay.handle_chat_message(meeting.id, "Who books the room?")

    assert outcome.status == DELIVERED
    assert [(t.role, t.content) for t in conversations.history(meeting.id)] == [
        ("user", meeting.entry),
        ("user", "Who books the room?"),
        ("assistant", "ab"),
    ]
