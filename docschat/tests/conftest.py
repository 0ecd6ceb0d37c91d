"""Pytest fixtures shared by the docschat tests."""
from __future__ import annotations

import datetime as dt
from pathlib import Path
from typing import Generator, Iterable

import pytest
from fastapi.testclient import TestClient

from docschat.config import Settings
from docschat.context import AppContext
from docschat.main import create_app
from docschat.models import Meeting
from docschat.services.broadcast import BroadcastHub
from docschat.services.conversation_store import ConversationStore
from docschat.services.llm.base import BaseLLMProvider, StreamInterrupted
from docschat.services.meeting_store import MeetingStore
from docschat.services.relay import RealtimeRelay


class FakeProvider(BaseLLMProvider):
    """Scripted provider: yields the next reply's deltas per call.

    ``fail_after`` makes a call raise ``error`` once that many deltas were
    yielded.
    """

    def __init__(
        self,
        replies: Iterable[list[str]] = (),
        *,
        fail_after: int | None = None,
        error: Exception | None = None,
    ) -> None:
        super().__init__(logger_name="docschat.test.fake_llm")
        self.replies = [list(r) for r in replies]
        self.fail_after = fail_after
        self.error = error or StreamInterrupted("connection dropped")
        self.calls: list[list[dict]] = []
        self.closed = 0

    def ping(self) -> None:
        return None

    def _call_api_stream(self, messages, temperature=None, timeout=120):
        self.calls.append(messages)
        deltas = self.replies.pop(0) if self.replies else ["ok"]
        try:
            for index, delta in enumerate(deltas):
                if self.fail_after is not None and index == self.fail_after:
                    raise self.error
                yield delta
            if self.fail_after is not None and self.fail_after >= len(deltas):
                raise self.error
        except GeneratorExit:
            self.closed += 1
            raise


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider([["Hel", "lo, ", "world"]])


@pytest.fixture
def meeting_store(tmp_path: Path) -> Generator[MeetingStore, None, None]:
    store = MeetingStore(tmp_path / "data" / "docschat.db")
    yield store
    store.close()


@pytest.fixture
def meeting(meeting_store: MeetingStore) -> Meeting:
    return meeting_store.create_meeting(
        Meeting(
            uid="G01_01012020",
            topic="Kickoff",
            entry="Alice: we start Monday. Bob: I will book the room.",
            unit="G01",
            date=dt.date(2020, 1, 1),
            ai_summary="Project kickoff.",
            ai_action_items="Bob: book the room.",
        )
    )


@pytest.fixture
def hub() -> BroadcastHub:
    return BroadcastHub()


@pytest.fixture
def conversations() -> ConversationStore:
    return ConversationStore()


@pytest.fixture
def relay(meeting_store, conversations, fake_provider, hub) -> RealtimeRelay:
    return RealtimeRelay(meeting_store, conversations, fake_provider, hub)


@pytest.fixture
def app_ctx(tmp_path: Path) -> AppContext:
    data_dir = tmp_path / "data"
    return AppContext(
        cwd=str(tmp_path),
        data_dir=str(data_dir),
        config_path=str(data_dir / "config.json"),
        settings=Settings(database_path=str(data_dir / "docschat.db")),
    )


@pytest.fixture
def client(app_ctx, meeting_store, fake_provider) -> Generator[TestClient, None, None]:
    app = create_app(app_ctx, provider=fake_provider, meeting_store=meeting_store)
    with TestClient(app) as test_client:
        yield test_client
