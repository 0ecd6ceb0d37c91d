"""Realtime chat relay for meeting conversations."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from docschat.services.broadcast import (
    BroadcastHub,
    error_frame,
    full_frame,
    meeting_channel,
    partial_frame,
)
from docschat.services.conversation_store import ConversationStore, ConversationTurn
from docschat.services.llm import LLMProvider, LLMProviderError
from docschat.services.meeting_store import MeetingStore
from docschat.services.streaming import consume

DELIVERED = "delivered"
FAILED = "failed"


class ChatCancelled(Exception):
    """The client went away while the reply was streaming."""


@dataclass
class RelayOutcome:
    meeting_id: int
    status: str
    content: str = ""
    partials: int = 0
    error: Optional[str] = None


class RealtimeRelay:
    """Answers chat messages about one meeting and streams the reply.

    Every reply is broadcast as ``partial`` frames while the model generates,
    followed by one ``full`` frame. Only a complete reply is added to the
    conversation history.
    """

    def __init__(
        self,
        meeting_store: MeetingStore,
        conversations: ConversationStore,
        provider: LLMProvider,
        hub: BroadcastHub,
        *,
        stream_timeout: Optional[float] = None,
        error_frames: bool = False,
    ) -> None:
        self._meeting_store = meeting_store
        self._conversations = conversations
        self._provider = provider
        self._hub = hub
        self._stream_timeout = stream_timeout
        self._error_frames = error_frames
        self._logger = logging.getLogger("docschat.relay")

    def handle_chat_message(
        self,
        meeting_id: int,
        message: str,
        cancel: Optional[threading.Event] = None,
    ) -> RelayOutcome:
        """Run one chat event to completion.

        Raises MeetingNotFound for an unknown meeting; backend failures and
        cancellation are contained and reported as a ``failed`` outcome.
        Setting ``cancel`` stops the stream at the next delta.
        """
        meeting = self._meeting_store.require_meeting(meeting_id)
        channel = meeting_channel(meeting_id)

        with self._conversations.lock(meeting_id):
            history = self._conversations.get_or_create(meeting_id, lambda: meeting.entry)
            # The user turn is committed together with the reply
            staged: list[ConversationTurn] = []
            if message and message.strip():
                staged.append(ConversationTurn("user", message))
            messages = history.messages() + [turn.to_message() for turn in staged]

            self._logger.info(
                "Chat message: meeting_id=%s message='%s' turns=%d",
                meeting_id, (message or "")[:50], len(messages),
            )

            partials = 0

            def emit(delta: str) -> None:
                nonlocal partials
                if cancel is not None and cancel.is_set():
                    raise ChatCancelled()
                partials += 1
                self._hub.publish(channel, partial_frame(delta))

            try:
                reply = consume(
                    self._provider.chat_stream(messages),
                    on_delta=emit,
                    timeout=self._stream_timeout,
                )
            except ChatCancelled:
                self._logger.info(
                    "Chat cancelled: meeting_id=%s after %d partials", meeting_id, partials
                )
                return RelayOutcome(
                    meeting_id=meeting_id, status=FAILED, partials=partials, error="cancelled"
                )
            except LLMProviderError as exc:
                self._logger.warning(
                    "Chat failed: meeting_id=%s after %d partials (%s): %s",
                    meeting_id, partials, type(exc).__name__, exc,
                )
                if self._error_frames:
                    self._hub.publish(channel, error_frame(str(exc)))
                return RelayOutcome(
                    meeting_id=meeting_id,
                    status=FAILED,
                    partials=partials,
                    error=type(exc).__name__,
                )

            self._hub.publish(channel, full_frame(reply))
            for turn in staged:
                history.append(turn)
            history.append(ConversationTurn("assistant", reply))

        self._logger.info(
            "Chat delivered: meeting_id=%s partials=%d chars=%d",
            meeting_id, partials, len(reply),
        )
        return RelayOutcome(
            meeting_id=meeting_id, status=DELIVERED, content=reply, partials=partials
        )
