"""In-memory chat history per meeting.

Each conversation key owns an append-only list of turns. The first turn of a
new conversation is the meeting transcript (the primer), added once when the
conversation is created. Mutations of one key are serialized by a per-key
lock; different keys never contend except for the short map lookup.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Hashable, Iterator, Optional

from docschat.services.llm.base import VALID_ROLES


@dataclass(frozen=True)
class ConversationTurn:
    role: str
    content: str

    def __post_init__(self) -> None:
        if self.role not in VALID_ROLES:
            raise ValueError(f"Unsupported turn role: {self.role!r}")
        if not isinstance(self.content, str):
            raise ValueError("Turn content must be a string")

    def to_message(self) -> dict:
        return {"role": self.role, "content": self.content}


class ConversationHistory:
    """Ordered turns for one conversation key."""

    def __init__(self, key: Hashable) -> None:
        self.key = key
        self.lock = threading.RLock()
        self._turns: list[ConversationTurn] = []
        self.primed = False
        self.last_used = time.monotonic()
        # Number of callers holding the key through ConversationStore.lock
        self.active = 0

    def __len__(self) -> int:
        with self.lock:
            return len(self._turns)

    def turns(self) -> list[ConversationTurn]:
        with self.lock:
            return list(self._turns)

    def messages(self) -> list[dict]:
        return [turn.to_message() for turn in self.turns()]

    def append(self, turn: ConversationTurn) -> None:
        with self.lock:
            self._turns.append(turn)
            self.last_used = time.monotonic()


class ConversationStore:
    """Process-wide map from conversation key to history.

    ``max_conversations`` (least recently used first) and ``idle_ttl``
    (seconds) bound retention; both default to unbounded.
    """

    def __init__(
        self,
        *,
        max_conversations: Optional[int] = None,
        idle_ttl: Optional[float] = None,
    ) -> None:
        self._lock = threading.Lock()
        self._histories: "OrderedDict[Hashable, ConversationHistory]" = OrderedDict()
        self._max_conversations = max_conversations
        self._idle_ttl = idle_ttl
        self._logger = logging.getLogger("docschat.conversations")

    def __len__(self) -> int:
        with self._lock:
            return len(self._histories)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._histories

    def _entry(self, key: Hashable, pin: bool = False) -> ConversationHistory:
        with self._lock:
            self._evict_expired()
            history = self._histories.get(key)
            if history is None:
                history = ConversationHistory(key)
                self._histories[key] = history
            else:
                self._histories.move_to_end(key)
            if pin:
                history.active += 1
            self._evict_overflow(keep=key)
            return history

    def _evict_expired(self) -> None:
        if self._idle_ttl is None:
            return
        cutoff = time.monotonic() - self._idle_ttl
        stale = [
            k for k, h in self._histories.items()
            if h.last_used < cutoff and not h.active
        ]
        for key in stale:
            del self._histories[key]
            self._logger.info("Evicted idle conversation key=%s", key)

    def _evict_overflow(self, keep: Hashable) -> None:
        # Held conversations and the key being looked up are never evicted,
        # so the bound can be exceeded until they are released.
        if self._max_conversations is None:
            return
        excess = len(self._histories) - self._max_conversations
        if excess <= 0:
            return
        idle = [k for k, h in self._histories.items() if not h.active and k != keep]
        for key in idle[:excess]:
            del self._histories[key]
            self._logger.info("Evicted conversation key=%s (store full)", key)

    @contextmanager
    def lock(self, key: Hashable) -> Iterator[ConversationHistory]:
        """Hold one conversation key exclusively.

        All work on the key is serialized by its history lock, and the history
        stays in the store (it cannot be evicted) while the block runs.
        """
        history = self._entry(key, pin=True)
        try:
            with history.lock:
                yield history
        finally:
            with self._lock:
                history.active -= 1
                history.last_used = time.monotonic()

    def get_or_create(
        self, key: Hashable, primer_fn: Callable[[], str]
    ) -> ConversationHistory:
        """Return the history for key, priming it on first use.

        primer_fn runs only when the history is empty, and its text becomes
        the first user turn.
        """
        history = self._entry(key)
        with history.lock:
            if not history.primed:
                if len(history) == 0:
                    history.append(ConversationTurn("user", primer_fn()))
                    self._logger.info("Primed conversation key=%s", key)
                history.primed = True
        return history

    def append(self, key: Hashable, turn: ConversationTurn) -> None:
        history = self._entry(key)
        history.append(turn)

    def history(self, key: Hashable) -> list[ConversationTurn]:
        with self._lock:
            history = self._histories.get(key)
        return history.turns() if history is not None else []

    def clear(self) -> None:
        with self._lock:
            count = len(self._histories)
            self._histories.clear()
        self._logger.info("Conversation store cleared (%d conversations)", count)
