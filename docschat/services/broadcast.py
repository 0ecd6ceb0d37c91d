"""Fan-out of stream frames to channel subscribers."""

from __future__ import annotations

import itertools
import logging
import threading
from typing import Callable

FrameSink = Callable[[dict], None]


def meeting_channel(meeting_id: int) -> str:
    """Channel key for one meeting's conversation."""
    return f"meeting:{meeting_id}"


def partial_frame(content: str) -> dict:
    return {"type": "partial", "content": content}


def full_frame(content: str) -> dict:
    return {"type": "full", "content": content}


def error_frame(content: str) -> dict:
    return {"type": "error", "content": content}


class BroadcastHub:
    """Thread-safe publish/subscribe keyed by channel name.

    Sinks are called on the publishing thread, in publish order, so frames of
    one conversation reach each subscriber in sequence. Delivery is
    at-most-once: a failing sink is logged and skipped.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, dict[int, FrameSink]] = {}
        self._ids = itertools.count(1)
        self._logger = logging.getLogger("docschat.broadcast")

    def subscribe(self, channel: str, sink: FrameSink) -> int:
        with self._lock:
            token = next(self._ids)
            self._subscribers.setdefault(channel, {})[token] = sink
        self._logger.info("Subscribed token=%d channel=%s", token, channel)
        return token

    def unsubscribe(self, channel: str, token: int) -> None:
        with self._lock:
            sinks = self._subscribers.get(channel)
            if not sinks:
                return
            sinks.pop(token, None)
            if not sinks:
                del self._subscribers[channel]
        self._logger.info("Unsubscribed token=%d channel=%s", token, channel)

    def subscriber_count(self, channel: str) -> int:
        with self._lock:
            return len(self._subscribers.get(channel, {}))

    def publish(self, channel: str, frame: dict) -> int:
        """Deliver frame to every current subscriber of channel.

        Returns the number of sinks that accepted the frame.
        """
        with self._lock:
            sinks = list(self._subscribers.get(channel, {}).values())
        delivered = 0
        for sink in sinks:
            try:
                sink(frame)
                delivered += 1
            except Exception as exc:
                self._logger.warning("Frame delivery failed channel=%s: %s", channel, exc)
        return delivered
