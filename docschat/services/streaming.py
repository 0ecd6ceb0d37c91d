"""Drain a streaming completion into its final text."""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Optional

from docschat.services.llm.base import StreamTimeout

_logger = logging.getLogger("docschat.streaming")

DeltaSink = Callable[[str], None]


def consume(
    deltas: Iterable[str],
    on_delta: Optional[DeltaSink] = None,
    timeout: Optional[float] = None,
) -> str:
    """Accumulate deltas in arrival order and return the full text.

    ``on_delta`` is called once per delta, synchronously, before the next
    delta is requested. If the source raises, the error propagates and the
    partial text is dropped. ``timeout`` bounds the total time spent; the
    source is closed and StreamTimeout raised once it is exceeded.
    """
    iterator = iter(deltas)
    deadline = time.monotonic() + timeout if timeout is not None else None
    parts: list[str] = []
    finished = False
    try:
        for delta in iterator:
            parts.append(delta)
            if on_delta is not None:
                on_delta(delta)
            if deadline is not None and time.monotonic() > deadline:
                raise StreamTimeout(
                    f"Completion exceeded {timeout:.1f}s after {len(parts)} deltas"
                )
        finished = True
    finally:
        if not finished:
            _close(iterator)
    return "".join(parts)


def _close(iterator) -> None:
    close = getattr(iterator, "close", None)
    if close is None:
        return
    try:
        close()
    except Exception as exc:
        _logger.warning("Failed to close completion stream: %s", exc)
