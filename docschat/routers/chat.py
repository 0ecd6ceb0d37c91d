"""WebSocket chat channel.

Clients subscribe to one meeting's frames with ``/cable?room=<meeting_id>``
(or ``/ws/meetings/<meeting_id>``) and send
``{"action": "chat_message", "message": "...", "meeting_id": 1}``. Replies
arrive as ``{"type": "partial", ...}`` frames followed by one
``{"type": "full", ...}`` frame.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool

from docschat.services.broadcast import BroadcastHub, meeting_channel
from docschat.services.meeting_store import MeetingNotFound
from docschat.services.relay import RealtimeRelay


class ChatMessageAction(BaseModel):
    action: str
    message: str = ""
    meeting_id: int


def create_chat_router(relay: RealtimeRelay, hub: BroadcastHub) -> APIRouter:
    router = APIRouter(tags=["chat"])
    logger = logging.getLogger("docschat.api.chat")

    async def serve_connection(websocket: WebSocket, room: Optional[int]) -> None:
        await websocket.accept()
        loop = asyncio.get_running_loop()
        outbox: asyncio.Queue = asyncio.Queue()
        cancel = threading.Event()
        subscriptions: dict[str, int] = {}
        # One inbox and worker per meeting keeps its events in arrival order
        inboxes: dict[int, asyncio.Queue] = {}
        workers: list[asyncio.Task] = []

        def sink(frame: dict) -> None:
            loop.call_soon_threadsafe(outbox.put_nowait, frame)

        def subscribe(meeting_id: int) -> None:
            channel = meeting_channel(meeting_id)
            if channel not in subscriptions:
                subscriptions[channel] = hub.subscribe(channel, sink)

        async def sender() -> None:
            while True:
                frame = await outbox.get()
                await websocket.send_json(frame)

        async def run_chat(action: ChatMessageAction) -> None:
            try:
                await run_in_threadpool(
                    relay.handle_chat_message, action.meeting_id, action.message, cancel
                )
            except MeetingNotFound as exc:
                logger.warning("Chat for unknown meeting: %s", exc)
            except Exception as exc:
                logger.exception("Chat handling error meeting_id=%s: %s", action.meeting_id, exc)

        async def chat_worker(inbox: asyncio.Queue) -> None:
            while True:
                action = await inbox.get()
                await run_chat(action)

        def enqueue(action: ChatMessageAction) -> None:
            inbox = inboxes.get(action.meeting_id)
            if inbox is None:
                inbox = inboxes[action.meeting_id] = asyncio.Queue()
                workers.append(asyncio.create_task(chat_worker(inbox)))
            inbox.put_nowait(action)

        if room is not None:
            subscribe(room)
        logger.info("Chat socket connected room=%s", room)
        sender_task = asyncio.create_task(sender())
        try:
            while True:
                event = await websocket.receive()
                if event["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(event.get("code", 1000))
                raw = event.get("text")
                if raw is None:
                    logger.warning("Ignoring non-text chat frame")
                    continue
                try:
                    data = json.loads(raw)
                except ValueError:
                    logger.warning("Ignoring non-JSON chat payload: %s", raw[:200])
                    continue
                if not isinstance(data, dict) or data.get("action") != "chat_message":
                    logger.warning("Ignoring unknown chat action: %r", data)
                    continue
                try:
                    action = ChatMessageAction.model_validate(data)
                except ValidationError as exc:
                    logger.warning("Ignoring malformed chat message: %s", exc)
                    continue
                subscribe(action.meeting_id)
                enqueue(action)
        except WebSocketDisconnect:
            logger.info("Chat socket disconnected room=%s", room)
        finally:
            cancel.set()
            for channel, token in subscriptions.items():
                hub.unsubscribe(channel, token)
            tasks = [sender_task, *workers]
            for task in tasks:
                task.cancel()
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.warning("Chat socket task failed room=%s: %r", room, result)

    @router.websocket("/cable")
    async def cable(websocket: WebSocket, room: Optional[int] = Query(None)) -> None:
        await serve_connection(websocket, room)

    @router.websocket("/ws/meetings/{meeting_id}")
    async def meeting_socket(websocket: WebSocket, meeting_id: int) -> None:
        await serve_connection(websocket, meeting_id)

    return router
