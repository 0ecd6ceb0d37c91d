import logging

from fastapi import APIRouter, HTTPException

from docschat.services.meeting_store import MeetingStore


def create_meetings_router(meeting_store: MeetingStore) -> APIRouter:
    router = APIRouter()
    logger = logging.getLogger("docschat.api.meetings")

    @router.get("/api/meetings")
    def list_meetings() -> list[dict]:
        return [meeting.listing() for meeting in meeting_store.list_meetings()]

    @router.get("/api/meetings/{meeting_id}")
    def get_meeting(meeting_id: int) -> dict:
        meeting = meeting_store.get_meeting(meeting_id)
        if not meeting:
            logger.warning("Meeting not found: id=%s", meeting_id)
            raise HTTPException(status_code=404, detail="Meeting not found")
        return meeting.detail()

    return router
