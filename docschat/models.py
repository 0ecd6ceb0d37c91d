"""Data models for meetings and ingestion records."""

from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, Field


class Meeting(BaseModel):
    id: int | None = None
    uid: str
    topic: str = ""
    entry: str = ""
    unit: str = ""
    date: dt.date | None = None
    ai_summary: str = ""
    ai_action_items: str = ""
    created_at: dt.datetime | None = None

    def listing(self) -> dict:
        return {
            "id": self.id,
            "date": self.date.isoformat() if self.date else None,
            "unit": self.unit,
            "topic": self.topic,
        }

    def detail(self) -> dict:
        return {
            **self.listing(),
            "entry": self.entry,
            "ai_summary": self.ai_summary,
            "ai_action_items": self.ai_action_items,
        }


class IngestionRecord(BaseModel):
    uid: str = Field(..., min_length=1)
    summary: str = ""
    transcript: str
