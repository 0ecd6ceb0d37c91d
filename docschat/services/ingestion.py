"""
Batch ingestion of meeting transcripts.

Reads newline-delimited JSON records, asks the model for a summary and a list
of action items for each transcript, and stores one meeting per record.
Records whose uid is already stored are skipped, so an interrupted run can
simply be started again over the same file.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Callable, Iterator, Optional, Union

from pydantic import ValidationError

from docschat.models import IngestionRecord, Meeting
from docschat.services.llm import (
    BackendUnavailable,
    LLMProvider,
    LLMProviderError,
)
from docschat.services.meeting_store import DuplicateRecord, MeetingStore
from docschat.services.streaming import consume

_logger = logging.getLogger("docschat.ingestion")

ProgressCallback = Callable[[int, int], None]

PROMPTS = {
    "summary": (
        "Write an accurate summary of the following TEXT. Do not include the word "
        "summary, just provide the summary.\n\n"
        "TEXT: {transcript}\n\n"
        "CONCISE SUMMARY:\n"
    ),
    "action_items": (
        "Compile a list of action items or concerns, with their owners or speakers, "
        "for the following TEXT. For every key point, mention the likely owner. "
        "Infer as much as you can. If the transcript does not explicitly list owners, "
        "try to infer the likely owners. It is very important to infer the likely "
        "owners of each action item. Do not show an action item if you are unable to "
        "match it with an owner. I don't want a summary. Try your very best. Please "
        "respond in a formal manner.\n\n"
        "TEXT: {transcript}\n\n"
        "ACTION ITEMS WITH THEIR OWNERS:\n"
    ),
}

CREATED = "created"
SKIPPED = "skipped"
MALFORMED = "malformed"
FAILED = "failed"


class RecordMalformed(ValueError):
    """An input line could not be turned into an ingestion record."""


def parse_unit_date(uid: str) -> tuple[str, date]:
    """Split a ``<unit>_<MMDDYYYY>`` uid into its unit and date.

    >>> parse_unit_date("G01_01012020")
    ('G01', datetime.date(2020, 1, 1))
    """
    unit, sep, stamp = uid.rpartition("_")
    if not sep or not unit:
        raise RecordMalformed(f"uid {uid!r} is not in <unit>_<MMDDYYYY> form")
    try:
        return unit, datetime.strptime(stamp, "%m%d%Y").date()
    except ValueError as exc:
        raise RecordMalformed(f"uid {uid!r} has an invalid date {stamp!r}") from exc


def parse_record(line: Union[str, bytes]) -> IngestionRecord:
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise RecordMalformed(f"Invalid UTF-8: {exc}") from exc
    try:
        data = json.loads(line)
    except json.JSONDecodeError as exc:
        raise RecordMalformed(f"Invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise RecordMalformed(f"Expected an object, got {type(data).__name__}")
    try:
        record = IngestionRecord.model_validate(data)
    except ValidationError as exc:
        raise RecordMalformed(f"Invalid record: {exc.error_count()} field errors") from exc
    parse_unit_date(record.uid)
    return record


@dataclass
class IngestionReport:
    total: int = 0
    processed: int = 0
    created: int = 0
    skipped: int = 0
    malformed: int = 0
    failed: int = 0
    failed_uids: list[str] = field(default_factory=list)

    def record(self, status: str, uid: Optional[str] = None) -> None:
        self.processed += 1
        if status == CREATED:
            self.created += 1
        elif status == SKIPPED:
            self.skipped += 1
        elif status == MALFORMED:
            self.malformed += 1
        elif status == FAILED:
            self.failed += 1
            if uid:
                self.failed_uids.append(uid)


def _iter_lines(path: Path) -> Iterator[tuple[int, bytes]]:
    # Lines stay bytes; parse_record decodes them
    with open(path, "rb") as f:
        for line_no, line in enumerate(f, start=1):
            if line.strip():
                yield line_no, line


def count_records(path: str | Path) -> int:
    return sum(1 for _ in _iter_lines(Path(path)))


class IngestionPipeline:
    """Turns transcript records into stored meetings, one record at a time."""

    def __init__(
        self,
        meeting_store: MeetingStore,
        provider: LLMProvider,
        *,
        stream_timeout: Optional[float] = None,
    ) -> None:
        self._meeting_store = meeting_store
        self._provider = provider
        self._stream_timeout = stream_timeout

    def _complete(self, prompt_name: str, transcript: str) -> str:
        prompt = PROMPTS[prompt_name].format(transcript=transcript)
        text = consume(
            self._provider.chat_stream([{"role": "user", "content": prompt}]),
            timeout=self._stream_timeout,
        )
        return text.strip()

    def process_record(self, record: IngestionRecord) -> str:
        """Ingest one record and return its status (created or skipped).

        BackendUnavailable and other provider errors propagate; nothing is
        stored unless both completions finish.
        """
        if self._meeting_store.exists_uid(record.uid):
            _logger.info("Skipping %s: already ingested", record.uid)
            return SKIPPED

        unit, meeting_date = parse_unit_date(record.uid)
        ai_summary = self._complete("summary", record.transcript)
        ai_action_items = self._complete("action_items", record.transcript)

        try:
            self._meeting_store.create_meeting(
                Meeting(
                    uid=record.uid,
                    topic=record.summary,
                    entry=record.transcript,
                    unit=unit,
                    date=meeting_date,
                    ai_summary=ai_summary,
                    ai_action_items=ai_action_items,
                )
            )
        except DuplicateRecord:
            _logger.info("Skipping %s: stored concurrently", record.uid)
            return SKIPPED
        _logger.info("Processed %s", record.uid)
        return CREATED

    def run(
        self,
        path: str | Path,
        on_progress: Optional[ProgressCallback] = None,
    ) -> IngestionReport:
        """Process every record in the file in order.

        Raises BackendUnavailable if the backend goes away; the records
        already stored stay stored and a later run resumes after them.
        """
        path = Path(path)
        report = IngestionReport(total=count_records(path))
        _logger.info("Processing %d entries from %s", report.total, path)

        for line_no, line in _iter_lines(path):
            uid: Optional[str] = None
            try:
                record = parse_record(line)
                uid = record.uid
                status = self.process_record(record)
            except RecordMalformed as exc:
                _logger.warning("Skipping malformed record at line %d: %s", line_no, exc)
                status = MALFORMED
            except BackendUnavailable:
                _logger.error("Backend unavailable while processing %s (line %d)", uid, line_no)
                raise
            except LLMProviderError as exc:
                _logger.warning(
                    "Failed to process %s (line %d, %s): %s",
                    uid, line_no, type(exc).__name__, exc,
                )
                status = FAILED

            report.record(status, uid)
            if on_progress is not None:
                on_progress(report.processed, report.total)

        _logger.info(
            "Ingestion finished: total=%d created=%d skipped=%d malformed=%d failed=%d",
            report.total, report.created, report.skipped, report.malformed, report.failed,
        )
        return report
