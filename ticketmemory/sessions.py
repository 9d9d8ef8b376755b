"""
Session Ledger
==============

Records work sessions per ticket. A session row is created on the first save
for a session id and updated by later saves with the same id.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, desc, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func

from ticketmemory.db.models import SessionRecord, utcnow
from ticketmemory.git import DiffStats

logger = logging.getLogger(__name__)


@dataclass
class WorkSession:
    ticket: str
    session_id: str
    branch: str = ""
    task_description: str = ""
    files_modified: list[str] = field(default_factory=list)
    lines_added: int = 0
    lines_removed: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_seconds: int = 0
    commit_sha: str = ""

    @property
    def duration_minutes(self) -> int:
        return self.duration_seconds // 60

    @classmethod
    def from_record(cls, record: SessionRecord) -> "WorkSession":
        return cls(
            ticket=record.ticket,
            session_id=record.session_id,
            branch=record.branch_name or "",
            task_description=record.task_description or "",
            files_modified=decode_files(record.files_modified),
            lines_added=record.lines_added or 0,
            lines_removed=record.lines_removed or 0,
            start_time=record.start_time,
            end_time=record.end_time,
            duration_seconds=record.duration_seconds or 0,
            commit_sha=record.commit_sha or "",
        )


@dataclass
class SessionStats:
    count: int = 0
    total_seconds: int = 0

    @property
    def total_minutes(self) -> int:
        return self.total_seconds // 60


def decode_files(blob: Optional[str]) -> list[str]:
    if not blob:
        return []
    try:
        files = json.loads(blob)
    except json.JSONDecodeError as e:
        logger.debug("Failed to parse files_modified: %s", e)
        return []
    return [str(f) for f in files] if isinstance(files, list) else []


def encode_files(files: list[str]) -> str:
    return json.dumps(files) if files else ""


class SessionLedger:
    """Session persistence bound to one ``AsyncSession``."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def upsert(
        self,
        *,
        ticket: str,
        session_id: str,
        branch: str = "",
        task_description: str = "",
        stats: Optional[DiffStats] = None,
        commit_sha: str = "",
        now: Optional[datetime] = None,
    ) -> WorkSession:
        """
        Create or update the session keyed by ``session_id``.

        Updates refresh description, diff stats, commit and end time; the
        duration is recomputed from the original start time.
        """
        stats = stats or DiffStats()
        now = now or utcnow()

        result = await self.session.execute(
            select(SessionRecord).where(SessionRecord.session_id == session_id)
        )
        existing = result.scalar_one_or_none()

        if existing is None:
            record = SessionRecord(
                ticket=ticket,
                branch_name=branch,
                session_id=session_id,
                task_description=task_description,
                files_modified=encode_files(stats.files),
                lines_added=stats.lines_added,
                lines_removed=stats.lines_removed,
                start_time=now,
                end_time=now,
                duration_seconds=0,
                commit_sha=commit_sha,
            )
            self.session.add(record)
            await self.session.flush()
            logger.debug("Inserted session %s for %s", session_id, ticket)
            return WorkSession.from_record(record)

        start = existing.start_time or now
        duration = max(0, int((now - start.replace(tzinfo=None)).total_seconds()))
        await self.session.execute(
            update(SessionRecord)
            .where(SessionRecord.session_id == session_id)
            .values(
                task_description=task_description,
                files_modified=encode_files(stats.files),
                lines_added=stats.lines_added,
                lines_removed=stats.lines_removed,
                end_time=now,
                duration_seconds=duration,
                commit_sha=commit_sha,
            )
        )
        logger.debug("Updated session %s for %s", session_id, ticket)
        return WorkSession(
            ticket=existing.ticket,
            session_id=session_id,
            branch=existing.branch_name or "",
            task_description=task_description,
            files_modified=list(stats.files),
            lines_added=stats.lines_added,
            lines_removed=stats.lines_removed,
            start_time=start,
            end_time=now,
            duration_seconds=duration,
            commit_sha=commit_sha,
        )

    async def stats(self, ticket: str) -> SessionStats:
        """Session count and total duration for a ticket in one query."""
        result = await self.session.execute(
            select(
                func.count(SessionRecord.id),
                func.coalesce(func.sum(SessionRecord.duration_seconds), 0),
            ).where(SessionRecord.ticket == ticket)
        )
        count, total = result.one()
        return SessionStats(count=count or 0, total_seconds=int(total or 0))

    async def stats_by_ticket(self) -> dict[str, SessionStats]:
        result = await self.session.execute(
            select(
                SessionRecord.ticket,
                func.count(SessionRecord.id),
                func.coalesce(func.sum(SessionRecord.duration_seconds), 0),
            ).group_by(SessionRecord.ticket)
        )
        return {
            ticket: SessionStats(count=count, total_seconds=int(total or 0))
            for ticket, count, total in result.all()
        }

    async def recent(self, ticket: str, limit: int = 5) -> list[WorkSession]:
        result = await self.session.execute(
            select(SessionRecord)
            .where(SessionRecord.ticket == ticket)
            .order_by(desc(SessionRecord.end_time))
            .limit(limit)
        )
        return [WorkSession.from_record(r) for r in result.scalars()]

    async def count(self) -> int:
        result = await self.session.execute(select(func.count(SessionRecord.id)))
        return result.scalar_one()

    async def prune(self, older_than_days: int, now: Optional[datetime] = None) -> int:
        """Delete sessions that ended more than ``older_than_days`` ago."""
        cutoff = (now or utcnow()) - timedelta(days=older_than_days)
        result = await self.session.execute(
            delete(SessionRecord).where(SessionRecord.end_time < cutoff)
        )
        return result.rowcount or 0
