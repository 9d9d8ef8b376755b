"""
Tests for the Memory Service
============================

Tests for ticketmemory/service.py
"""

from datetime import datetime
from unittest.mock import patch

import pytest
from sqlalchemy import select

from ticketmemory.annotations import Category
from ticketmemory.config import MemoryConfig
from ticketmemory.db import SessionRecord, TicketContextRecord, get_session_maker, run_in_transaction, table_exists
from ticketmemory.errors import (
    ContextNotFoundError,
    IndexOutOfRangeError,
    InvalidSelectorError,
    ValidationError,
)
from ticketmemory.git import DiffStats
from ticketmemory.service import AddOutcome, MemoryService, generate_session_id
from ticketmemory.sessions import SessionLedger

GO_DIFF = """+++ b/server.go
+// HandleLogin authenticates users
+func HandleLogin(w http.ResponseWriter, r *http.Request) {
+func (s *Server) Start() error {
+type Config struct { // server settings
+type Store interface {
+\trouter.HandleFunc("/api/users", listUsers)
"""


@pytest.fixture
def service():
    return MemoryService(MemoryConfig())


async def all_tickets() -> list[str]:
    async with get_session_maker()() as session:
        return list((await session.execute(select(TicketContextRecord.ticket))).scalars())


async def session_count() -> int:
    async with get_session_maker()() as session:
        return len((await session.execute(select(SessionRecord))).scalars().all())


class TestSaveSession:
    """Tests for the save path."""

    @pytest.mark.asyncio
    async def test_shared_branch_records_session_only(self, db_path, service):
        result = await service.save_session(branch="main", message="TODO: fix the build", session_id="s1")

        assert result.ticket == "default"
        assert result.added == []
        assert await all_tickets() == []
        assert await session_count() == 1

    @pytest.mark.asyncio
    async def test_feature_branch_extraction(self, db_path, service):
        await service.save_session(
            branch="feature-auth",
            message="Remember: always validate input before saving.\nTODO: add rate limiting",
            session_id="s1",
            stats=DiffStats(files=["auth.go"], lines_added=3),
        )

        context = await service.load_context("feature-auth")
        pinned = context.pinned()
        assert [p.text for p in pinned] == ["always validate input before saving."]
        assert [p.text for p in context.next_steps] == ["TODO: add rate limiting"]
        assert context.implementations == []

    @pytest.mark.asyncio
    async def test_repeat_save_does_not_duplicate(self, db_path, service):
        for _ in range(2):
            await service.save_session(branch="feature-auth", message="TODO: add rate limiting", session_id="s1")

        context = await service.load_context("feature-auth")
        assert len(context.next_steps) == 1
        assert await session_count() == 1

    @pytest.mark.asyncio
    async def test_error_state_recorded(self, db_path, service):
        await service.save_session(branch="feature-auth", message="Login is broken for admins")

        context = await service.load_context("feature-auth")
        assert [p.text for p in context.current_state] == ["Login is broken for admins"]

    @pytest.mark.asyncio
    async def test_failure_rolls_back_session_and_annotations(self, db_path, service):
        with patch.object(MemoryService, "apply_extraction", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                await service.save_session(branch="feature-auth", message="TODO: x", session_id="s1")

        assert await session_count() == 0
        assert await all_tickets() == []

    def test_session_id_shape(self):
        assert generate_session_id().startswith("session-")


class TestAddAnnotation:
    """Tests for manual annotations."""

    @pytest.mark.asyncio
    async def test_default_ticket_is_rejected(self, db_path, service):
        with pytest.raises(ValidationError):
            await service.add_annotation("default", "Decided to use Redis because it is fast")

    @pytest.mark.asyncio
    async def test_general_gate_and_auto_category(self, db_path, service):
        outcome, point = await service.add_annotation("T-1", "Decided to use Redis because it is fast")
        assert outcome is AddOutcome.ADDED
        assert point.category == Category.DECISION

        outcome, _ = await service.add_annotation("T-1", "fixed typo")
        assert outcome is AddOutcome.REJECTED

        outcome, _ = await service.add_annotation("T-1", "  Decided to use Redis because it is fast  ")
        assert outcome is AddOutcome.DUPLICATE

    @pytest.mark.asyncio
    async def test_explicit_category_is_gated(self, db_path, service):
        outcome, _ = await service.add_annotation("T-1", "just some words", Category.PATTERN)
        assert outcome is AddOutcome.REJECTED

        outcome, point = await service.add_annotation("T-1", "just some words", Category.PATTERN, pinned=True)
        assert outcome is AddOutcome.ADDED
        assert point.pinned

    @pytest.mark.asyncio
    async def test_oversized_text_is_truncated(self, db_path):
        service = MemoryService(MemoryConfig(max_text_bytes=200))
        _, point = await service.add_annotation("T-1", "TODO: " + "x" * 1000, Category.NEXT)

        assert len(point.text.encode("utf-8")) <= 200
        assert "truncated" in point.text

    @pytest.mark.asyncio
    async def test_save_with_limit_below_marker_size(self, db_path):
        service = MemoryService(MemoryConfig(max_text_bytes=40))
        message = "Remember: always validate every single input before saving anything"

        result = await service.save_session(branch="feature-auth", message=message, session_id="s1")

        assert result.ticket == "feature-auth"
        context = await service.load_context("feature-auth")
        assert [p.text for p in context.pinned()] == ["always validate every single input befor"]
        assert all(len(p.text.encode("utf-8")) <= 40 for p in context.all_points())

    @pytest.mark.asyncio
    async def test_requirements(self, db_path, service):
        await service.set_requirements("T-1", "  Support OAuth login  ")
        context = await service.load_context("T-1")
        assert context.requirements == "Support OAuth login"


class TestRemoveAndComplete:
    """Tests for selector removal and completion marking."""

    async def seed_steps(self, service, count=5):
        for i in range(1, count + 1):
            await service.add_annotation("T-1", f"step {i}", Category.NEXT)

    @pytest.mark.asyncio
    async def test_remove_positions(self, db_path, service):
        await self.seed_steps(service)

        result = await service.remove("T-1", Category.NEXT, "2,4")

        assert [p.text for p in result.retained] == ["step 1", "step 3", "step 5"]
        context = await service.load_context("T-1")
        assert [p.text for p in context.next_steps] == ["step 1", "step 3", "step 5"]

    @pytest.mark.asyncio
    async def test_invalid_selector(self, db_path, service):
        await self.seed_steps(service)
        with pytest.raises(InvalidSelectorError):
            await service.remove("T-1", Category.NEXT, "two")

    @pytest.mark.asyncio
    async def test_remove_missing_ticket(self, db_path, service):
        with pytest.raises(ContextNotFoundError):
            await service.remove("nope", Category.NEXT, "all")

    @pytest.mark.asyncio
    async def test_mark_complete(self, db_path, service):
        await self.seed_steps(service, 2)

        assert await service.mark_complete("T-1", 1)
        assert not await service.mark_complete("T-1", 1)

        context = await service.load_context("T-1")
        assert context.next_steps[0].text == "[COMPLETE] step 1"

    @pytest.mark.asyncio
    async def test_mark_complete_out_of_range(self, db_path, service):
        await self.seed_steps(service, 2)
        with pytest.raises(IndexOutOfRangeError) as exc:
            await service.mark_complete("T-1", 3)
        assert exc.value.count == 2

    @pytest.mark.asyncio
    async def test_clear(self, db_path, service):
        await self.seed_steps(service, 1)
        assert await service.clear("T-1") == 1
        assert await service.load_context("T-1") is None


class TestHarvest:
    """Tests for diff pattern harvesting."""

    @pytest.mark.asyncio
    async def test_sync_keeps_every_signature(self, db_path, service):
        added = await service.harvest_patterns("feature-auth", GO_DIFF)
        assert len(added) == 5

    @pytest.mark.asyncio
    async def test_after_save_keeps_declarations_and_endpoints(self, db_path, service):
        added = await service.harvest_after_save("feature-auth", GO_DIFF)

        assert [p.text for p in added] == [
            "func HandleLogin // HandleLogin authenticates users",
            "type Config // server settings",
            "endpoint: /api/users",
        ]
        assert all(p.category == Category.PATTERN for p in added)

    @pytest.mark.asyncio
    async def test_default_ticket_and_empty_diff(self, db_path, service):
        assert await service.harvest_patterns("default", GO_DIFF) == []
        assert await service.harvest_patterns("feature-auth", "") == []


class TestMaintenance:
    """Tests for cleanup and dropping all data."""

    @pytest.mark.asyncio
    async def test_cleanup_prunes_old_sessions(self, db_path, service):
        await run_in_transaction(
            lambda s: SessionLedger(s).upsert(ticket="T-1", session_id="old", now=datetime(2020, 1, 1))
        )
        await service.save_session(branch="feature-auth", session_id="fresh")

        result = await service.cleanup(30)

        assert result.deleted == 1
        assert result.remaining == 1

    @pytest.mark.asyncio
    async def test_drop_everything(self, db_path, service):
        await service.save_session(branch="feature-auth", message="TODO: x", session_id="s1")

        await service.drop_everything()

        assert await session_count() == 0
        assert await all_tickets() == []
        assert await table_exists(TicketContextRecord.__tablename__)

    @pytest.mark.asyncio
    async def test_summary(self, db_path, service):
        await service.save_session(branch="feature-auth", message="TODO: x", session_id="s1")

        summary = await service.summary("feature-auth")

        assert summary.stats.count == 1
        assert summary.recent_sessions[0].session_id == "s1"
        assert len(summary.context.next_steps) == 1
