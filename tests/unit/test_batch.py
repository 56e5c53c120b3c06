"""Tests for the batch orchestrator and its progress tracker."""

import asyncio
import sqlite3
from unittest.mock import patch

import pytest

from matchdesk.core.db import insert_processing_record, list_processing_records, require_applicant
from matchdesk.core.errors import AlreadyRunning, ExternalServiceFailed, RenderTimeout
from matchdesk.core.schemas import COMPLETION_SENTINEL, ProcessingRecord
from matchdesk.pipeline.batch import (
    PREPARING_STATUS,
    BatchOrchestrator,
    BatchProgressTracker,
    describe_error,
)
from tests.fakes import VALID_REPORT, FakeBackend, FakeRenderer


class RecordingTracker(BatchProgressTracker):
    def __init__(self) -> None:
        super().__init__()
        self.currents: list[int] = []
        self.statuses: list[str] = []

    def advance(self, current: int) -> None:
        super().advance(current)
        self.currents.append(current)

    def set_status(self, status: str) -> None:
        super().set_status(status)
        self.statuses.append(status)


class TestBatchProgressTracker:
    def test_reset(self) -> None:
        t = BatchProgressTracker()
        t.reset(3)
        p = t.snapshot()
        assert (p.current, p.total, p.status) == (0, 3, PREPARING_STATUS)

    def test_advance_clears_user(self) -> None:
        t = BatchProgressTracker()
        t.reset(2)
        t.advance(1)
        t.set_user("Lin")
        t.advance(2)
        assert t.snapshot().current_user == ""

    def test_cannot_go_backwards(self) -> None:
        t = BatchProgressTracker()
        t.reset(3)
        t.advance(2)
        with pytest.raises(ValueError, match="backwards"):
            t.advance(1)

    def test_snapshot_is_a_copy(self) -> None:
        t = BatchProgressTracker()
        t.reset(1)
        snap = t.snapshot()
        t.advance(1)
        assert snap.current == 0


class TestDescribeError:
    def test_pipeline_error(self) -> None:
        assert describe_error(RenderTimeout("slow")) == "render_timeout: slow"

    def test_other_error(self) -> None:
        assert describe_error(KeyError("x")) == "KeyError: 'x'"


class TestBatchOrchestrator:
    async def test_all_succeed(self, db, stored, pipeline_factory) -> None:  # type: ignore[no-untyped-def]
        a, b = stored("A"), stored("B")
        orchestrator = BatchOrchestrator(pipeline_factory())

        records = await orchestrator.run_batch([a.id, b.id])

        assert [r.applicant_id for r in records] == [a.id, b.id]
        assert all(r.success and r.report_generated and r.pdf_generated for r in records)
        assert all(r.pdf_url.startswith("http://files.test/reports/") for r in records)
        assert len({r.run_id for r in records}) == 1
        progress = orchestrator.get_progress()
        assert (progress.current, progress.total) == (2, 2)
        assert progress.is_complete
        assert not orchestrator.is_running()

    async def test_report_failure_continues(self, db, stored, pipeline_factory) -> None:  # type: ignore[no-untyped-def]
        a, b = stored("A"), stored("B")
        backend = FakeBackend([ExternalServiceFailed("bot down"), VALID_REPORT])
        orchestrator = BatchOrchestrator(pipeline_factory(backend=backend))

        first, second = await orchestrator.run_batch([a.id, b.id])

        assert first.success is False
        assert first.report_generated is False and first.pdf_generated is False
        assert first.error == "external_service_failed: bot down"
        assert first.status.startswith("failed:")
        assert first.name == "A"
        assert second.success is True
        assert require_applicant(db, a.id).personality_report is None

    async def test_pdf_failure_still_success(self, db, stored, pipeline_factory) -> None:  # type: ignore[no-untyped-def]
        a = stored("A")
        renderer = FakeRenderer(RenderTimeout("page never settled"))
        orchestrator = BatchOrchestrator(pipeline_factory(renderer=renderer))

        (record,) = await orchestrator.run_batch([a.id])

        assert record.success is True
        assert record.report_generated is True
        assert record.pdf_generated is False
        assert record.pdf_url == ""
        assert record.error == "render_timeout: page never settled"
        assert "PDF failed for A" in record.status
        report = require_applicant(db, a.id).personality_report
        assert report is not None and report.generation_count == 1

    async def test_unknown_id_recorded(self, db, stored, pipeline_factory) -> None:  # type: ignore[no-untyped-def]
        a = stored("A")
        orchestrator = BatchOrchestrator(pipeline_factory())
        missing, ok = await orchestrator.run_batch(["ghost", a.id])
        assert missing.success is False
        assert missing.name == ""
        assert missing.error is not None and missing.error.startswith("not_found")
        assert ok.success is True

    async def test_unexpected_exception_recorded(self, db, stored, pipeline_factory) -> None:  # type: ignore[no-untyped-def]
        a, b = stored("A"), stored("B")
        backend = FakeBackend([RuntimeError("kaboom"), VALID_REPORT])
        orchestrator = BatchOrchestrator(pipeline_factory(backend=backend))
        first, second = await orchestrator.run_batch([a.id, b.id])
        assert first.success is False
        assert first.error == "RuntimeError: kaboom"
        assert second.success is True

    async def test_records_persisted_in_order(self, db, stored, pipeline_factory) -> None:  # type: ignore[no-untyped-def]
        people = [stored(f"P{i}") for i in range(3)]
        orchestrator = BatchOrchestrator(pipeline_factory())
        await orchestrator.run_batch([p.id for p in people])
        records = orchestrator.get_processing_records()
        assert [r.applicant_id for r in records] == [p.id for p in reversed(people)]
        assert orchestrator.get_processing_records(limit=1)[0].applicant_id == people[-1].id

    async def test_progress_monotonic(self, db, stored, pipeline_factory) -> None:  # type: ignore[no-untyped-def]
        people = [stored(f"P{i}") for i in range(3)]
        tracker = RecordingTracker()
        orchestrator = BatchOrchestrator(pipeline_factory(), tracker=tracker)
        await orchestrator.run_batch([p.id for p in people])
        assert tracker.currents == [1, 2, 3]
        assert tracker.statuses[-1] == COMPLETION_SENTINEL
        assert COMPLETION_SENTINEL not in tracker.statuses[:-1]
        assert "generating report for P0" in tracker.statuses

    async def test_already_running_has_no_side_effects(self, db, stored, pipeline_factory) -> None:  # type: ignore[no-untyped-def]
        a, b = stored("A"), stored("B")
        orchestrator = BatchOrchestrator(pipeline_factory())

        task = orchestrator.start_batch([a.id])
        assert orchestrator.is_running()
        before = orchestrator.get_progress()

        with pytest.raises(AlreadyRunning):
            orchestrator.start_batch([b.id])
        with pytest.raises(AlreadyRunning):
            await orchestrator.run_batch([b.id])

        assert orchestrator.get_progress() == before
        await task
        assert [r.applicant_id for r in list_processing_records(db)] == [a.id]
        assert require_applicant(db, b.id).personality_report is None
        assert orchestrator.get_progress().total == 1

    async def test_concurrent_starts_one_wins(self, db, stored, pipeline_factory) -> None:  # type: ignore[no-untyped-def]
        a = stored("A")
        orchestrator = BatchOrchestrator(pipeline_factory())
        results = await asyncio.gather(
            orchestrator.run_batch([a.id]),
            orchestrator.run_batch([a.id]),
            return_exceptions=True,
        )
        assert sum(isinstance(r, AlreadyRunning) for r in results) == 1
        assert sum(isinstance(r, list) for r in results) == 1

    async def test_runs_again_after_finish(self, db, stored, pipeline_factory) -> None:  # type: ignore[no-untyped-def]
        a = stored("A")
        orchestrator = BatchOrchestrator(pipeline_factory())
        first = await orchestrator.run_batch([a.id])
        second = await orchestrator.run_batch([a.id])
        assert first[0].run_id != second[0].run_id
        report = require_applicant(db, a.id).personality_report
        assert report is not None
        assert report.generation_count == 2
        assert len(report.pdf_reports) == 2

    async def test_empty_batch(self, pipeline_factory) -> None:  # type: ignore[no-untyped-def]
        orchestrator = BatchOrchestrator(pipeline_factory())
        assert await orchestrator.run_batch([]) == []
        assert orchestrator.get_progress().is_complete

    async def test_record_write_failure_continues(  # type: ignore[no-untyped-def]
        self, db, stored, pipeline_factory, caplog
    ) -> None:
        a, b = stored("A"), stored("B")
        attempted: list[str] = []

        def flaky_insert(conn: sqlite3.Connection, record: ProcessingRecord) -> int:
            attempted.append(record.applicant_id)
            if len(attempted) == 1:
                raise sqlite3.OperationalError("database is locked")
            return insert_processing_record(conn, record)

        orchestrator = BatchOrchestrator(pipeline_factory())
        with patch("matchdesk.pipeline.batch.insert_processing_record", side_effect=flaky_insert):
            first, second = await orchestrator.run_batch([a.id, b.id])

        assert attempted == [a.id, b.id]
        assert first.success and second.success
        assert [r.applicant_id for r in list_processing_records(db)] == [b.id]
        assert orchestrator.get_progress().is_complete
        assert not orchestrator.is_running()
        assert "Could not store processing record for " + a.id in caplog.text

    def test_start_without_event_loop(self, pipeline_factory) -> None:  # type: ignore[no-untyped-def]
        orchestrator = BatchOrchestrator(pipeline_factory())
        with pytest.raises(RuntimeError):
            orchestrator.start_batch(["A"])
        assert not orchestrator.is_running()
        assert orchestrator.get_progress().total == 0
        assert orchestrator.get_progress().status == ""
