"""Batch orchestrator: report + PDF for many applicants, one at a time.

Per applicant:
  1. Advance progress, load the applicant
  2. Generate the report (failure -> record, skip the PDF)
  3. Build the PDF (failure -> record keeps success, pdf_generated=False)
  4. Append one processing record, always, before the next id

Only one batch may run per process. The guard is checked and set without
yielding to the event loop, so two concurrent start requests cannot both win.
Progress lives in memory and is lost on restart; processing records persist.
"""

import asyncio
import logging
import sqlite3
import uuid

from matchdesk.core.db import insert_processing_record, list_processing_records, require_applicant
from matchdesk.core.errors import AlreadyRunning, MatchdeskError
from matchdesk.core.schemas import COMPLETION_SENTINEL, BatchProgress, ProcessingRecord
from matchdesk.pipeline.service import ReportPipeline

logger = logging.getLogger(__name__)

PREPARING_STATUS = "preparing"


def describe_error(error: Exception) -> str:
    if isinstance(error, MatchdeskError):
        return f"{error.kind}: {error.message}"
    return f"{type(error).__name__}: {error}"


class BatchProgressTracker:
    """Owns the live progress state. The orchestrator is the only writer."""

    def __init__(self) -> None:
        self._state = BatchProgress()

    def snapshot(self) -> BatchProgress:
        return self._state.model_copy()

    def reset(self, total: int) -> None:
        self._state = BatchProgress(current=0, total=total, current_user="", status=PREPARING_STATUS)

    def advance(self, current: int) -> None:
        if current < self._state.current:
            msg = f"progress cannot move backwards ({self._state.current} -> {current})"
            raise ValueError(msg)
        self._state.current = current
        self._state.current_user = ""

    def set_user(self, name: str) -> None:
        self._state.current_user = name

    def set_status(self, status: str) -> None:
        self._state.status = status


class BatchOrchestrator:
    """Runs the report pipeline over a list of applicant ids.

    Usage::

        orchestrator = BatchOrchestrator(pipeline)
        task = orchestrator.start_batch(ids)     # AlreadyRunning if busy
        orchestrator.get_progress()              # poll from anywhere
        records = await task
    """

    def __init__(
        self,
        pipeline: ReportPipeline,
        tracker: BatchProgressTracker | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._conn = pipeline.conn
        self._tracker = tracker or BatchProgressTracker()
        self._running = False

    def is_running(self) -> bool:
        return self._running

    def get_progress(self) -> BatchProgress:
        return self._tracker.snapshot()

    def get_processing_records(self, limit: int = 100) -> list[ProcessingRecord]:
        return list_processing_records(self._conn, limit=limit)

    def start_batch(self, applicant_ids: list[str]) -> "asyncio.Task[list[ProcessingRecord]]":
        """Accept a batch and run it in the background.

        Must be called from a running event loop; raises RuntimeError
        otherwise, leaving the orchestrator untouched.
        """
        loop = asyncio.get_running_loop()
        run_id = self._acquire(applicant_ids)
        return loop.create_task(self._run(run_id, list(applicant_ids)))

    async def run_batch(self, applicant_ids: list[str]) -> list[ProcessingRecord]:
        """Accept a batch and wait for it to finish."""
        run_id = self._acquire(applicant_ids)
        return await self._run(run_id, list(applicant_ids))

    def _acquire(self, applicant_ids: list[str]) -> str:
        if self._running:
            msg = "A batch is already being processed"
            raise AlreadyRunning(msg)
        self._running = True
        self._tracker.reset(len(applicant_ids))
        run_id = uuid.uuid4().hex
        logger.info("Batch %s accepted: %d applicant(s)", run_id, len(applicant_ids))
        return run_id

    async def _run(self, run_id: str, applicant_ids: list[str]) -> list[ProcessingRecord]:
        records: list[ProcessingRecord] = []
        try:
            for index, applicant_id in enumerate(applicant_ids, start=1):
                record = await self._process_one(run_id, index, applicant_id)
                try:
                    insert_processing_record(self._conn, record)
                except sqlite3.Error:
                    logger.exception("Could not store processing record for %s", applicant_id)
                records.append(record)

            self._tracker.set_status(COMPLETION_SENTINEL)
            succeeded = sum(1 for r in records if r.success)
            logger.info(
                "Batch %s finished: %d/%d succeeded, %d PDF(s)",
                run_id, succeeded, len(records), sum(1 for r in records if r.pdf_generated),
            )
            return records
        finally:
            self._running = False

    async def _process_one(self, run_id: str, index: int, applicant_id: str) -> ProcessingRecord:
        self._tracker.advance(index)
        name = ""
        report_generated = False
        pdf_generated = False
        pdf_url = ""
        error: str | None = None

        try:
            applicant = require_applicant(self._conn, applicant_id)
            name = applicant.name
            self._tracker.set_user(name)
            self._set_status(f"generating report for {name}")

            await self._pipeline.generate_report(applicant_id)
            report_generated = True
            self._set_status(f"report ready for {name}, generating PDF")

            try:
                _, pdf_url = await self._pipeline.generate_pdf(applicant_id)
                pdf_generated = True
                status = self._set_status(f"PDF ready for {name}")
            except MatchdeskError as e:
                error = describe_error(e)
                logger.warning("PDF failed for %s: %s", name, error)
                status = self._set_status(f"PDF failed for {name}: {error}")
            except Exception as e:
                error = describe_error(e)
                logger.exception("Unexpected PDF failure for %s", name)
                status = self._set_status(f"PDF failed for {name}: {error}")
            success = True
        except MatchdeskError as e:
            error = describe_error(e)
            logger.warning("Processing %s failed: %s", name or applicant_id, error)
            status = self._set_status(f"failed: {error}")
            success = False
        except Exception as e:
            error = describe_error(e)
            logger.exception("Unexpected failure processing %s", name or applicant_id)
            status = self._set_status(f"failed: {error}")
            success = False

        return ProcessingRecord(
            run_id=run_id,
            applicant_id=applicant_id,
            name=name,
            success=success,
            error=error,
            status=status,
            report_generated=report_generated,
            pdf_generated=pdf_generated,
            pdf_url=pdf_url,
        )

    def _set_status(self, status: str) -> str:
        self._tracker.set_status(status)
        return status
