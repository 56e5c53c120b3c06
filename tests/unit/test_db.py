"""Tests for the database layer: applicants, report revisions, PDFs, matching, records."""

from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from matchdesk.core.db import (
    get_applicant,
    get_couple,
    init_db,
    insert_processing_record,
    list_applicants,
    list_couples,
    list_pending_reports,
    list_processing_records,
    match_applicants,
    prepend_pdf_artifact,
    record_report,
    require_applicant,
    save_couple_task,
    unmatch_applicant,
)
from matchdesk.core.errors import NotFound
from matchdesk.core.schemas import ApplicantStatus, CoupleTask, PdfArtifact, ProcessingRecord


class TestInitDb:
    def test_creates_tables(self, db) -> None:  # type: ignore[no-untyped-def]
        tables = {
            row[0]
            for row in db.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            ).fetchall()
        }
        assert {"applicants", "couples", "processing_records"} <= tables

    def test_idempotent(self, tmp_path) -> None:  # type: ignore[no-untyped-def]
        p = tmp_path / "double.db"
        init_db(p).close()
        init_db(p).close()


class TestApplicants:
    def test_insert_and_get(self, db, stored) -> None:  # type: ignore[no-untyped-def]
        a = stored("Lin", images=["http://img.test/a.png"], mbti="ENFP")
        got = get_applicant(db, a.id)
        assert got is not None
        assert got.name == "Lin"
        assert got.mbti == "ENFP"
        assert got.images == ["http://img.test/a.png"]
        assert got.status is ApplicantStatus.SUBMITTED
        assert got.personality_report is None

    def test_get_missing(self, db) -> None:  # type: ignore[no-untyped-def]
        assert get_applicant(db, "nope") is None

    def test_require_missing_raises(self, db) -> None:  # type: ignore[no-untyped-def]
        with pytest.raises(NotFound, match="nope"):
            require_applicant(db, "nope")

    def test_list_newest_first(self, db, stored) -> None:  # type: ignore[no-untyped-def]
        now = datetime.now()
        stored("Old", created_at=now - timedelta(days=1))
        stored("New", created_at=now)
        assert [a.name for a in list_applicants(db)] == ["New", "Old"]


class TestRecordReport:
    def test_first_revision(self, db, stored) -> None:  # type: ignore[no-untyped-def]
        a = stored()
        updated = record_report(db, a.id, "raw text", datetime(2024, 5, 1, 12, 0))
        report = updated.personality_report
        assert report is not None
        assert report.content.raw_response == "raw text"
        assert report.generation_count == 1
        assert report.generated_at == datetime(2024, 5, 1, 12, 0)
        assert updated.status is ApplicantStatus.REPORTED

    def test_count_increments_by_one_each_time(self, db, stored) -> None:  # type: ignore[no-untyped-def]
        a = stored()
        record_report(db, a.id, "one", datetime.now())
        updated = record_report(db, a.id, "two", datetime.now())
        assert updated.personality_report is not None
        assert updated.personality_report.generation_count == 2
        assert updated.personality_report.content.raw_response == "two"

    def test_matched_status_kept(self, db, stored) -> None:  # type: ignore[no-untyped-def]
        a, b = stored("A"), stored("B")
        match_applicants(db, a.id, b.id)
        updated = record_report(db, a.id, "text", datetime.now())
        assert updated.status is ApplicantStatus.MATCHED
        assert updated.matched_with == b.id

    def test_pdf_history_preserved(self, db, stored) -> None:  # type: ignore[no-untyped-def]
        a = stored()
        record_report(db, a.id, "one", datetime.now())
        prepend_pdf_artifact(db, a.id, PdfArtifact(url="http://x/1.pdf"))
        updated = record_report(db, a.id, "two", datetime.now())
        assert updated.personality_report is not None
        assert [p.url for p in updated.personality_report.pdf_reports] == ["http://x/1.pdf"]

    def test_missing_applicant(self, db) -> None:  # type: ignore[no-untyped-def]
        with pytest.raises(NotFound):
            record_report(db, "nope", "text", datetime.now())


class TestPrependPdfArtifact:
    def test_newest_first(self, db, stored) -> None:  # type: ignore[no-untyped-def]
        a = stored()
        record_report(db, a.id, "text", datetime.now())
        prepend_pdf_artifact(db, a.id, PdfArtifact(url="http://x/old.pdf"))
        updated = prepend_pdf_artifact(db, a.id, PdfArtifact(url="http://x/new.pdf"))
        assert updated.personality_report is not None
        urls = [p.url for p in updated.personality_report.pdf_reports]
        assert urls == ["http://x/new.pdf", "http://x/old.pdf"]

    def test_missing_applicant(self, db) -> None:  # type: ignore[no-untyped-def]
        with pytest.raises(NotFound):
            prepend_pdf_artifact(db, "nope", PdfArtifact(url="http://x/1.pdf"))


class TestMatching:
    def test_symmetric(self, db, stored) -> None:  # type: ignore[no-untyped-def]
        a, b = stored("A"), stored("B")
        couple = match_applicants(db, a.id, b.id)
        assert couple.couple_id == 1
        ra, rb = require_applicant(db, a.id), require_applicant(db, b.id)
        assert ra.matched_with == b.id
        assert rb.matched_with == a.id
        assert ra.status is rb.status is ApplicantStatus.MATCHED
        assert ra.matched_at == rb.matched_at

    def test_couple_ids_sequential(self, db, stored) -> None:  # type: ignore[no-untyped-def]
        a, b, c, d = stored("A"), stored("B"), stored("C"), stored("D")
        assert match_applicants(db, a.id, b.id).couple_id == 1
        assert match_applicants(db, c.id, d.id).couple_id == 2

    def test_self_match_rejected(self, db, stored) -> None:  # type: ignore[no-untyped-def]
        a = stored()
        with pytest.raises(ValueError, match="themselves"):
            match_applicants(db, a.id, a.id)

    def test_rematch_releases_old_partner(self, db, stored) -> None:  # type: ignore[no-untyped-def]
        a, b, c = stored("A"), stored("B"), stored("C")
        record_report(db, b.id, "text", datetime.now())
        match_applicants(db, a.id, b.id)
        match_applicants(db, a.id, c.id)

        old = require_applicant(db, b.id)
        assert old.matched_with is None
        assert old.status is ApplicantStatus.REPORTED
        assert require_applicant(db, a.id).matched_with == c.id
        assert list_couples(db)[1] == 1

    def test_unmatch_both_sides(self, db, stored) -> None:  # type: ignore[no-untyped-def]
        a, b = stored("A"), stored("B")
        match_applicants(db, a.id, b.id)
        ra = unmatch_applicant(db, a.id)
        rb = require_applicant(db, b.id)
        assert ra.matched_with is None and rb.matched_with is None
        assert ra.status is rb.status is ApplicantStatus.SUBMITTED
        assert list_couples(db) == ([], 0)

    def test_unmatch_missing(self, db) -> None:  # type: ignore[no-untyped-def]
        with pytest.raises(NotFound):
            unmatch_applicant(db, "nope")


class TestCouples:
    def test_get_and_save_task(self, db, stored) -> None:  # type: ignore[no-untyped-def]
        a, b = stored("A"), stored("B")
        couple = match_applicants(db, a.id, b.id)
        task = CoupleTask(content={"title": "Picnic"}, generated_at=datetime.now(), generation_count=1)
        saved = save_couple_task(db, couple.couple_id, task)
        assert saved.task is not None
        assert saved.task.content["title"] == "Picnic"
        got = get_couple(db, couple.couple_id)
        assert got is not None and got.task == saved.task

    def test_save_task_missing_couple(self, db) -> None:  # type: ignore[no-untyped-def]
        with pytest.raises(NotFound):
            save_couple_task(db, 99, CoupleTask())

    def test_save_task_couple_vanishes(self, db, stored) -> None:  # type: ignore[no-untyped-def]
        couple = match_applicants(db, stored("A").id, stored("B").id)
        with (
            patch("matchdesk.core.db.get_couple", return_value=None),
            pytest.raises(NotFound, match=f"Couple not found: {couple.couple_id}"),
        ):
            save_couple_task(db, couple.couple_id, CoupleTask())

    def test_list_pagination(self, db, stored) -> None:  # type: ignore[no-untyped-def]
        people = [stored(f"P{i}") for i in range(6)]
        base = datetime(2024, 1, 1)
        for i in range(3):
            match_applicants(db, people[2 * i].id, people[2 * i + 1].id, base + timedelta(days=i))
        page, total = list_couples(db, page=1, page_size=2)
        assert total == 3
        assert [c.couple_id for c in page] == [3, 2]
        page2, _ = list_couples(db, page=2, page_size=2)
        assert [c.couple_id for c in page2] == [1]


class TestPendingReports:
    def test_matched_without_report(self, db, stored) -> None:  # type: ignore[no-untyped-def]
        a, b, c, d = stored("A"), stored("B"), stored("C"), stored("D")
        match_applicants(db, a.id, b.id)
        record_report(db, b.id, "text", datetime.now())
        pending = {x.id for x in list_pending_reports(db)}
        assert pending == {a.id}
        assert c.id not in pending and d.id not in pending


class TestProcessingRecords:
    def _record(self, applicant_id: str, ts: datetime, run_id: str = "run1") -> ProcessingRecord:
        return ProcessingRecord(
            run_id=run_id,
            applicant_id=applicant_id,
            name=applicant_id.upper(),
            success=True,
            status="done",
            report_generated=True,
            timestamp=ts,
        )

    def test_roundtrip_fields(self, db) -> None:  # type: ignore[no-untyped-def]
        rec = ProcessingRecord(
            run_id="r",
            applicant_id="a",
            name="A",
            success=True,
            error="pdf: boom",
            status="PDF failed for A",
            report_generated=True,
            pdf_generated=False,
        )
        insert_processing_record(db, rec)
        assert list_processing_records(db) == [rec]

    def test_newest_first_and_limit(self, db) -> None:  # type: ignore[no-untyped-def]
        base = datetime(2024, 1, 1)
        for i in range(5):
            insert_processing_record(db, self._record(f"a{i}", base + timedelta(minutes=i)))
        records = list_processing_records(db, limit=3)
        assert [r.applicant_id for r in records] == ["a4", "a3", "a2"]

    def test_same_timestamp_ordered_by_insertion(self, db) -> None:  # type: ignore[no-untyped-def]
        ts = datetime(2024, 1, 1)
        insert_processing_record(db, self._record("first", ts))
        insert_processing_record(db, self._record("second", ts))
        assert [r.applicant_id for r in list_processing_records(db)] == ["second", "first"]

    def test_filter_by_run(self, db) -> None:  # type: ignore[no-untyped-def]
        ts = datetime(2024, 1, 1)
        insert_processing_record(db, self._record("a", ts, run_id="r1"))
        insert_processing_record(db, self._record("b", ts, run_id="r2"))
        assert [r.applicant_id for r in list_processing_records(db, run_id="r2")] == ["b"]
