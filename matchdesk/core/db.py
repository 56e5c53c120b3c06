"""SQLite database layer for applicants, couples and batch processing records."""

import json
import sqlite3
from datetime import datetime
from pathlib import Path

from matchdesk.core.errors import NotFound
from matchdesk.core.schemas import (
    Applicant,
    ApplicantStatus,
    Couple,
    CoupleTask,
    PdfArtifact,
    PersonalityReport,
    ProcessingRecord,
    ReportContent,
)

_APPLICANTS_TABLE = """
CREATE TABLE IF NOT EXISTS applicants (
    id              TEXT    PRIMARY KEY,
    name            TEXT    NOT NULL,
    phone           TEXT    NOT NULL DEFAULT '',
    wechat          TEXT    NOT NULL DEFAULT '',
    gender          TEXT    NOT NULL DEFAULT 'female',
    orientation     TEXT    NOT NULL DEFAULT 'straight',
    birth_date      TEXT    NOT NULL DEFAULT '',
    zodiac          TEXT    NOT NULL DEFAULT '',
    mbti            TEXT    NOT NULL DEFAULT '',
    location        TEXT    NOT NULL DEFAULT '',
    occupation      TEXT    NOT NULL DEFAULT '',
    self_intro      TEXT    NOT NULL DEFAULT '',
    images_json     TEXT    NOT NULL DEFAULT '[]',
    status          TEXT    NOT NULL DEFAULT 'submitted',
    matched_with    TEXT,
    matched_at      TEXT,
    report_raw      TEXT,
    report_generated_at TEXT,
    report_generation_count INTEGER NOT NULL DEFAULT 0,
    pdf_reports_json TEXT   NOT NULL DEFAULT '[]',
    created_at      TEXT    NOT NULL
);
"""

_COUPLES_TABLE = """
CREATE TABLE IF NOT EXISTS couples (
    couple_id       INTEGER PRIMARY KEY,
    user1           TEXT    NOT NULL,
    user2           TEXT    NOT NULL,
    matched_at      TEXT    NOT NULL,
    task_json       TEXT
);
"""

_PROCESSING_RECORDS_TABLE = """
CREATE TABLE IF NOT EXISTS processing_records (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id          TEXT    NOT NULL,
    applicant_id    TEXT    NOT NULL,
    name            TEXT    NOT NULL DEFAULT '',
    success         INTEGER NOT NULL,
    error           TEXT,
    status          TEXT    NOT NULL,
    report_generated INTEGER NOT NULL DEFAULT 0,
    pdf_generated   INTEGER NOT NULL DEFAULT 0,
    pdf_url         TEXT    NOT NULL DEFAULT '',
    timestamp       TEXT    NOT NULL
);
"""


def init_db(path: str | Path) -> sqlite3.Connection:
    """Create the database and tables, returning a connection."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute(_APPLICANTS_TABLE)
    conn.execute(_COUPLES_TABLE)
    conn.execute(_PROCESSING_RECORDS_TABLE)
    conn.commit()
    return conn


# ---------------------------------------------------------------------------
# Applicants
# ---------------------------------------------------------------------------


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_applicant(row: sqlite3.Row) -> Applicant:
    pdf_reports = [PdfArtifact.model_validate(p) for p in json.loads(row["pdf_reports_json"])]
    report: PersonalityReport | None = None
    if row["report_raw"] is not None or row["report_generation_count"] or pdf_reports:
        report = PersonalityReport(
            content=ReportContent(raw_response=row["report_raw"] or ""),
            generated_at=_parse_ts(row["report_generated_at"]),
            generation_count=row["report_generation_count"],
            pdf_reports=pdf_reports,
        )
    return Applicant(
        id=row["id"],
        name=row["name"],
        phone=row["phone"],
        wechat=row["wechat"],
        gender=row["gender"],
        orientation=row["orientation"],
        birth_date=row["birth_date"],
        zodiac=row["zodiac"],
        mbti=row["mbti"],
        location=row["location"],
        occupation=row["occupation"],
        self_intro=row["self_intro"],
        images=json.loads(row["images_json"]),
        status=ApplicantStatus(row["status"]),
        matched_with=row["matched_with"],
        matched_at=_parse_ts(row["matched_at"]),
        personality_report=report,
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def insert_applicant(conn: sqlite3.Connection, applicant: Applicant) -> Applicant:
    """Store a freshly submitted questionnaire."""
    report = applicant.personality_report
    conn.execute(
        """
        INSERT INTO applicants
            (id, name, phone, wechat, gender, orientation, birth_date, zodiac,
             mbti, location, occupation, self_intro, images_json, status,
             matched_with, matched_at, report_raw, report_generated_at,
             report_generation_count, pdf_reports_json, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            applicant.id,
            applicant.name,
            applicant.phone,
            applicant.wechat,
            applicant.gender,
            applicant.orientation,
            applicant.birth_date,
            applicant.zodiac,
            applicant.mbti,
            applicant.location,
            applicant.occupation,
            applicant.self_intro,
            json.dumps(applicant.images),
            applicant.status.value,
            applicant.matched_with,
            _ts(applicant.matched_at),
            report.content.raw_response if report else None,
            _ts(report.generated_at) if report else None,
            report.generation_count if report else 0,
            _dump_pdf_reports(report.pdf_reports) if report else "[]",
            applicant.created_at.isoformat(),
        ),
    )
    conn.commit()
    return applicant


def get_applicant(conn: sqlite3.Connection, applicant_id: str) -> Applicant | None:
    row = conn.execute("SELECT * FROM applicants WHERE id = ?", (applicant_id,)).fetchone()
    return _row_to_applicant(row) if row is not None else None


def require_applicant(conn: sqlite3.Connection, applicant_id: str) -> Applicant:
    """Like get_applicant, but raises NotFound."""
    applicant = get_applicant(conn, applicant_id)
    if applicant is None:
        msg = f"Applicant not found: {applicant_id}"
        raise NotFound(msg)
    return applicant


def list_applicants(conn: sqlite3.Connection) -> list[Applicant]:
    rows = conn.execute("SELECT * FROM applicants ORDER BY created_at DESC").fetchall()
    return [_row_to_applicant(r) for r in rows]


def list_pending_reports(conn: sqlite3.Connection) -> list[Applicant]:
    """Matched applicants that still need a first report."""
    rows = conn.execute(
        """
        SELECT * FROM applicants
        WHERE status = 'matched'
          AND matched_with IS NOT NULL
          AND report_generation_count = 0
        ORDER BY matched_at
        """
    ).fetchall()
    return [_row_to_applicant(r) for r in rows]


def record_report(
    conn: sqlite3.Connection,
    applicant_id: str,
    raw_response: str,
    generated_at: datetime,
) -> Applicant:
    """Write one new report revision in a single statement.

    Increments generation_count, advances submitted -> reported and never
    touches a matched status or the existing PDF history.
    """
    cursor = conn.execute(
        """
        UPDATE applicants SET
            report_raw = ?,
            report_generated_at = ?,
            report_generation_count = report_generation_count + 1,
            status = CASE WHEN status = 'submitted' THEN 'reported' ELSE status END
        WHERE id = ?
        """,
        (raw_response, generated_at.isoformat(), applicant_id),
    )
    conn.commit()
    if cursor.rowcount == 0:
        msg = f"Applicant not found: {applicant_id}"
        raise NotFound(msg)
    return require_applicant(conn, applicant_id)


def _dump_pdf_reports(reports: list[PdfArtifact]) -> str:
    return json.dumps([r.model_dump(mode="json") for r in reports])


def prepend_pdf_artifact(
    conn: sqlite3.Connection,
    applicant_id: str,
    artifact: PdfArtifact,
) -> Applicant:
    """Insert a PDF artifact at the head of the applicant's history."""
    with conn:
        row = conn.execute(
            "SELECT pdf_reports_json FROM applicants WHERE id = ?", (applicant_id,)
        ).fetchone()
        if row is None:
            msg = f"Applicant not found: {applicant_id}"
            raise NotFound(msg)
        history = [PdfArtifact.model_validate(p) for p in json.loads(row["pdf_reports_json"])]
        conn.execute(
            "UPDATE applicants SET pdf_reports_json = ? WHERE id = ?",
            (_dump_pdf_reports([artifact, *history]), applicant_id),
        )
    return require_applicant(conn, applicant_id)


# ---------------------------------------------------------------------------
# Matching and couples
# ---------------------------------------------------------------------------


def _row_to_couple(row: sqlite3.Row) -> Couple:
    task = CoupleTask.model_validate_json(row["task_json"]) if row["task_json"] else None
    return Couple(
        couple_id=row["couple_id"],
        user1=row["user1"],
        user2=row["user2"],
        matched_at=datetime.fromisoformat(row["matched_at"]),
        task=task,
    )


def _fallback_status(conn: sqlite3.Connection, applicant_id: str) -> str:
    row = conn.execute(
        "SELECT report_raw FROM applicants WHERE id = ?", (applicant_id,)
    ).fetchone()
    has_report = row is not None and bool(row["report_raw"])
    return ApplicantStatus.REPORTED.value if has_report else ApplicantStatus.SUBMITTED.value


def _clear_match(conn: sqlite3.Connection, applicant_id: str) -> None:
    conn.execute(
        "UPDATE applicants SET matched_with = NULL, matched_at = NULL, status = ? WHERE id = ?",
        (_fallback_status(conn, applicant_id), applicant_id),
    )


def _delete_couples_for(conn: sqlite3.Connection, applicant_ids: list[str]) -> None:
    for applicant_id in applicant_ids:
        rows = conn.execute(
            "SELECT user1, user2 FROM couples WHERE user1 = ? OR user2 = ?",
            (applicant_id, applicant_id),
        ).fetchall()
        for row in rows:
            # the old partner must not keep pointing at us
            _clear_match(conn, row["user1"])
            _clear_match(conn, row["user2"])
        conn.execute(
            "DELETE FROM couples WHERE user1 = ? OR user2 = ?", (applicant_id, applicant_id)
        )


def match_applicants(
    conn: sqlite3.Connection,
    applicant_id: str,
    partner_id: str,
    matched_at: datetime | None = None,
) -> Couple:
    """Pair two applicants symmetrically, replacing any earlier couple of either side."""
    if applicant_id == partner_id:
        msg = "An applicant cannot be matched with themselves"
        raise ValueError(msg)
    require_applicant(conn, applicant_id)
    require_applicant(conn, partner_id)
    when = matched_at or datetime.now()

    with conn:
        _delete_couples_for(conn, [applicant_id, partner_id])
        row = conn.execute("SELECT MAX(couple_id) AS last FROM couples").fetchone()
        couple_id = (row["last"] or 0) + 1
        conn.execute(
            "INSERT INTO couples (couple_id, user1, user2, matched_at) VALUES (?, ?, ?, ?)",
            (couple_id, applicant_id, partner_id, when.isoformat()),
        )
        for me, other in ((applicant_id, partner_id), (partner_id, applicant_id)):
            conn.execute(
                "UPDATE applicants SET matched_with = ?, matched_at = ?, status = ? WHERE id = ?",
                (other, when.isoformat(), ApplicantStatus.MATCHED.value, me),
            )
    return Couple(couple_id=couple_id, user1=applicant_id, user2=partner_id, matched_at=when)


def unmatch_applicant(conn: sqlite3.Connection, applicant_id: str) -> Applicant:
    """Dissolve the applicant's couple, if any, on both sides."""
    applicant = require_applicant(conn, applicant_id)
    with conn:
        _delete_couples_for(conn, [applicant_id])
        if applicant.matched_with:
            _clear_match(conn, applicant.matched_with)
        _clear_match(conn, applicant_id)
    return require_applicant(conn, applicant_id)


def get_couple(conn: sqlite3.Connection, couple_id: int) -> Couple | None:
    row = conn.execute("SELECT * FROM couples WHERE couple_id = ?", (couple_id,)).fetchone()
    return _row_to_couple(row) if row is not None else None


def list_couples(
    conn: sqlite3.Connection,
    page: int = 1,
    page_size: int = 10,
) -> tuple[list[Couple], int]:
    """Return one page of couples (newest match first) and the total count."""
    offset = max(page - 1, 0) * page_size
    rows = conn.execute(
        "SELECT * FROM couples ORDER BY matched_at DESC LIMIT ? OFFSET ?",
        (page_size, offset),
    ).fetchall()
    total = conn.execute("SELECT COUNT(*) AS n FROM couples").fetchone()["n"]
    return [_row_to_couple(r) for r in rows], total


def save_couple_task(conn: sqlite3.Connection, couple_id: int, task: CoupleTask) -> Couple:
    cursor = conn.execute(
        "UPDATE couples SET task_json = ? WHERE couple_id = ?",
        (task.model_dump_json(), couple_id),
    )
    conn.commit()
    couple = get_couple(conn, couple_id) if cursor.rowcount else None
    if couple is None:
        msg = f"Couple not found: {couple_id}"
        raise NotFound(msg)
    return couple


# ---------------------------------------------------------------------------
# Processing records
# ---------------------------------------------------------------------------


def insert_processing_record(conn: sqlite3.Connection, record: ProcessingRecord) -> int:
    """Append an audit record. Returns the row ID."""
    cursor = conn.execute(
        """
        INSERT INTO processing_records
            (run_id, applicant_id, name, success, error, status,
             report_generated, pdf_generated, pdf_url, timestamp)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            record.run_id,
            record.applicant_id,
            record.name,
            int(record.success),
            record.error,
            record.status,
            int(record.report_generated),
            int(record.pdf_generated),
            record.pdf_url,
            record.timestamp.isoformat(),
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0


def list_processing_records(
    conn: sqlite3.Connection,
    limit: int = 100,
    run_id: str | None = None,
) -> list[ProcessingRecord]:
    """Most recent records first."""
    query = "SELECT * FROM processing_records"
    params: tuple[object, ...] = ()
    if run_id is not None:
        query += " WHERE run_id = ?"
        params = (run_id,)
    query += " ORDER BY timestamp DESC, id DESC LIMIT ?"
    rows = conn.execute(query, (*params, limit)).fetchall()
    return [
        ProcessingRecord(
            run_id=r["run_id"],
            applicant_id=r["applicant_id"],
            name=r["name"],
            success=bool(r["success"]),
            error=r["error"],
            status=r["status"],
            report_generated=bool(r["report_generated"]),
            pdf_generated=bool(r["pdf_generated"]),
            pdf_url=r["pdf_url"],
            timestamp=datetime.fromisoformat(r["timestamp"]),
        )
        for r in rows
    ]
