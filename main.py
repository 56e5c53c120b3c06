"""CLI entry point for the matchmaking report pipeline."""

import argparse
import asyncio
import logging
import sqlite3
import sys
from pathlib import Path
from typing import Any

import yaml

from matchdesk.core.config import Settings
from matchdesk.core.db import (
    init_db,
    insert_applicant,
    list_pending_reports,
    list_processing_records,
    match_applicants,
    unmatch_applicant,
)
from matchdesk.core.errors import MatchdeskError
from matchdesk.core.schemas import Applicant, ProcessingRecord
from matchdesk.pipeline.batch import BatchOrchestrator
from matchdesk.pipeline.service import ReportPipeline


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Matchmaking admin tool - personality reports and PDFs",
    )
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to settings YAML file (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    import_parser = subparsers.add_parser("import", help="Import applicants from a YAML list")
    import_parser.add_argument("file", help="YAML file holding a list of questionnaires")

    report_parser = subparsers.add_parser("report", help="Generate a report for one applicant")
    report_parser.add_argument("applicant_id")

    pdf_parser = subparsers.add_parser("pdf", help="Build a PDF from an applicant's report")
    pdf_parser.add_argument("applicant_id")

    batch_parser = subparsers.add_parser("batch", help="Generate reports and PDFs in bulk")
    batch_parser.add_argument("applicant_ids", nargs="*", help="Applicant ids, in order")
    batch_parser.add_argument(
        "--pending",
        action="store_true",
        help="Process every matched applicant that has no report yet",
    )
    batch_parser.add_argument(
        "--interval",
        type=float,
        default=2.0,
        help="Seconds between progress lines (default: 2)",
    )

    records_parser = subparsers.add_parser("records", help="Show recent processing records")
    records_parser.add_argument("--limit", type=int, default=100)

    subparsers.add_parser("pending", help="List matched applicants that need a report")

    match_parser = subparsers.add_parser("match", help="Pair two applicants (omit B to unmatch)")
    match_parser.add_argument("applicant_id")
    match_parser.add_argument("partner_id", nargs="?")

    task_parser = subparsers.add_parser("task", help="Generate a date task for a couple")
    task_parser.add_argument("couple_id", type=int)

    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def cmd_import(conn: sqlite3.Connection, path: str) -> None:
    raw: Any = yaml.safe_load(Path(path).read_text()) or []
    if not isinstance(raw, list):
        msg = f"{path} must contain a list of questionnaires"
        raise ValueError(msg)
    for item in raw:
        applicant = insert_applicant(conn, Applicant.model_validate(item))
        print(f"{applicant.id}  {applicant.name}")
    print(f"Imported {len(raw)} applicant(s).")


def print_records(records: list[ProcessingRecord]) -> None:
    for r in records:
        flags = f"report={'Y' if r.report_generated else 'N'} pdf={'Y' if r.pdf_generated else 'N'}"
        outcome = "OK  " if r.success else "FAIL"
        line = f"  [{outcome}] {r.name or r.applicant_id} {flags} - {r.status}"
        if r.pdf_url:
            line += f" ({r.pdf_url})"
        print(line)


async def watch_batch(
    orchestrator: BatchOrchestrator,
    applicant_ids: list[str],
    interval: float,
) -> list[ProcessingRecord]:
    """Start a batch and print progress snapshots until it completes."""
    task = orchestrator.start_batch(applicant_ids)
    last_line = ""
    while not task.done():
        progress = orchestrator.get_progress()
        line = f"[{progress.current}/{progress.total}] {progress.status}"
        if line != last_line:
            print(line)
            last_line = line
        await asyncio.wait({task}, timeout=interval)
    records = await task
    progress = orchestrator.get_progress()
    print(f"[{progress.current}/{progress.total}] {progress.status}")
    return records


async def run_command(args: argparse.Namespace, settings: Settings, conn: sqlite3.Connection) -> None:
    pipeline = ReportPipeline.from_settings(conn, settings)

    if args.command == "report":
        applicant = await pipeline.generate_report(args.applicant_id)
        report = applicant.personality_report
        print(f"Report generated for {applicant.name} (revision {report.generation_count if report else 0}).")
    elif args.command == "pdf":
        applicant, url = await pipeline.generate_pdf(args.applicant_id)
        print(f"PDF generated for {applicant.name}: {url}")
    elif args.command == "task":
        couple = await pipeline.generate_couple_task(args.couple_id)
        title = couple.task.content.get("title", "") if couple.task else ""
        print(f"Task generated for couple #{couple.couple_id}: {title}")
    elif args.command == "batch":
        ids = list(args.applicant_ids)
        if args.pending:
            ids.extend(a.id for a in list_pending_reports(conn))
        if not ids:
            print("Nothing to process.")
            return
        orchestrator = BatchOrchestrator(pipeline)
        records = await watch_batch(orchestrator, ids, args.interval)
        print(f"\nBatch complete: {sum(r.success for r in records)}/{len(records)} succeeded.")
        print_records(records)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = Settings.from_yaml(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    conn = init_db(settings.database.path)
    try:
        if args.command == "import":
            cmd_import(conn, args.file)
        elif args.command == "records":
            print_records(list_processing_records(conn, limit=args.limit))
        elif args.command == "pending":
            for applicant in list_pending_reports(conn):
                print(f"{applicant.id}  {applicant.name}  matched with {applicant.matched_with}")
        elif args.command == "match":
            if args.partner_id:
                couple = match_applicants(conn, args.applicant_id, args.partner_id)
                print(f"Couple #{couple.couple_id} created.")
            else:
                applicant = unmatch_applicant(conn, args.applicant_id)
                print(f"{applicant.name} is now {applicant.status.value}.")
        else:
            asyncio.run(run_command(args, settings, conn))
    except MatchdeskError as e:
        print(f"Error ({e.kind}): {e.message}", file=sys.stderr)
        sys.exit(1)
    except (FileNotFoundError, ImportError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        conn.close()


if __name__ == "__main__":
    main()
