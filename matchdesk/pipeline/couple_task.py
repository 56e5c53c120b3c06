"""LLM-generated date task for a matched couple."""

import logging
import sqlite3
from datetime import datetime
from typing import Any

from matchdesk.core.db import get_couple, require_applicant, save_couple_task
from matchdesk.core.errors import MalformedReportJSON, NotFound
from matchdesk.core.schemas import Applicant, Couple, CoupleTask
from matchdesk.llm.base import CompletionBackend, Prompt
from matchdesk.pipeline.sections import iter_json_values

logger = logging.getLogger(__name__)

_TASK_SYSTEM_PROMPT = (
    "You design playful, low-pressure first-date tasks for newly matched couples.\n\n"
    'Return ONLY a JSON object (no markdown, no explanation):\n'
    '{"title": "<task title>", "description": "<what they do together>", '
    '"steps": ["<step>", ...], "tips": ["<tip>", ...], '
    '"expected_duration": <hours as a number>}\n\n'
    "Write in the language the applicants used in their questionnaires."
)

REQUIRED_FIELDS = ("title", "description", "steps", "tips", "expected_duration")


def _describe(label: str, applicant: Applicant) -> str:
    return (
        f"{label}: {applicant.name}\n"
        f"Gender: {applicant.gender}\n"
        f"Birth: {applicant.birth_date or 'not provided'}\n"
        f"Occupation: {applicant.occupation or 'not provided'}\n"
        f"MBTI: {applicant.mbti or 'not provided'}\n"
        f"Location: {applicant.location or 'not provided'}\n"
    )


def parse_task(raw_text: str) -> dict[str, Any]:
    """Parse and validate the task JSON. Raises MalformedReportJSON.

    The first JSON object carrying every required field wins.
    """
    first_missing: list[str] | None = None
    for data in iter_json_values(raw_text):
        if not isinstance(data, dict):
            continue
        missing = [f for f in REQUIRED_FIELDS if data.get(f) in (None, "", [])]
        if not missing:
            return data
        if first_missing is None:
            first_missing = missing
    if first_missing is None:
        msg = "Task response is not a JSON object"
    else:
        msg = f"Task response missing fields: {', '.join(first_missing)}"
    raise MalformedReportJSON(msg)


async def generate_couple_task(
    conn: sqlite3.Connection,
    couple_id: int,
    *,
    backend: CompletionBackend,
) -> Couple:
    couple = get_couple(conn, couple_id)
    if couple is None:
        msg = f"Couple not found: {couple_id}"
        raise NotFound(msg)
    first = require_applicant(conn, couple.user1)
    second = require_applicant(conn, couple.user2)

    prompt = Prompt(
        system=_TASK_SYSTEM_PROMPT,
        text=f"{_describe('Person 1', first)}\n{_describe('Person 2', second)}",
    )
    logger.info("Generating task for couple #%d (%s & %s)", couple_id, first.name, second.name)
    content = parse_task(await backend.complete(prompt))

    previous = couple.task.generation_count if couple.task else 0
    task = CoupleTask(
        content=content,
        generated_at=datetime.now(),
        generation_count=previous + 1,
    )
    return save_couple_task(conn, couple_id, task)
