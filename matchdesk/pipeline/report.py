"""Report generation: applicant + photos -> multimodal prompt -> stored report revision."""

import logging
import sqlite3
from datetime import datetime

from matchdesk.core.db import record_report, require_applicant
from matchdesk.core.errors import NoUsableImages
from matchdesk.core.schemas import Applicant
from matchdesk.imaging.normalizer import ImageNormalizer
from matchdesk.llm.base import CompletionBackend, Prompt

logger = logging.getLogger(__name__)

REPORT_SYSTEM_PROMPT = (
    "You are a professional relationship analyst and matchmaker. You read a "
    "dating questionnaire together with the applicant's photos and write a warm, "
    "specific and honest personality analysis.\n\n"
    "Cover, as numbered sections in this order:\n"
    "  1. First impression (from the photos: style, expression, atmosphere)\n"
    "  2. Personality traits\n"
    "  3. Social and interpersonal style\n"
    "  4. Love and relationship tendencies\n"
    "  5. Ideal partner profile\n"
    "  6. Suggestions for growth and dating\n\n"
    "Return ONLY a JSON object (no markdown fence, no explanation):\n"
    '{"analysis": [{"title": "1. <section title>", "content": "<markdown prose>"}, ...]}\n\n'
    "Every title and content string must be written in the same language the "
    "applicant used in the questionnaire. Use markdown (bold, lists) inside "
    "content only."
)


def build_applicant_text(applicant: Applicant) -> str:
    """Serialize the questionnaire fields the model should see."""
    return (
        "APPLICANT QUESTIONNAIRE\n"
        f"Name: {applicant.name}\n"
        f"Gender: {applicant.gender}\n"
        f"Orientation: {applicant.orientation}\n"
        f"Birth: {applicant.birth_date or 'not provided'}\n"
        f"Zodiac: {applicant.zodiac or 'not provided'}\n"
        f"MBTI: {applicant.mbti or 'not provided'}\n"
        f"Location: {applicant.location or 'not provided'}\n"
        f"Occupation: {applicant.occupation or 'not provided'}\n"
        f"Self introduction:\n{applicant.self_intro or 'not provided'}\n"
    )


async def build_prompt(applicant: Applicant, normalizer: ImageNormalizer) -> Prompt:
    """Normalize the applicant's photos and assemble the prompt.

    Raises NoUsableImages if the applicant has photos but none could be used.
    """
    images = await normalizer.normalize_all(applicant.images)
    if applicant.images and not images:
        msg = f"None of {len(applicant.images)} image(s) for {applicant.name} could be processed"
        raise NoUsableImages(msg)
    if len(images) < len(applicant.images):
        logger.info(
            "Using %d of %d image(s) for %s",
            len(images), len(applicant.images), applicant.name,
        )
    return Prompt(
        system=REPORT_SYSTEM_PROMPT,
        text=build_applicant_text(applicant),
        images=images,
    )


async def generate_report(
    conn: sqlite3.Connection,
    applicant_id: str,
    *,
    backend: CompletionBackend,
    normalizer: ImageNormalizer,
) -> Applicant:
    """Generate and store a new report revision for one applicant.

    Nothing is written unless the backend returns text. Earlier PDF artifacts
    stay in the history even though they describe the previous text.
    """
    applicant = require_applicant(conn, applicant_id)
    logger.info("Generating report for %s (%s)", applicant.name, applicant.id)

    prompt = await build_prompt(applicant, normalizer)
    raw_response = await backend.complete(prompt)

    updated = record_report(conn, applicant.id, raw_response, datetime.now())
    report = updated.personality_report
    logger.info(
        "Report stored for %s (revision %d, %d chars)",
        applicant.name,
        report.generation_count if report else 0,
        len(raw_response),
    )
    return updated
