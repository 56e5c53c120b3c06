"""PDF artifact building: stored report text -> HTML -> PDF -> stored, versioned artifact."""

import logging
import sqlite3
from datetime import datetime

from matchdesk.core.config import RenderConfig
from matchdesk.core.db import prepend_pdf_artifact, require_applicant
from matchdesk.core.errors import MalformedReportJSON
from matchdesk.core.schemas import Applicant, PdfArtifact
from matchdesk.pipeline.sections import parse_sections
from matchdesk.render.browser import PdfOptions, PdfRenderer
from matchdesk.render.store import ArtifactStore
from matchdesk.render.template import ReportTemplate

logger = logging.getLogger(__name__)


async def generate_pdf(
    conn: sqlite3.Connection,
    applicant_id: str,
    *,
    renderer: PdfRenderer,
    store: ArtifactStore,
    config: RenderConfig,
) -> tuple[Applicant, str]:
    """Build a PDF from the applicant's current report and prepend it to the history.

    Returns (updated applicant, artifact URL). The PDF history is only touched
    after the bytes are safely stored.
    """
    applicant = require_applicant(conn, applicant_id)
    report = applicant.personality_report
    if report is None or not report.content.raw_response.strip():
        msg = f"Applicant {applicant.name} has no report to render"
        raise MalformedReportJSON(msg)

    sections = parse_sections(report.content.raw_response)
    generated_at = datetime.now()
    document = ReportTemplate(config).render(applicant, sections, generated_at)

    logger.info("Rendering PDF for %s (%d sections)", applicant.name, len(sections))
    pdf = await renderer.html_to_pdf(document, PdfOptions.from_config(config))
    url = store.write(pdf, applicant.name)

    updated = prepend_pdf_artifact(
        conn, applicant.id, PdfArtifact(url=url, generated_at=generated_at)
    )
    logger.info("PDF ready for %s: %s", applicant.name, url)
    return updated, url
