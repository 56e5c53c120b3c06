"""Wires the report stages to their collaborators.

Usage::

    pipeline = ReportPipeline.from_settings(conn, settings)
    applicant = await pipeline.generate_report(applicant_id)
    applicant, url = await pipeline.generate_pdf(applicant_id)
"""

import sqlite3

from matchdesk.core.config import Settings
from matchdesk.core.schemas import Applicant, Couple
from matchdesk.imaging.normalizer import ImageNormalizer
from matchdesk.llm import get_backend
from matchdesk.llm.base import CompletionBackend
from matchdesk.pipeline import couple_task, pdf, report
from matchdesk.render.browser import BrowserPdfRenderer, PdfRenderer
from matchdesk.render.store import ArtifactStore, LocalArtifactStore


class ReportPipeline:
    """Single-applicant operations; errors propagate to the caller."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        settings: Settings,
        *,
        backend: CompletionBackend,
        normalizer: ImageNormalizer,
        renderer: PdfRenderer,
        store: ArtifactStore,
    ) -> None:
        self.conn = conn
        self.settings = settings
        self.backend = backend
        self.normalizer = normalizer
        self.renderer = renderer
        self.store = store

    @classmethod
    def from_settings(cls, conn: sqlite3.Connection, settings: Settings) -> "ReportPipeline":
        return cls(
            conn,
            settings,
            backend=get_backend(settings.ai.backend, settings.ai),
            normalizer=ImageNormalizer(settings.images),
            renderer=BrowserPdfRenderer(settings.render),
            store=LocalArtifactStore(settings.storage),
        )

    async def generate_report(self, applicant_id: str) -> Applicant:
        return await report.generate_report(
            self.conn, applicant_id, backend=self.backend, normalizer=self.normalizer
        )

    async def generate_pdf(self, applicant_id: str) -> tuple[Applicant, str]:
        return await pdf.generate_pdf(
            self.conn,
            applicant_id,
            renderer=self.renderer,
            store=self.store,
            config=self.settings.render,
        )

    async def generate_couple_task(self, couple_id: int) -> Couple:
        return await couple_task.generate_couple_task(
            self.conn, couple_id, backend=self.backend
        )
