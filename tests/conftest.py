"""Shared fixtures: temp SQLite, in-memory image server, pipeline wired to fakes."""

import sqlite3
from pathlib import Path

import pytest

from matchdesk.core.config import Settings, StorageConfig
from matchdesk.core.db import init_db, insert_applicant
from matchdesk.core.schemas import Applicant
from matchdesk.imaging.normalizer import ImageNormalizer
from matchdesk.pipeline.service import ReportPipeline
from matchdesk.render.store import LocalArtifactStore
from tests.fakes import FakeBackend, FakeRenderer, image_client, make_applicant, png_bytes


@pytest.fixture
def db(tmp_path: Path) -> sqlite3.Connection:
    return init_db(tmp_path / "test.db")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        storage=StorageConfig(
            reports_dir=str(tmp_path / "reports"),
            public_base_url="http://files.test/reports/",
        )
    )


@pytest.fixture
def good_image_url() -> str:
    return "http://img.test/a.png"


@pytest.fixture
def image_routes(good_image_url: str) -> dict[str, tuple[int, str, bytes]]:
    return {
        good_image_url: (200, "image/png", png_bytes()),
        "http://img.test/b.png": (200, "image/png", png_bytes(30, 30)),
        "http://img.test/page.html": (200, "text/html", b"<html></html>"),
        "http://img.test/broken.png": (200, "image/png", b"not really a png"),
    }


@pytest.fixture
def normalizer(settings: Settings, image_routes: dict[str, tuple[int, str, bytes]]) -> ImageNormalizer:
    return ImageNormalizer(settings.images, client=image_client(image_routes))


@pytest.fixture
def stored(db: sqlite3.Connection):  # type: ignore[no-untyped-def]
    """Insert an applicant and return it."""

    def _insert(name: str = "Lin", images: list[str] | None = None, **kw: object) -> Applicant:
        return insert_applicant(db, make_applicant(name, images, **kw))

    return _insert


@pytest.fixture
def pipeline_factory(db: sqlite3.Connection, settings: Settings, normalizer: ImageNormalizer):  # type: ignore[no-untyped-def]
    def _build(
        backend: FakeBackend | None = None,
        renderer: FakeRenderer | None = None,
    ) -> ReportPipeline:
        return ReportPipeline(
            db,
            settings,
            backend=backend or FakeBackend(),
            normalizer=normalizer,
            renderer=renderer or FakeRenderer(),
            store=LocalArtifactStore(settings.storage),
        )

    return _build
