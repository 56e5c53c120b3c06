"""Artifact storage for rendered PDFs."""

import logging
import re
import time
import uuid
from pathlib import Path
from typing import Protocol
from urllib.parse import quote

from matchdesk.core.config import StorageConfig
from matchdesk.core.errors import StorageWriteFailed

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^\w\-]+", re.UNICODE)


class ArtifactStore(Protocol):
    def write(self, data: bytes, suggested_name: str) -> str:
        """Persist bytes and return their public URL."""
        ...


def unique_filename(suggested_name: str, suffix: str = ".pdf") -> str:
    """``<safe-name>_<ms-timestamp>_<uuid8><suffix>``. Unicode names are kept."""
    stem = _UNSAFE_CHARS.sub("_", suggested_name).strip("_") or "report"
    return f"{stem[:60]}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}{suffix}"


class LocalArtifactStore:
    """Writes artifacts to a directory served at ``public_base_url``."""

    def __init__(self, config: StorageConfig) -> None:
        self._dir = Path(config.reports_dir)
        self._base_url = config.public_base_url

    def write(self, data: bytes, suggested_name: str) -> str:
        filename = unique_filename(suggested_name)
        path = self._dir / filename
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            msg = f"Could not write {path}: {e}"
            raise StorageWriteFailed(msg) from e
        logger.info("Stored artifact %s (%d bytes)", path, len(data))
        return f"{self._base_url}/{quote(filename)}"
