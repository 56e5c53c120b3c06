"""HTML document for the personality report PDF.

Sections arrive as markdown written by the model; they are rendered with
markdown-it (raw HTML disabled, tables on) and then sanitized to a small tag
whitelist before being marked safe for the Jinja2 template. Branding assets
(logo, font, background pattern) are inlined as data URIs so the headless
browser never needs to reach the file system or network.
"""

import base64
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import bleach
from jinja2 import Environment, FileSystemLoader, select_autoescape
from markdown_it import MarkdownIt
from markupsafe import Markup

from matchdesk.core.config import RenderConfig
from matchdesk.core.schemas import Applicant
from matchdesk.pipeline.sections import ReportSection

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"

_ALLOWED_TAGS = [
    "p", "br", "strong", "em", "h3", "h4", "h5", "h6",
    "table", "thead", "tbody", "tr", "th", "td",
    "ul", "ol", "li", "code", "pre", "blockquote", "hr",
]

_MD = MarkdownIt(
    "commonmark",
    {
        "html": False,
        "linkify": False,
        "typographer": False,
        "breaks": True,
    },
).enable("table")

_GENDER_LABELS = {"male": "男", "female": "女"}

_FONT_FORMATS = {".otf": "opentype", ".ttf": "truetype", ".woff": "woff", ".woff2": "woff2"}


def render_markdown_safe(src: str) -> str:
    """Render model-authored markdown to whitelisted HTML."""
    if not src:
        return ""
    html = _MD.render(src)
    return bleach.clean(html, tags=_ALLOWED_TAGS, attributes={}, strip=True).strip()


def background_pattern_svg() -> str:
    """Decorative dot-and-line page background."""
    return (
        '<svg width="100" height="100" xmlns="http://www.w3.org/2000/svg">'
        '<pattern id="mainDots" width="20" height="20" patternUnits="userSpaceOnUse">'
        '<circle cx="10" cy="10" r="1.2" fill="rgba(107, 70, 193, 0.25)"/></pattern>'
        '<pattern id="secondaryDots" width="40" height="40" patternUnits="userSpaceOnUse">'
        '<circle cx="20" cy="20" r="2" fill="rgba(252, 129, 129, 0.20)"/></pattern>'
        '<pattern id="lines" width="60" height="60" patternUnits="userSpaceOnUse">'
        '<path d="M0 0 L60 60" stroke="rgba(107, 70, 193, 0.15)" stroke-width="0.8" fill="none"/>'
        '<path d="M60 0 L0 60" stroke="rgba(252, 129, 129, 0.15)" stroke-width="0.8" fill="none"/>'
        "</pattern>"
        '<rect width="100" height="100" fill="url(#mainDots)"/>'
        '<rect width="100" height="100" fill="url(#secondaryDots)"/>'
        '<rect width="100" height="100" fill="url(#lines)"/>'
        "</svg>"
    )


def _data_uri(data: bytes, media_type: str) -> str:
    return f"data:{media_type};base64,{base64.b64encode(data).decode('ascii')}"


def _logo_data_uri(config: RenderConfig) -> str:
    if config.logo_path:
        path = Path(config.logo_path)
        if path.exists():
            media_type = "image/svg+xml" if path.suffix == ".svg" else f"image/{path.suffix.lstrip('.')}"
            return _data_uri(path.read_bytes(), media_type)
        logger.warning("Logo not found at %s, using the default logo", path)
    return _data_uri((TEMPLATES_DIR / "logo.svg").read_bytes(), "image/svg+xml")


def _font_face(config: RenderConfig) -> tuple[str, str] | None:
    """(data URI, css format) for the configured brand font, if any."""
    if not config.font_path:
        return None
    path = Path(config.font_path)
    if not path.exists():
        logger.warning("Font not found at %s, falling back to system serif", path)
        return None
    fmt = _FONT_FORMATS.get(path.suffix.lower(), "opentype")
    return _data_uri(path.read_bytes(), f"font/{path.suffix.lstrip('.').lower()}"), fmt


@dataclass
class RenderedSection:
    title: str
    content: Markup


class ReportTemplate:
    """Binds sections, applicant metadata and branding into report.html."""

    def __init__(self, config: RenderConfig) -> None:
        self._config = config
        self._env = Environment(
            loader=FileSystemLoader(TEMPLATES_DIR),
            autoescape=select_autoescape(["html"]),
        )

    def render(
        self,
        applicant: Applicant,
        sections: list[ReportSection],
        generated_at: datetime | None = None,
    ) -> str:
        generated_at = generated_at or datetime.now()
        font = _font_face(self._config)
        template = self._env.get_template("report.html")
        return template.render(
            name=applicant.name,
            gender=_GENDER_LABELS.get(applicant.gender, applicant.gender),
            birth_date=applicant.birth_date or "未填写",
            location=applicant.location or "未填写",
            generate_time=generated_at.strftime("%Y-%m-%d %H:%M"),
            sections=[
                RenderedSection(title=s.title, content=Markup(render_markdown_safe(s.content)))
                for s in sections
            ],
            logo_uri=_logo_data_uri(self._config),
            font_uri=font[0] if font else None,
            font_format=font[1] if font else None,
            css=(TEMPLATES_DIR / "report.css").read_text(encoding="utf-8"),
            background_uri=_data_uri(background_pattern_svg().encode("utf-8"), "image/svg+xml"),
            brand_line=self._config.brand_line,
        )
