"""Extract structured JSON out of model output that may be wrapped in prose.

Models are told to return JSON only, but often add a sentence before or
after, or a markdown fence. We scan for balanced ``{...}`` / ``[...]`` spans
(string-aware) and parse each top-level span that is valid JSON.
"""

import json
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from matchdesk.core.errors import MalformedReportJSON

_OPENERS = {"{": "}", "[": "]"}
_SECTION_KEYS = ("analysis", "sections")


@dataclass(frozen=True)
class ReportSection:
    title: str
    content: str


def _balanced_end(text: str, start: int) -> int | None:
    """Index just past the bracket closing the one at ``start``, or None."""
    stack: list[str] = []
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _OPENERS:
            stack.append(_OPENERS[ch])
        elif ch in ("}", "]"):
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return i + 1
    return None


def iter_json_values(text: str) -> Iterator[Any]:
    """Yield each top-level JSON value embedded in ``text``, in order.

    A span that parses is skipped as a whole, so nested values are never
    yielded on their own. Raises MalformedReportJSON if no span parses.
    """
    last_error = "no JSON object or array found"
    found = False
    pos = 0
    while True:
        starts = [i for i in (text.find("{", pos), text.find("[", pos)) if i != -1]
        if not starts:
            break
        start = min(starts)
        end = _balanced_end(text, start)
        if end is None:
            last_error = f"unbalanced brackets starting at offset {start}"
            pos = start + 1
            continue
        try:
            value = json.loads(text[start:end])
        except json.JSONDecodeError as e:
            last_error = f"invalid JSON at offset {start}: {e}"
            pos = start + 1
            continue
        found = True
        yield value
        pos = end
    if not found:
        msg = f"Report text holds no parsable JSON: {last_error}"
        raise MalformedReportJSON(msg)


def extract_json(text: str) -> Any:
    """Return the first outermost balanced JSON value embedded in ``text``.

    Raises MalformedReportJSON if no span parses.
    """
    return next(iter_json_values(text))


def _sections_from(data: Any) -> list[ReportSection]:
    items: Any = data
    if isinstance(data, dict):
        items = next((data[k] for k in _SECTION_KEYS if k in data), None)
    if not isinstance(items, list) or not items:
        msg = "Report JSON has no section array"
        raise MalformedReportJSON(msg)

    sections: list[ReportSection] = []
    for index, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            msg = f"Section {index} is not an object"
            raise MalformedReportJSON(msg)
        title = item.get("title")
        content = item.get("content")
        if not isinstance(title, str) or not title.strip():
            msg = f"Section {index} is missing a title"
            raise MalformedReportJSON(msg)
        if not isinstance(content, str) or not content.strip():
            msg = f"Section {index} is missing content"
            raise MalformedReportJSON(msg)
        sections.append(ReportSection(title=title.strip(), content=content.strip()))
    return sections


def parse_sections(raw_response: str) -> list[ReportSection]:
    """Parse report text into ordered titled sections.

    Accepts a bare array of sections or an object holding one under
    ``analysis`` / ``sections``. Values in surrounding commentary (``[6]``,
    ``{}``) are skipped; the first value that holds valid sections wins.
    """
    errors: list[tuple[bool, MalformedReportJSON]] = []
    for data in iter_json_values(raw_response):
        try:
            return _sections_from(data)
        except MalformedReportJSON as e:
            keyed = isinstance(data, dict) and any(k in data for k in _SECTION_KEYS)
            errors.append((keyed, e))
    # prefer the failure of a value that carried a section key
    keyed_errors = [e for keyed, e in errors if keyed]
    raise (keyed_errors or [e for _, e in errors])[0]
