"""Error taxonomy for the report pipeline.

Every error carries a short ``kind`` so callers (the batch orchestrator, the
CLI) can report failures as ``kind + message`` without isinstance ladders.
"""


class MatchdeskError(Exception):
    """Base class for all pipeline errors."""

    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(MatchdeskError):
    """Applicant, couple or job does not exist."""

    kind = "not_found"


class ImageProcessingFailed(MatchdeskError):
    """A single image could not be fetched, validated or transcoded."""

    kind = "image_processing_failed"

    def __init__(self, url: str, cause: str) -> None:
        self.url = url
        self.cause = cause
        super().__init__(f"Image {truncate_url(url)} failed: {cause}")


class NoUsableImages(MatchdeskError):
    """Applicant has image references but none of them could be used."""

    kind = "no_usable_images"


class ExternalServiceFailed(MatchdeskError):
    """The AI backend reported a terminal failure. Not retried."""

    kind = "external_service_failed"


class PollTimeout(MatchdeskError):
    """Polling bound exceeded before the job reached a terminal state."""

    kind = "timeout"


class NoAnswerFound(MatchdeskError):
    """Job completed but produced no usable answer message."""

    kind = "no_answer_found"


class MalformedReportJSON(MatchdeskError):
    """Report text holds no parsable section structure."""

    kind = "malformed_report_json"


class RenderTimeout(MatchdeskError):
    """Headless browser failed to settle within the bounded wait."""

    kind = "render_timeout"


class RenderFailed(MatchdeskError):
    """Headless browser crashed or refused the document."""

    kind = "render_failed"


class StorageWriteFailed(MatchdeskError):
    """PDF bytes could not be written to artifact storage."""

    kind = "storage_write_failed"


class AlreadyRunning(MatchdeskError):
    """A batch run is already in progress."""

    kind = "already_running"


_URL_LOG_LIMIT = 80


def truncate_url(url: str, limit: int = _URL_LOG_LIMIT) -> str:
    """Shorten a URL for log lines and error messages."""
    if len(url) <= limit:
        return url
    return url[: limit - 3] + "..."
