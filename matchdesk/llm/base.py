"""Completion backend contract shared by synchronous and job-based AI services."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from matchdesk.core.config import AIConfig
from matchdesk.core.errors import ExternalServiceFailed, NoAnswerFound
from matchdesk.imaging.normalizer import NormalizedImage

logger = logging.getLogger(__name__)


@dataclass
class Prompt:
    """One multimodal request: fixed instructions, user text and images."""

    system: str
    text: str
    images: list[NormalizedImage] = field(default_factory=list)


@dataclass
class JobRef:
    """Handle to a submitted job.

    Synchronous backends fill ``result`` at submit time.
    """

    job_id: str
    conversation_id: str = ""
    result: str | None = None


class PollStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class PollResult:
    status: PollStatus
    reason: str | None = None


class TransientPollError(Exception):
    """Transport-level poll failure; retried within the polling bound."""


class CompletionBackend(ABC):
    """Base class that every AI backend must implement.

    The capability is ``submit`` -> ``poll`` -> ``fetch_result``; callers only
    use ``complete`` which drives the shared polling state machine.
    """

    def __init__(self, config: AIConfig | None = None) -> None:
        self.config = config or AIConfig()

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Unique identifier for this backend (e.g. 'openrouter')."""

    @property
    @abstractmethod
    def default_model(self) -> str:
        """The default model ID used when no override is configured."""

    @property
    @abstractmethod
    def env_var(self) -> str | None:
        """Environment variable name for the API key, or None if not needed."""

    @property
    def model(self) -> str:
        return self.config.model or self.default_model

    @abstractmethod
    async def submit(self, prompt: Prompt) -> JobRef:
        """Start a job for the prompt."""

    async def poll(self, ref: JobRef) -> PollResult:
        """Report job status. Default: done as soon as a result is attached."""
        if ref.result is not None:
            return PollResult(PollStatus.COMPLETED)
        return PollResult(PollStatus.PENDING)

    async def fetch_result(self, ref: JobRef) -> str:
        """Return the generated text of a completed job."""
        if not ref.result:
            msg = f"{self.provider_id} job {ref.job_id} completed without text"
            raise NoAnswerFound(msg)
        return ref.result

    async def complete(self, prompt: Prompt) -> str:
        """Run the prompt to completion and return the generated text."""
        from matchdesk.llm.poller import JobPoller

        poller = JobPoller(
            interval_s=self.config.poll_interval_s,
            max_attempts=self.config.poll_max_attempts,
        )
        return await poller.run(self, prompt)


class SyncBackend(CompletionBackend):
    """A single request/response call: a one-step job that is always complete."""

    @abstractmethod
    async def call(self, prompt: Prompt) -> str:
        """Perform the request and return raw text."""

    async def submit(self, prompt: Prompt) -> JobRef:
        logger.info(
            "Sending prompt to %s (%s) with %d image(s)...",
            self.provider_id, self.model, len(prompt.images),
        )
        text = await self.call(prompt)
        if not text or not text.strip():
            msg = f"{self.provider_id} returned an empty completion"
            raise ExternalServiceFailed(msg)
        return JobRef(job_id=f"{self.provider_id}-sync", result=text)


def openai_messages(prompt: Prompt) -> list[dict[str, Any]]:
    """Chat-completions message list with inline data-URI images."""
    content: list[dict[str, Any]] = [
        {"type": "image_url", "image_url": {"url": image.data_uri}} for image in prompt.images
    ]
    content.append({"type": "text", "text": prompt.text})
    return [
        {"role": "system", "content": prompt.system},
        {"role": "user", "content": content},
    ]
