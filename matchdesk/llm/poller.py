"""Bounded polling state machine for job-based AI backends.

States::

    SUBMITTED -> POLLING -> COMPLETED -> FETCHING -> DONE
                        \\-> FAILED   (backend reported failure, not retried)
                        \\-> TIMEOUT  (attempt bound exceeded)

Transport-level poll errors are retried silently and count toward the same
attempt bound. The delay primitive is injectable so tests run on a fake clock.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING

from matchdesk.core.errors import ExternalServiceFailed, PollTimeout
from matchdesk.llm.base import JobRef, PollStatus, Prompt, TransientPollError

if TYPE_CHECKING:
    from matchdesk.llm.base import CompletionBackend

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[object]]


class JobState(str, Enum):
    IDLE = "idle"
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FETCHING = "fetching"
    DONE = "done"
    FAILED = "failed"
    TIMEOUT = "timeout"


class JobPoller:
    """Drive one job from submission to its terminal state.

    Usage::

        poller = JobPoller(interval_s=2.0, max_attempts=150)
        text = await poller.run(backend, prompt)
    """

    def __init__(
        self,
        interval_s: float,
        max_attempts: int,
        sleep: SleepFn | None = None,
    ) -> None:
        if max_attempts < 1:
            msg = "max_attempts must be at least 1"
            raise ValueError(msg)
        self._interval_s = interval_s
        self._max_attempts = max_attempts
        self._sleep = sleep or asyncio.sleep
        self.state = JobState.IDLE
        self.attempts = 0

    async def run(self, backend: "CompletionBackend", prompt: Prompt) -> str:
        ref = await backend.submit(prompt)
        self.state = JobState.SUBMITTED
        logger.debug(
            "%s job submitted: job_id=%s conversation_id=%s",
            backend.provider_id, ref.job_id, ref.conversation_id,
        )
        return await self.wait(backend, ref)

    async def wait(self, backend: "CompletionBackend", ref: JobRef) -> str:
        self.state = JobState.POLLING
        self.attempts = 0

        while True:
            self.attempts += 1
            try:
                result = await backend.poll(ref)
            except TransientPollError as e:
                logger.debug(
                    "Poll %d/%d for job %s failed transiently: %s",
                    self.attempts, self._max_attempts, ref.job_id, e,
                )
                result = None

            if result is not None and result.status is PollStatus.COMPLETED:
                self.state = JobState.COMPLETED
                break

            if result is not None and result.status is PollStatus.FAILED:
                self.state = JobState.FAILED
                reason = result.reason or "unknown reason"
                logger.warning("Job %s failed: %s", ref.job_id, reason)
                msg = f"{backend.provider_id} job failed: {reason}"
                raise ExternalServiceFailed(msg)

            if self.attempts >= self._max_attempts:
                self.state = JobState.TIMEOUT
                msg = (
                    f"{backend.provider_id} job {ref.job_id} did not finish "
                    f"after {self._max_attempts} polls"
                )
                raise PollTimeout(msg)

            await self._sleep(self._interval_s)

        logger.debug("Job %s completed after %d poll(s)", ref.job_id, self.attempts)
        self.state = JobState.FETCHING
        text = await backend.fetch_result(ref)
        self.state = JobState.DONE
        return text
