"""Coze bot backend: an asynchronous chat job (submit, poll, fetch messages).

Wire flow (Coze v3 open API):
  1. POST /v1/files/upload per image -> file_id
  2. POST /v3/chat -> (chat id, conversation id)
  3. GET  /v3/chat/retrieve until status is completed / failed
  4. GET  /v3/chat/message/list -> first assistant ``answer`` text message
"""

import json
import logging
import os
from typing import Any

import httpx

from matchdesk.core.config import AIConfig
from matchdesk.core.errors import ExternalServiceFailed, NoAnswerFound
from matchdesk.llm.base import (
    CompletionBackend,
    JobRef,
    PollResult,
    PollStatus,
    Prompt,
    TransientPollError,
)

logger = logging.getLogger(__name__)

_FAILED_STATUSES = {"failed", "canceled", "requires_action"}

# Messages the bot emits around the real answer.
_SENTINEL_MARKERS = ("generate_answer_finish", '"msg_type"')


def is_sentinel(content: str) -> bool:
    return any(marker in content for marker in _SENTINEL_MARKERS)


def select_answer(messages: list[dict[str, Any]]) -> str | None:
    """Pick the first real answer text out of a chat's message list."""
    for message in messages:
        content = message.get("content") or ""
        if (
            message.get("role") == "assistant"
            and message.get("type") == "answer"
            and message.get("content_type") == "text"
            and content.strip()
            and not is_sentinel(content)
        ):
            return content
    return None


class CozeBackend(CompletionBackend):
    """Backend submitting chats to a Coze bot and polling them to completion."""

    def __init__(
        self,
        config: AIConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(config)
        self._client = client
        self._owns_client = client is None

    @property
    def provider_id(self) -> str:
        return "coze"

    @property
    def default_model(self) -> str:
        return self.config.coze.bot_id or os.environ.get("COZE_BOT_ID", "")

    @property
    def env_var(self) -> str:
        return "COZE_API_TOKEN"

    async def complete(self, prompt: Prompt) -> str:
        if not self._owns_client:
            return await super().complete(prompt)

        token = os.environ.get("COZE_API_TOKEN")
        if not token:
            msg = "COZE_API_TOKEN environment variable is required"
            raise ValueError(msg)

        async with httpx.AsyncClient(
            base_url=self.config.coze.base_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=self.config.coze.request_timeout_s,
        ) as client:
            self._client = client
            try:
                return await super().complete(prompt)
            finally:
                self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            msg = "CozeBackend used outside complete()"
            raise RuntimeError(msg)
        return self._client

    async def submit(self, prompt: Prompt) -> JobRef:
        bot_id = self.model
        if not bot_id:
            msg = "Coze bot id is not configured (ai.coze.bot_id or COZE_BOT_ID)"
            raise ValueError(msg)

        instructions = f"{prompt.system}\n\n{prompt.text}"
        if prompt.images:
            items: list[dict[str, Any]] = [{"type": "text", "text": instructions}]
            for index, image in enumerate(prompt.images):
                file_id = await self._upload(image.raw_bytes(), f"image_{index}.jpg", image.media_type)
                items.append({"type": "image", "file_id": file_id})
            message = {
                "role": "user",
                "content": json.dumps(items, ensure_ascii=False),
                "content_type": "object_string",
            }
        else:
            message = {"role": "user", "content": instructions, "content_type": "text"}

        logger.info("Submitting chat to Coze bot %s with %d image(s)...", bot_id, len(prompt.images))
        data = await self._call(
            "POST",
            "/v3/chat",
            json={
                "bot_id": bot_id,
                "user_id": self.config.coze.user_id,
                "stream": False,
                "auto_save_history": True,
                "additional_messages": [message],
            },
        )
        try:
            return JobRef(job_id=data["id"], conversation_id=data["conversation_id"])
        except (KeyError, TypeError) as e:
            msg = f"coze chat response missing ids: {data!r}"
            raise ExternalServiceFailed(msg) from e

    async def poll(self, ref: JobRef) -> PollResult:
        try:
            response = await self._http().get(
                "/v3/chat/retrieve",
                params={"chat_id": ref.job_id, "conversation_id": ref.conversation_id},
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TransientPollError(str(e)) from e

        if not isinstance(body, dict):
            msg = f"retrieve returned a non-object body: {body!r}"
            raise TransientPollError(msg)
        if body.get("code", 0) != 0:
            raise TransientPollError(f"code {body.get('code')}: {body.get('msg', '')}")

        data = body.get("data") or {}
        if not isinstance(data, dict):
            msg = f"retrieve returned non-object data: {data!r}"
            raise TransientPollError(msg)
        status = data.get("status", "")
        if status == "completed":
            return PollResult(PollStatus.COMPLETED)
        if status in _FAILED_STATUSES:
            last_error = data.get("last_error")
            reason = (last_error.get("msg") if isinstance(last_error, dict) else None) or status
            return PollResult(PollStatus.FAILED, reason=reason)
        return PollResult(PollStatus.PENDING)

    async def fetch_result(self, ref: JobRef) -> str:
        messages = await self._call(
            "GET",
            "/v3/chat/message/list",
            params={"chat_id": ref.job_id, "conversation_id": ref.conversation_id},
        )
        answer = select_answer(messages if isinstance(messages, list) else [])
        if answer is None:
            msg = f"coze chat {ref.job_id} completed without an answer message"
            raise NoAnswerFound(msg)
        return answer

    async def _upload(self, data: bytes, filename: str, media_type: str) -> str:
        result = await self._call(
            "POST", "/v1/files/upload", files={"file": (filename, data, media_type)}
        )
        try:
            return str(result["id"])
        except (KeyError, TypeError) as e:
            msg = f"coze upload response missing file id: {result!r}"
            raise ExternalServiceFailed(msg) from e

    async def _call(self, method: str, url: str, **kwargs: Any) -> Any:
        """Request + unwrap the ``{code, msg, data}`` envelope."""
        try:
            response = await self._http().request(method, url, **kwargs)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            msg = f"coze {url} returned HTTP {e.response.status_code}"
            raise ExternalServiceFailed(msg) from e
        except (httpx.HTTPError, ValueError) as e:
            msg = f"coze {url} request failed: {e!r}"
            raise ExternalServiceFailed(msg) from e

        if not isinstance(body, dict):
            msg = f"coze {url} returned a non-object body: {body!r}"
            raise ExternalServiceFailed(msg)
        if body.get("code", 0) != 0:
            msg = f"coze {url} error {body.get('code')}: {body.get('msg', '')}"
            raise ExternalServiceFailed(msg)
        return body.get("data")
