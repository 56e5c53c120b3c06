"""Anthropic Claude backend."""

import logging
import os
from typing import Any

from matchdesk.core.errors import ExternalServiceFailed
from matchdesk.llm.base import Prompt, SyncBackend

logger = logging.getLogger(__name__)


def _content_blocks(prompt: Prompt) -> list[dict[str, Any]]:
    blocks: list[dict[str, Any]] = [
        {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": image.media_type,
                "data": image.base64_data,
            },
        }
        for image in prompt.images
    ]
    blocks.append({"type": "text", "text": prompt.text})
    return blocks


class AnthropicBackend(SyncBackend):
    """Backend using the Anthropic Claude API."""

    @property
    def provider_id(self) -> str:
        return "anthropic"

    @property
    def default_model(self) -> str:
        return "claude-sonnet-4-20250514"

    @property
    def env_var(self) -> str:
        return "ANTHROPIC_API_KEY"

    async def call(self, prompt: Prompt) -> str:
        api_key = os.environ.get("ANTHROPIC_API_KEY")
        if not api_key:
            msg = "ANTHROPIC_API_KEY environment variable is required"
            raise ValueError(msg)

        try:
            import anthropic
        except ImportError:
            msg = (
                "anthropic is required for the anthropic backend. "
                "Install with: pip install 'matchdesk[anthropic]'"
            )
            raise ImportError(msg) from None

        client = anthropic.AsyncAnthropic(
            api_key=api_key, timeout=self.config.timeout_s, max_retries=0
        )
        try:
            message = await client.messages.create(
                model=self.model,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
                system=prompt.system,
                messages=[{"role": "user", "content": _content_blocks(prompt)}],  # type: ignore[typeddict-item]
            )
        except anthropic.APIError as e:
            msg = f"anthropic request failed: {e}"
            raise ExternalServiceFailed(msg) from e
        finally:
            await client.close()

        return "".join(
            block.text for block in message.content if getattr(block, "type", "") == "text"
        )
