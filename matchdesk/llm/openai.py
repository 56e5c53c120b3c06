"""OpenAI chat-completions backend."""

import logging
import os

from matchdesk.core.errors import ExternalServiceFailed
from matchdesk.llm.base import Prompt, SyncBackend, openai_messages

logger = logging.getLogger(__name__)


class OpenAIBackend(SyncBackend):
    """Backend using the OpenAI API (or any OpenAI-compatible endpoint)."""

    base_url: str | None = None

    @property
    def provider_id(self) -> str:
        return "openai"

    @property
    def default_model(self) -> str:
        return "gpt-4o-mini"

    @property
    def env_var(self) -> str | None:
        return "OPENAI_API_KEY"

    def _api_key(self) -> str:
        env_var = self.env_var
        api_key = os.environ.get(env_var) if env_var else None
        if env_var and not api_key:
            msg = f"{env_var} environment variable is required"
            raise ValueError(msg)
        return api_key or self.provider_id

    def _default_headers(self) -> dict[str, str] | None:
        return None

    async def call(self, prompt: Prompt) -> str:
        api_key = self._api_key()

        try:
            import openai
        except ImportError:
            msg = (
                f"openai is required for the {self.provider_id} backend. "
                "Install with: pip install 'matchdesk[openai]'"
            )
            raise ImportError(msg) from None

        client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=self.base_url,
            timeout=self.config.timeout_s,
            max_retries=0,
            default_headers=self._default_headers(),
        )
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=openai_messages(prompt),  # type: ignore[arg-type]
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
            )
        except openai.APIError as e:
            msg = f"{self.provider_id} request failed: {e}"
            raise ExternalServiceFailed(msg) from e
        finally:
            await client.close()

        if not response.choices:
            msg = f"{self.provider_id} response has no choices"
            raise ExternalServiceFailed(msg)
        return response.choices[0].message.content or ""
