"""Google Gemini backend (google-genai SDK)."""

import logging
import os

import httpx

from matchdesk.core.errors import ExternalServiceFailed
from matchdesk.llm.base import Prompt, SyncBackend

logger = logging.getLogger(__name__)


class GeminiBackend(SyncBackend):
    """Backend using the Google Gemini API (google-genai SDK)."""

    @property
    def provider_id(self) -> str:
        return "gemini"

    @property
    def default_model(self) -> str:
        return "gemini-2.5-flash"

    @property
    def env_var(self) -> str:
        return "GOOGLE_API_KEY"

    async def call(self, prompt: Prompt) -> str:
        api_key = os.environ.get("GOOGLE_API_KEY")
        if not api_key:
            msg = "GOOGLE_API_KEY environment variable is required"
            raise ValueError(msg)

        try:
            from google import genai
            from google.genai import errors as genai_errors
            from google.genai import types as genai_types
        except ImportError:
            msg = (
                "google-genai is required for the gemini backend. "
                "Install with: pip install 'matchdesk[gemini]'"
            )
            raise ImportError(msg) from None

        parts: list[object] = [
            genai_types.Part.from_bytes(data=image.raw_bytes(), mime_type=image.media_type)
            for image in prompt.images
        ]
        parts.append(prompt.text)

        client = genai.Client(
            api_key=api_key,
            http_options=genai_types.HttpOptions(timeout=int(self.config.timeout_s * 1000)),
        )
        try:
            response = await client.aio.models.generate_content(
                model=self.model,
                contents=parts,  # type: ignore[arg-type]
                config=genai_types.GenerateContentConfig(
                    system_instruction=prompt.system,
                    max_output_tokens=self.config.max_tokens,
                    temperature=self.config.temperature,
                ),
            )
        except (genai_errors.APIError, httpx.HTTPError) as e:
            msg = f"gemini request failed: {e}"
            raise ExternalServiceFailed(msg) from e

        return response.text or ""
