"""OpenRouter backend (OpenAI-compatible API)."""

from matchdesk.llm.openai import OpenAIBackend

_OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class OpenRouterBackend(OpenAIBackend):
    """Backend routing multimodal requests through OpenRouter."""

    base_url = _OPENROUTER_BASE_URL

    @property
    def provider_id(self) -> str:
        return "openrouter"

    @property
    def default_model(self) -> str:
        return "anthropic/claude-3.5-sonnet"

    @property
    def env_var(self) -> str:
        return "OPENROUTER_API_KEY"

    def _default_headers(self) -> dict[str, str]:
        return {
            "HTTP-Referer": "http://localhost:3001",
            "X-Title": "Personality Analysis App",
        }
