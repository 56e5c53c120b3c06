"""Ollama local backend (OpenAI-compatible API)."""

from matchdesk.llm.openai import OpenAIBackend

_OLLAMA_BASE_URL = "http://localhost:11434/v1"


class OllamaBackend(OpenAIBackend):
    """Backend using a local Ollama instance with a vision-capable model."""

    base_url = _OLLAMA_BASE_URL

    @property
    def provider_id(self) -> str:
        return "ollama"

    @property
    def default_model(self) -> str:
        return "llava"

    @property
    def env_var(self) -> None:
        return None
