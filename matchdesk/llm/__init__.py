"""AI completion backend registry with lazy loading.

Usage:
    from matchdesk.llm import Prompt, get_backend

    backend = get_backend("openrouter", settings.ai)
    text = await backend.complete(Prompt(system=..., text=..., images=[...]))
"""

from __future__ import annotations

import importlib

from matchdesk.core.config import AIConfig
from matchdesk.llm.base import CompletionBackend, Prompt

__all__ = ["CompletionBackend", "Prompt", "available_backends", "get_backend"]

# Lazy registry: maps backend name → (module_path, class_name)
_REGISTRY: dict[str, tuple[str, str]] = {
    "anthropic": ("matchdesk.llm.anthropic", "AnthropicBackend"),
    "coze": ("matchdesk.llm.coze", "CozeBackend"),
    "gemini": ("matchdesk.llm.gemini", "GeminiBackend"),
    "ollama": ("matchdesk.llm.ollama", "OllamaBackend"),
    "openai": ("matchdesk.llm.openai", "OpenAIBackend"),
    "openrouter": ("matchdesk.llm.openrouter", "OpenRouterBackend"),
}


def get_backend(name: str, config: AIConfig | None = None) -> CompletionBackend:
    """Instantiate and return a completion backend by name.

    Raises:
        ValueError: If the backend name is unknown.
    """
    if name not in _REGISTRY:
        valid = ", ".join(sorted(_REGISTRY))
        msg = f"Unknown AI backend '{name}'. Available: {valid}"
        raise ValueError(msg)

    module_path, class_name = _REGISTRY[name]
    module = importlib.import_module(module_path)
    cls = getattr(module, class_name)
    return cls(config)  # type: ignore[no-any-return]


def available_backends() -> list[str]:
    """Return sorted list of registered backend names."""
    return sorted(_REGISTRY)
