"""LiteLLM embedding client with retry, timeout and API key validation.

All embedding calls in contextkb route through this module. LiteLLM's built-in
retry is used (num_retries=3, exponential backoff). Input text is truncated to a
configured character bound before it is sent.
"""

from __future__ import annotations

import os

import litellm
from loguru import logger

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "ollama": None,  # Local, no key required
}


def provider_of(model: str) -> str:
    """Provider prefix of a LiteLLM model string; bare model names are OpenAI."""
    return model.split("/")[0].lower() if "/" in model else "openai"


def api_key_env(provider: str) -> str | None:
    """Environment variable holding the key for *provider*; None if it needs none."""
    return _PROVIDER_ENV.get(provider.lower())


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = provider_of(model)
    env_var = api_key_env(provider)

    if env_var is None:
        return  # No key required (e.g. ollama) or unknown provider

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def embed(
    model: str,
    text: str,
    timeout: float | None = None,
    num_retries: int = 3,
) -> list[float]:
    """Call litellm.embedding() with retry/backoff. Returns embedding vector.

    Args:
        model: LiteLLM embedding model string (provider/model format).
        text: Text to embed.
        timeout: Per-request timeout in seconds (None = provider default).
        num_retries: Number of retries on transient errors.

    Returns:
        Embedding as a list of floats.
    """
    kwargs: dict = {"model": model, "input": [text], "num_retries": num_retries}
    if timeout is not None:
        kwargs["timeout"] = timeout
    response = litellm.embedding(**kwargs)
    return response.data[0]["embedding"]


class EmbeddingClient:
    """Turns text into a fixed-length vector.

    Args:
        model: LiteLLM embedding model string.
        max_input_chars: Longer input is truncated before the call.
        num_retries: Retries on transient provider errors.
    """

    def __init__(
        self,
        model: str = "openai/text-embedding-3-small",
        max_input_chars: int = 8_000,
        num_retries: int = 3,
    ) -> None:
        if max_input_chars < 1:
            raise ValueError("max_input_chars must be >= 1")
        self.model = model
        self.max_input_chars = max_input_chars
        self.num_retries = num_retries

    def get_embeddings(self, text: str, timeout_ms: int | None = None) -> list[float]:
        """Embed *text*, optionally bounded by *timeout_ms* milliseconds.

        Raises:
            ValueError: If *text* is blank.
        """
        if not text.strip():
            raise ValueError("Cannot embed empty text")
        if len(text) > self.max_input_chars:
            logger.debug(f"Truncating embedding input from {len(text)} to {self.max_input_chars} chars")
            text = text[: self.max_input_chars]
        timeout = timeout_ms / 1000 if timeout_ms is not None else None
        return embed(self.model, text, timeout=timeout, num_retries=self.num_retries)
