"""LiteLLM client wrapper for embeddings and chat completions.

All network calls made by the retrieval core and the embedding pipeline
route through this module. LiteLLM's built-in retry is used at the transport
layer (num_retries=3); nothing above this module retries.
"""

from __future__ import annotations

import os

import litellm

from profundo.clawdbot import provider_api_key

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]

# Embedding endpoints cap the number of inputs per request.
EMBED_BATCH_SIZE = 100


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def provider_of(model: str) -> str:
    """Return the provider prefix of a 'provider/model' string (default 'openai')."""
    return model.split("/")[0].lower() if "/" in model else "openai"


def provider_env_var(provider: str) -> str | None:
    """Env var holding the key for *provider*; None when no key is needed."""
    provider = provider.lower()
    return _PROVIDER_ENV.get(provider, f"{provider.upper()}_API_KEY")


def resolve_api_key(model: str) -> str | None:
    """Return the API key for *model*'s provider, or None if none is found.

    The provider's env var wins; otherwise the key stored in the agent
    runtime config (``models.providers.<provider>.apiKey``) is used.
    """
    provider = provider_of(model)
    env_var = provider_env_var(provider)
    if env_var is None:
        return None
    return os.getenv(env_var) or provider_api_key(provider)


def _stored_key(model: str) -> str | None:
    """Key to pass explicitly: only when it does not come from the environment."""
    env_var = provider_env_var(provider_of(model))
    if env_var is None or os.getenv(env_var):
        return None
    return provider_api_key(provider_of(model))


def validate_api_key(model: str) -> None:
    """Check that an API key is available for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If neither the env var nor the agent runtime config
            provides a key.
    """
    provider = provider_of(model)
    env_var = provider_env_var(provider)

    if env_var is None:
        return  # No key required (e.g. ollama)

    if not resolve_api_key(model):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def complete(
    model: str,
    messages: list[dict],
    max_tokens: int = 512,
    temperature: float = 0.3,
    num_retries: int = 3,
) -> str:
    """Call litellm.completion() with retry/backoff. Returns content string.

    Raises:
        litellm.exceptions.APIError: On persistent API failure after retries.
    """
    kwargs: dict = {}
    if api_key := _stored_key(model):
        kwargs["api_key"] = api_key
    response = litellm.completion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        num_retries=num_retries,
        **kwargs,
    )
    return response.choices[0].message.content or ""


def complete_prompt(system_prompt: str, user_prompt: str, model: str) -> str:
    """Single-turn completion with a system prompt and one user message."""
    return complete(
        model,
        [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
    )


def embed(model: str, text: str, num_retries: int = 3) -> list[float]:
    """Embed a single *text*. Returns the embedding vector.

    Raises:
        RuntimeError: If the provider returned no embedding.
    """
    vectors = embed_batch(model, [text], num_retries=num_retries)
    if not vectors:
        raise RuntimeError(f"Embedding model '{model}' returned no vector.")
    return vectors[0]


def embed_batch(
    model: str,
    texts: list[str],
    batch_size: int = EMBED_BATCH_SIZE,
    num_retries: int = 3,
) -> list[list[float]]:
    """Embed *texts* in provider-sized batches, preserving input order.

    Each response is re-ordered by its ``index`` field before being appended,
    so the i-th vector always belongs to the i-th text.
    """
    if not texts:
        return []
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")

    kwargs: dict = {}
    if api_key := _stored_key(model):
        kwargs["api_key"] = api_key

    vectors: list[list[float]] = []
    for start in range(0, len(texts), batch_size):
        batch = texts[start : start + batch_size]
        response = litellm.embedding(model=model, input=batch, num_retries=num_retries, **kwargs)
        data = sorted(response.data, key=lambda item: item["index"])
        vectors.extend(item["embedding"] for item in data)
    return vectors
