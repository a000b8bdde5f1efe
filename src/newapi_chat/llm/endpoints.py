"""Map a configured base URL and model name onto a concrete request URL."""

from __future__ import annotations

_COMPLETION_PATHS = ("/messages", "/chat/completions")

# Gateways that speak the OpenAI schema for every model family, Claude included.
_AGGREGATOR_PATTERNS = ("tribiosapi.top", "one-api", "openai-forward", "api2d")


def is_anthropic_model(model: str) -> bool:
    lowered = (model or "").lower()
    return "claude" in lowered or "anthropic" in lowered


def is_aggregator_host(base_url: str) -> bool:
    return any(p in (base_url or "") for p in _AGGREGATOR_PATTERNS)


def is_messages_endpoint(url: str) -> bool:
    return "/messages" in url


def _ensure_v1(base_url: str) -> str:
    if base_url.endswith("/v1") or "/v1/" in base_url:
        return base_url
    return f"{base_url}/v1"


def resolve_endpoint(base_url: str, model: str) -> str:
    """Return the completion URL to POST to for *model* at *base_url*.

    A base URL that already names a completion path is used as-is.
    Aggregator gateways always get ``/v1/chat/completions``; otherwise
    Anthropic-family models go to ``/v1/messages`` and everything else to
    ``/v1/chat/completions``.
    """
    base = (base_url or "").rstrip("/")
    if any(p in base for p in _COMPLETION_PATHS):
        return base
    if is_aggregator_host(base):
        return f"{_ensure_v1(base)}/chat/completions"
    if is_anthropic_model(model):
        return f"{_ensure_v1(base)}/messages"
    return f"{_ensure_v1(base)}/chat/completions"


def chat_completions_sibling(url: str) -> str:
    """The OpenAI-style endpoint living next to a ``/messages`` endpoint."""
    return url.replace("/messages", "/chat/completions", 1)


def models_url(base_url: str) -> str:
    """URL of the model listing for *base_url*.

    Raises ``ValueError`` when no base URL is configured.
    """
    if not base_url:
        raise ValueError("Base URL is empty")
    base = base_url.rstrip("/")
    if base.endswith("/v1"):
        return f"{base}/models"
    return f"{base}/v1/models"
