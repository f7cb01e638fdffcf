"""LLM adapter layer: OpenAI and Anthropic behind a common protocol."""

from stackserp.llm.anthropic_provider import AnthropicProvider
from stackserp.llm.base import LLMProvider, parse_structured, strip_code_fence
from stackserp.llm.openai_provider import OpenAIProvider

PROVIDERS: dict[str, type] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
}


def get_provider(provider_name: str, **kwargs: object) -> LLMProvider:
    """Return an LLM provider by name: 'openai' | 'anthropic'."""
    try:
        provider_cls = PROVIDERS[provider_name.strip().lower()]
    except KeyError:
        raise ValueError(
            f"Unknown LLM provider {provider_name!r} (expected one of: {', '.join(PROVIDERS)})"
        ) from None
    return provider_cls(**kwargs)


__all__ = [
    "LLMProvider",
    "OpenAIProvider",
    "AnthropicProvider",
    "PROVIDERS",
    "get_provider",
    "parse_structured",
    "strip_code_fence",
]
