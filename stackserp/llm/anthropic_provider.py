"""Anthropic LLM implementation with structured output via JSON parse."""

from typing import Any

from anthropic import Anthropic

from stackserp.llm.base import JSON_INSTRUCTION, T, parse_structured


class AnthropicProvider:
    """Anthropic chat completion with optional structured (JSON) output."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "claude-3-5-sonnet-20241022",
        timeout: float = 180.0,
    ):
        self._client = Anthropic(api_key=api_key, timeout=timeout, max_retries=2)
        self._model = model

    def complete(self, prompt: str, **kwargs: Any) -> str:
        params: dict[str, Any] = {}
        if kwargs.get("system"):
            params["system"] = kwargs["system"]
        if kwargs.get("temperature") is not None:
            params["temperature"] = kwargs["temperature"]
        response = self._client.messages.create(
            model=kwargs.get("model") or self._model,
            max_tokens=kwargs.get("max_tokens") or 4096,
            messages=[{"role": "user", "content": prompt}],
            **params,
        )
        return response.content[0].text if response.content else ""

    def complete_structured(self, prompt: str, schema: type[T], **kwargs: Any) -> T:
        raw = self.complete(f"{prompt}\n\n{JSON_INSTRUCTION}", **kwargs)
        return parse_structured(raw, schema)
