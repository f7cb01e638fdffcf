"""OpenAI LLM implementation with structured output via JSON in prompt."""

from typing import Any

from openai import OpenAI

from stackserp.llm.base import JSON_INSTRUCTION, T, parse_structured


class OpenAIProvider:
    """OpenAI chat completion with optional structured (JSON) output."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o",
        timeout: float = 180.0,
    ):
        self._client = OpenAI(api_key=api_key, timeout=timeout, max_retries=2)
        self._model = model

    def complete(self, prompt: str, **kwargs: Any) -> str:
        # SDK exceptions propagate; the stage executor classifies them
        messages = []
        if kwargs.get("system"):
            messages.append({"role": "system", "content": kwargs["system"]})
        messages.append({"role": "user", "content": prompt})
        params: dict[str, Any] = {}
        if kwargs.get("temperature") is not None:
            params["temperature"] = kwargs["temperature"]
        if kwargs.get("max_tokens"):
            params["max_tokens"] = kwargs["max_tokens"]
        response = self._client.chat.completions.create(
            model=kwargs.get("model") or self._model,
            messages=messages,
            **params,
        )
        msg = response.choices[0].message
        return msg.content or ""

    def complete_structured(self, prompt: str, schema: type[T], **kwargs: Any) -> T:
        raw = self.complete(f"{prompt}\n\n{JSON_INSTRUCTION}", **kwargs)
        return parse_structured(raw, schema)
