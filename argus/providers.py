from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


Message = Dict[str, str]


class ProviderError(RuntimeError):
    """The AI provider call failed (network, auth, bad response). Not retried."""


class ProviderTimeoutError(ProviderError):
    pass


@dataclass(frozen=True)
class CompletionOptions:
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    stop: Optional[List[str]] = None


@dataclass(frozen=True)
class Usage:
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass(frozen=True)
class CompletionResult:
    content: str
    finish_reason: str = "stop"  # "stop" | "length" | "error"
    usage: Optional[Usage] = None


class LLMClient:
    """Minimal interface for chat-style LLM calls.

    The engine only ever awaits `complete`; any backend that can turn an ordered
    list of `{role, content}` messages into text can drive an analysis.
    """

    name = "llm"

    async def complete(
        self,
        messages: List[Message],
        options: Optional[CompletionOptions] = None,
    ) -> CompletionResult:
        raise NotImplementedError

    async def health_check(self) -> bool:
        try:
            result = await self.complete(
                [{"role": "user", "content": 'Say "ok"'}],
                CompletionOptions(max_tokens=10),
            )
        except ProviderError:
            return False
        return len(result.content) > 0


_FINISH_REASONS = {"stop": "stop", "end_turn": "stop", "length": "length", "max_tokens": "length"}


class LiteLLMClient(LLMClient):
    """LLM client backed by `litellm`.

    litellm routes `provider/model` names to OpenAI, Anthropic, DeepSeek, Ollama
    and friends, so the rest of the package doesn't depend on a specific SDK.
    """

    name = "litellm"

    def __init__(
        self,
        model: str,
        *,
        api_base: str | None = None,
        api_key: str | None = None,
        temperature: float = 0.0,
    ):
        self.model = model
        self.api_base = api_base or None
        self.api_key = api_key or None
        self.temperature = temperature

    async def complete(
        self,
        messages: List[Message],
        options: Optional[CompletionOptions] = None,
    ) -> CompletionResult:
        from litellm import acompletion

        options = options or CompletionOptions()
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature if options.temperature is None else options.temperature,
        }
        if options.max_tokens is not None:
            kwargs["max_tokens"] = options.max_tokens
        if options.stop:
            kwargs["stop"] = options.stop
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.api_key:
            kwargs["api_key"] = self.api_key

        try:
            resp = await acompletion(**kwargs)
        except Exception as e:
            raise ProviderError(f"{self.model} completion failed: {e}") from e

        return _parse_response(resp)


def _parse_response(resp: Any) -> CompletionResult:
    # litellm returns a ModelResponse with `.choices[0].message.content`, but we
    # handle dict-like returns too.
    if isinstance(resp, dict):
        choice = (resp.get("choices") or [{}])[0]
        content = (choice.get("message") or {}).get("content")
        finish = choice.get("finish_reason")
        usage = resp.get("usage") or None
        get = dict.get
    else:
        try:
            choice = resp.choices[0]
        except (AttributeError, IndexError, TypeError) as e:
            raise ProviderError(f"Unexpected litellm response shape: {type(resp)}") from e
        content = choice.message.content
        finish = getattr(choice, "finish_reason", None)
        usage = getattr(resp, "usage", None)
        get = getattr

    parsed_usage = None
    if usage:
        prompt_tokens = int(get(usage, "prompt_tokens", 0) or 0)
        completion_tokens = int(get(usage, "completion_tokens", 0) or 0)
        parsed_usage = Usage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=int(get(usage, "total_tokens", 0) or prompt_tokens + completion_tokens),
        )

    return CompletionResult(
        content=content or "",
        finish_reason=_FINISH_REASONS.get(finish or "stop", "error"),
        usage=parsed_usage,
    )
