"""OpenAI provider implementation, plus the vendors speaking the same API"""

import logging
from typing import Any, AsyncIterator

import openai

from .base import BaseAIProvider
from .types import InvocationParams, Message, StepResult, StreamChunk, ToolCall, Usage, normalize_finish_reason

logger = logging.getLogger(__name__)


def _finish_reason(reason: str | None, tool_calls: list[ToolCall]) -> str:
    normalized = normalize_finish_reason(reason)
    # Some compatible servers report "stop" even when they asked for tools
    if tool_calls and normalized == "stop":
        return "tool-calls"
    return normalized


class OpenAIProvider(BaseAIProvider):
    """Provider for OpenAI GPT models"""

    name = "OpenAI"
    API_KEY_NAME: str | None = "OPENAI_API_KEY"
    BASE_URL: str | None = None
    TIMEOUT = 120.0
    JSON_MODE = True

    def get_required_api_key_name(self) -> str | None:
        return self.API_KEY_NAME

    def default_headers(self) -> dict[str, str] | None:
        return None

    def resolve_base_url(self, params: InvocationParams) -> str | None:
        return params.base_url or self.BASE_URL

    def get_client(self, params: InvocationParams) -> openai.AsyncOpenAI:
        return openai.AsyncOpenAI(
            api_key=params.api_key,
            base_url=self.resolve_base_url(params),
            timeout=self.TIMEOUT,
            default_headers=self.default_headers(),
        )

    async def close_client(self, client: Any) -> None:
        await client.close()

    def _convert_messages(self, messages: list[Message]) -> list[dict]:
        """Convert internal message format to OpenAI format"""
        result = []
        for msg in messages:
            role = msg.get("role")

            if role in ("system", "user"):
                result.append({"role": role, "content": msg.get("content", "")})

            elif role == "assistant":
                assistant_msg = {"role": "assistant", "content": msg.get("content", "")}
                if msg.get("tool_calls"):
                    assistant_msg["tool_calls"] = msg["tool_calls"]
                result.append(assistant_msg)

            elif role == "tool":
                result.append({
                    "role": "tool",
                    "tool_call_id": msg.get("tool_call_id", ""),
                    "content": msg.get("content", ""),
                })
        return result

    def _convert_tools(self, tools: list[dict] | None) -> list[dict] | None:
        """Convert internal tool format to OpenAI format"""
        if not tools:
            return None

        return [
            {
                "type": "function",
                "function": {
                    "name": t["name"],
                    "description": t["description"],
                    "parameters": t["parameters"],
                },
            }
            for t in tools
        ]

    def _request_kwargs(
        self,
        params: InvocationParams,
        messages: list[Message],
        tools: list[dict] | None,
        json_mode: bool = False,
    ) -> dict:
        kwargs: dict[str, Any] = {
            "model": params.model_id,
            "messages": self._convert_messages(messages),
        }
        if params.max_tokens is not None:
            kwargs["max_tokens"] = params.max_tokens
        if params.temperature is not None:
            kwargs["temperature"] = params.temperature

        openai_tools = self._convert_tools(tools)
        if openai_tools:
            kwargs["tools"] = openai_tools
            kwargs["tool_choice"] = "auto"

        if json_mode and self.JSON_MODE:
            kwargs["response_format"] = {"type": "json_object"}
        return kwargs

    async def _complete_step(
        self,
        client: Any,
        params: InvocationParams,
        messages: list[Message],
        tools: list[dict] | None,
        json_mode: bool = False,
    ) -> StepResult:
        response = await client.chat.completions.create(**self._request_kwargs(params, messages, tools, json_mode))
        if not response.choices:
            raise ValueError("Response contained no choices")

        choice = response.choices[0]
        message = choice.message
        tool_calls = [
            ToolCall(id=tc.id, name=tc.function.name, arguments=tc.function.arguments or "")
            for tc in (message.tool_calls or [])
        ]
        return StepResult(
            text=message.content or "",
            tool_calls=tool_calls,
            finish_reason=_finish_reason(choice.finish_reason, tool_calls),
            usage=Usage.from_vendor(response.usage),
            raw=response,
        )

    async def _stream_step(
        self,
        client: Any,
        params: InvocationParams,
        messages: list[Message],
        tools: list[dict] | None,
    ) -> AsyncIterator[StreamChunk]:
        kwargs = self._request_kwargs(params, messages, tools)
        kwargs["stream"] = True
        kwargs["stream_options"] = {"include_usage": True}

        # Track tool calls during streaming
        tool_calls_accumulator: dict[int, dict] = {}
        text = ""
        finish_reason = None
        usage = Usage()

        stream = await client.chat.completions.create(**kwargs)

        async for chunk in stream:
            if getattr(chunk, "usage", None) is not None:
                usage = Usage.from_vendor(chunk.usage)

            choice = chunk.choices[0] if chunk.choices else None
            if choice is None:
                continue
            if choice.finish_reason:
                finish_reason = choice.finish_reason

            delta = choice.delta
            if not delta:
                continue

            if delta.content:
                text += delta.content
                yield StreamChunk(type="text", content=delta.content)

            if delta.tool_calls:
                for tc in delta.tool_calls:
                    acc = tool_calls_accumulator.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                    if tc.id:
                        acc["id"] = tc.id
                    if tc.function:
                        if tc.function.name:
                            acc["name"] = tc.function.name
                        if tc.function.arguments:
                            acc["arguments"] += tc.function.arguments

        tool_calls = [
            ToolCall(id=acc["id"], name=acc["name"], arguments=acc["arguments"])
            for _, acc in sorted(tool_calls_accumulator.items())
        ]
        yield StreamChunk(
            type="step_finish",
            step=StepResult(
                text=text,
                tool_calls=tool_calls,
                finish_reason=_finish_reason(finish_reason, tool_calls),
                usage=usage,
            ),
        )


class PerplexityProvider(OpenAIProvider):
    name = "Perplexity"
    API_KEY_NAME = "PERPLEXITY_API_KEY"
    BASE_URL = "https://api.perplexity.ai"
    # Perplexity rejects response_format json_object
    JSON_MODE = False


class XAIProvider(OpenAIProvider):
    name = "xAI"
    API_KEY_NAME = "XAI_API_KEY"
    BASE_URL = "https://api.x.ai/v1"


class MistralProvider(OpenAIProvider):
    name = "Mistral"
    API_KEY_NAME = "MISTRAL_API_KEY"
    BASE_URL = "https://api.mistral.ai/v1"


class OllamaProvider(OpenAIProvider):
    """Local Ollama server through its OpenAI-compatible endpoint; no key needed"""

    name = "Ollama"
    API_KEY_NAME = None
    BASE_URL = "http://localhost:11434/v1"

    def validate_auth(self, params: InvocationParams):
        pass

    def resolve_base_url(self, params: InvocationParams) -> str | None:
        base_url = (params.base_url or self.BASE_URL).rstrip("/")
        # Config stores the native API root (.../api); the compatible API lives at /v1
        if base_url.endswith("/api"):
            base_url = base_url[: -len("/api")] + "/v1"
        return base_url

    def get_client(self, params: InvocationParams) -> openai.AsyncOpenAI:
        return openai.AsyncOpenAI(
            api_key=params.api_key or "ollama",
            base_url=self.resolve_base_url(params),
            timeout=self.TIMEOUT,
        )
