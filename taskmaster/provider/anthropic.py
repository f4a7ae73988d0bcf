"""Anthropic provider implementation over the raw Messages API"""

import json
import logging
from typing import Any, AsyncIterator

import httpx

from .base import BaseAIProvider
from .types import InvocationParams, Message, StepResult, StreamChunk, ToolCall, Usage, normalize_finish_reason

logger = logging.getLogger(__name__)


def _error_message(status_code: int, body: bytes) -> str:
    try:
        error_json = json.loads(body)
        message = error_json.get("error", {}).get("message", str(error_json))
    except (json.JSONDecodeError, AttributeError):
        message = body.decode(errors="replace")[:500]
    return f"API error ({status_code}): {message}"


class AnthropicProvider(BaseAIProvider):
    """Provider for Anthropic Claude models"""

    name = "Anthropic"
    API_URL = "https://api.anthropic.com/v1/messages"
    API_VERSION = "2023-06-01"
    TIMEOUT = 120.0
    # The Messages API requires max_tokens on every request
    DEFAULT_MAX_TOKENS = 8192

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport

    def get_required_api_key_name(self) -> str:
        return "ANTHROPIC_API_KEY"

    def get_client(self, params: InvocationParams) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.TIMEOUT,
            transport=self._transport,
            headers={
                "Content-Type": "application/json",
                "x-api-key": params.api_key or "",
                "anthropic-version": self.API_VERSION,
            },
        )

    async def close_client(self, client: Any) -> None:
        await client.aclose()

    def _endpoint(self, params: InvocationParams) -> str:
        if not params.base_url:
            return self.API_URL
        base = params.base_url.rstrip("/")
        return base if base.endswith("/messages") else f"{base}/messages"

    def _convert_messages(self, messages: list[Message]) -> tuple[str, list[dict]]:
        """Convert internal messages to Anthropic format, lifting system messages out"""
        system_parts = []
        result = []
        pending_tool_results = []

        for msg in messages:
            role = msg.get("role")

            if role == "system":
                if msg.get("content"):
                    system_parts.append(msg["content"])

            elif role == "user":
                # Flush any pending tool results first
                if pending_tool_results:
                    result.append({"role": "user", "content": pending_tool_results})
                    pending_tool_results = []

                result.append({"role": "user", "content": msg.get("content", "")})

            elif role == "assistant":
                if pending_tool_results:
                    result.append({"role": "user", "content": pending_tool_results})
                    pending_tool_results = []

                content = []
                if msg.get("content"):
                    content.append({"type": "text", "text": msg["content"]})

                for tc in msg.get("tool_calls") or []:
                    args = tc.get("function", {}).get("arguments", "{}")
                    if isinstance(args, str):
                        try:
                            args = json.loads(args) if args.strip() else {}
                        except json.JSONDecodeError:
                            args = {}

                    content.append({
                        "type": "tool_use",
                        "id": tc.get("id", ""),
                        "name": tc.get("function", {}).get("name", ""),
                        "input": args,
                    })

                if content:
                    result.append({"role": "assistant", "content": content})

            elif role == "tool":
                # Tool results go back as a user message
                pending_tool_results.append({
                    "type": "tool_result",
                    "tool_use_id": msg.get("tool_call_id", ""),
                    "content": msg.get("content", ""),
                })

        if pending_tool_results:
            result.append({"role": "user", "content": pending_tool_results})

        return "\n\n".join(system_parts), result

    def _convert_tools(self, tools: list[dict] | None) -> list[dict] | None:
        """Convert internal tool format to Anthropic format"""
        if not tools:
            return None

        return [
            {
                "name": t["name"],
                "description": t["description"],
                "input_schema": t["parameters"],
            }
            for t in tools
        ]

    def _body(self, params: InvocationParams, messages: list[Message], tools: list[dict] | None) -> dict:
        system, anthropic_messages = self._convert_messages(messages)
        body: dict[str, Any] = {
            "model": params.model_id,
            "max_tokens": params.max_tokens or self.DEFAULT_MAX_TOKENS,
            "messages": anthropic_messages,
        }
        if system:
            body["system"] = system
        if params.temperature is not None:
            body["temperature"] = params.temperature

        anthropic_tools = self._convert_tools(tools)
        if anthropic_tools:
            body["tools"] = anthropic_tools
        return body

    async def _complete_step(
        self,
        client: Any,
        params: InvocationParams,
        messages: list[Message],
        tools: list[dict] | None,
        json_mode: bool = False,
    ) -> StepResult:
        response = await client.post(self._endpoint(params), json=self._body(params, messages, tools))
        if response.status_code != 200:
            raise ValueError(_error_message(response.status_code, response.content))

        data = response.json()
        text_parts = []
        tool_calls = []
        for block in data.get("content", []):
            if block.get("type") == "text":
                text_parts.append(block.get("text", ""))
            elif block.get("type") == "tool_use":
                tool_calls.append(ToolCall(id=block.get("id", ""), name=block.get("name", ""), arguments=block.get("input") or {}))

        return StepResult(
            text="".join(text_parts),
            tool_calls=tool_calls,
            finish_reason=normalize_finish_reason(data.get("stop_reason")),
            usage=Usage.from_vendor(data.get("usage")),
            raw=data,
        )

    async def _stream_step(
        self,
        client: Any,
        params: InvocationParams,
        messages: list[Message],
        tools: list[dict] | None,
    ) -> AsyncIterator[StreamChunk]:
        body = self._body(params, messages, tools)
        body["stream"] = True

        text = ""
        tool_calls: list[ToolCall] = []
        stop_reason = None
        input_tokens = 0
        output_tokens = 0

        # Track current tool use block
        current_tool_id = None
        current_tool_name = None
        current_tool_input = ""

        async with client.stream("POST", self._endpoint(params), json=body) as response:
            if response.status_code != 200:
                raise ValueError(_error_message(response.status_code, await response.aread()))

            async for line in response.aiter_lines():
                if not line.startswith("data: "):
                    continue

                data = line[6:]
                if data == "[DONE]":
                    break

                try:
                    event = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning(f"Skipping malformed Anthropic stream line: {data[:200]}")
                    continue

                event_type = event.get("type")

                if event_type == "message_start":
                    usage = event.get("message", {}).get("usage") or {}
                    input_tokens = usage.get("input_tokens", 0)
                    output_tokens = usage.get("output_tokens", 0)

                elif event_type == "content_block_start":
                    block = event.get("content_block", {})
                    if block.get("type") == "tool_use":
                        current_tool_id = block.get("id")
                        current_tool_name = block.get("name")
                        current_tool_input = ""

                elif event_type == "content_block_delta":
                    delta = event.get("delta", {})
                    if delta.get("type") == "text_delta":
                        text += delta.get("text", "")
                        yield StreamChunk(type="text", content=delta.get("text", ""))
                    elif delta.get("type") == "input_json_delta":
                        current_tool_input += delta.get("partial_json", "")

                elif event_type == "content_block_stop":
                    if current_tool_id and current_tool_name:
                        tool_calls.append(ToolCall(id=current_tool_id, name=current_tool_name, arguments=current_tool_input))
                        current_tool_id = None
                        current_tool_name = None
                        current_tool_input = ""

                elif event_type == "message_delta":
                    stop_reason = event.get("delta", {}).get("stop_reason") or stop_reason
                    output_tokens = (event.get("usage") or {}).get("output_tokens", output_tokens)

                elif event_type == "error":
                    error = event.get("error", {})
                    raise ValueError(f"Stream error: {error.get('message', str(error))}")

        yield StreamChunk(
            type="step_finish",
            step=StepResult(
                text=text,
                tool_calls=tool_calls,
                finish_reason=normalize_finish_reason(stop_reason),
                usage=Usage(input_tokens, output_tokens, input_tokens + output_tokens),
            ),
        )
