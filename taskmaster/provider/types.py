"""Value types shared by the invocation engine and the vendor adapters"""

import asyncio
import inspect
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Literal

# Messages travel in the OpenAI chat shape:
#   {"role": "system" | "user" | "assistant" | "tool", "content": str,
#    "tool_calls": [...]  (assistant only), "tool_call_id": str (tool only)}
Message = dict[str, Any]

FinishReason = Literal["stop", "length", "tool-calls", "content-filter", "error", "other", "unknown"]

_FINISH_REASONS = {
    "stop": "stop",
    "end_turn": "stop",
    "stop_sequence": "stop",
    "tool-calls": "tool-calls",
    "tool_calls": "tool-calls",
    "tool_use": "tool-calls",
    "function_call": "tool-calls",
    "length": "length",
    "max_tokens": "length",
    "content_filter": "content-filter",
    "error": "error",
}


def normalize_finish_reason(reason: str | None) -> str:
    """Map a vendor's finish/stop reason onto the shared vocabulary"""
    if reason is None:
        return "unknown"
    return _FINISH_REASONS.get(reason, "other")


@dataclass
class Usage:
    """Token counts for one step or a whole run"""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_vendor(cls, raw: Any) -> "Usage":
        """Read usage from a vendor dict or SDK object, whatever its key names"""
        if raw is None:
            return cls()

        def pick(*names: str) -> int | None:
            for name in names:
                value = raw.get(name) if isinstance(raw, dict) else getattr(raw, name, None)
                if isinstance(value, (int, float)) and not isinstance(value, bool):
                    return int(value)
            return None

        input_tokens = pick("input_tokens", "prompt_tokens", "inputTokens", "promptTokens") or 0
        output_tokens = pick("output_tokens", "completion_tokens", "outputTokens", "completionTokens") or 0
        total = pick("total_tokens", "totalTokens")
        return cls(input_tokens, output_tokens, total if total is not None else input_tokens + output_tokens)

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            self.input_tokens + other.input_tokens,
            self.output_tokens + other.output_tokens,
            self.total_tokens + other.total_tokens,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "totalTokens": self.total_tokens,
        }


@dataclass
class ToolCall:
    """A tool invocation requested by the model.

    ``arguments`` is whatever the vendor sent: a JSON string (OpenAI style)
    or an already decoded dict (Anthropic style). The engine parses it.
    """

    id: str
    name: str
    arguments: Any = ""

    def to_message_dict(self) -> dict:
        arguments = self.arguments
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": arguments},
        }


@dataclass
class ToolResultRecord:
    tool_call_id: str
    tool_name: str
    args: dict
    result: str


@dataclass
class StepResult:
    """Outcome of one model call inside the tool-calling loop"""

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str = "stop"
    usage: Usage = field(default_factory=Usage)
    step_number: int = 0
    tool_results: list[ToolResultRecord] = field(default_factory=list)
    # Vendor extras surfaced on the final result (e.g. conversation ids)
    metadata: dict[str, Any] = field(default_factory=dict)
    raw: Any = None


@dataclass
class GenerateTextResult:
    text: str
    finish_reason: str
    usage: Usage
    steps: list[StepResult] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: list[ToolResultRecord] = field(default_factory=list)
    messages: list[Message] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class GenerateObjectResult:
    object: Any
    usage: Usage
    finish_reason: str = "stop"
    repaired: bool = False
    raw_text: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class StreamChunk:
    """A chunk of a streamed run"""
    type: Literal["text", "tool_call", "tool_result", "step_finish", "finish"]
    content: str = ""
    name: str = ""
    args: dict = field(default_factory=dict)
    id: str = ""
    step: StepResult | None = None
    result: GenerateTextResult | None = None


@dataclass
class Session:
    """Caller session; ``env`` overrides every other environment source"""

    env: dict[str, str] = field(default_factory=dict)
    id: str | None = None


@dataclass
class InvocationParams:
    """Everything one adapter call needs"""

    model_id: str | None
    messages: list[Message]
    api_key: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    base_url: str | None = None
    # ToolRegistry the engine dispatches to; active_tools narrows it
    tools: Any = None
    active_tools: list[str] | None = None
    session: Any = None
    project_root: str | None = None
    command_name: str | None = None
    output_type: str | None = None
    max_steps: int | None = None
    abort_signal: asyncio.Event | None = None
    on_step_finish: Callable[[StepResult], Any] | None = None
    on_finish: Callable[[GenerateTextResult], Any] | None = None
    # Object generation
    schema: Any = None
    object_name: str | None = None
    mode: str = "auto"
    # Vendor specific extras (e.g. Dify inputs, user, conversation_id)
    provider_options: dict[str, Any] = field(default_factory=dict)


async def call_maybe_async(callback: Callable | None, *args) -> None:
    if callback is None:
        return
    outcome = callback(*args)
    if inspect.isawaitable(outcome):
        await outcome


class TextStream:
    """Live handle over a streaming run.

    Iterating yields text deltas; ``full_stream()`` yields every chunk
    (text, tool calls, tool results). Once the run completes the final
    ``GenerateTextResult`` is passed to ``on_finish`` and returned by
    ``result()``. A stream can be consumed only once.
    """

    def __init__(self, chunks: AsyncIterator[StreamChunk], on_finish: Callable | None = None):
        self._chunks = chunks
        self._on_finish = on_finish
        self._result: GenerateTextResult | None = None
        self._consumed = False

    def __aiter__(self):
        return self.text_stream()

    async def text_stream(self) -> AsyncIterator[str]:
        async for chunk in self.full_stream():
            if chunk.type == "text":
                yield chunk.content

    async def full_stream(self) -> AsyncIterator[StreamChunk]:
        if self._consumed:
            raise RuntimeError("Stream has already been consumed")
        self._consumed = True
        async for chunk in self._chunks:
            if chunk.type == "finish":
                self._result = chunk.result
                await call_maybe_async(self._on_finish, chunk.result)
                continue
            yield chunk

    async def result(self) -> GenerateTextResult:
        """Drain whatever is left and return the final result"""
        if not self._consumed:
            async for _ in self.full_stream():
                pass
        if self._result is None:
            raise RuntimeError("Stream ended without a result")
        return self._result
