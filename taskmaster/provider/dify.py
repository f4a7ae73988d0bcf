"""Dify Agent provider implementation

Dify's chat-messages API is query/answer oriented rather than a message
array API: the first system message (or, failing that, the last user
message) is sent as ``inputs.prompt`` and the last user message as the
``query``. Answers come back as a server-sent event stream.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import httpx
from pydantic import ValidationError

from taskmaster.errors import MalformedOutputError, ProviderValidationError, TaskmasterError

from .base import BaseAIProvider, schema_to_json
from .types import (
    GenerateObjectResult,
    InvocationParams,
    Message,
    StepResult,
    StreamChunk,
    Usage,
)

logger = logging.getLogger(__name__)


def extract_prompt(messages: list[Message]) -> str | None:
    """First system message, otherwise the last user message"""
    for message in messages:
        if message.get("role") == "system" and message.get("content"):
            return message["content"]
    return extract_query(messages)


def extract_query(messages: list[Message]) -> str | None:
    """Last user message"""
    for message in reversed(messages):
        if message.get("role") == "user" and message.get("content"):
            return message["content"]
    return None


def _error_message(status_code: int, body: bytes) -> str:
    try:
        message = json.loads(body).get("message") or body.decode(errors="replace")[:500]
    except (json.JSONDecodeError, AttributeError):
        message = body.decode(errors="replace")[:500]
    return f"API error ({status_code}): {message}"


@dataclass
class DifyStreamState:
    """Everything accumulated from one event stream"""

    answer: str = ""
    agent_thoughts: list[dict] = field(default_factory=list)
    files: list[dict] = field(default_factory=list)
    usage: dict | None = None
    conversation_id: str | None = None
    message_id: str | None = None

    def apply(self, event: dict) -> str:
        """Fold one event in; returns the text delta it carried"""
        kind = event.get("event")
        if kind in ("message", "agent_message"):
            delta = event.get("answer") or ""
            self.answer += delta
            return delta
        if kind == "agent_thought":
            self.agent_thoughts.append({
                "thought": event.get("thought"),
                "observation": event.get("observation"),
                "tool": event.get("tool"),
                "tool_input": event.get("tool_input"),
                "message_files": event.get("message_files"),
                "created_at": event.get("created_at"),
            })
        elif kind == "message_file":
            self.files.append({
                "id": event.get("id"),
                "type": event.get("type"),
                "url": event.get("url"),
                "belongs_to": event.get("belongs_to"),
            })
        elif kind == "message_end":
            self.usage = (event.get("metadata") or {}).get("usage")
            self.conversation_id = event.get("conversation_id")
            self.message_id = event.get("message_id") or event.get("id")
        return ""

    def metadata(self) -> dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "message_id": self.message_id,
            "agent_thoughts": self.agent_thoughts,
            "files": self.files,
        }


class DifyAgentProvider(BaseAIProvider):
    """Provider for Dify agents; the model id names the agent"""

    name = "DifyAgent"
    DEFAULT_ENDPOINT = "https://api.dify.ai/v1/chat-messages"
    DEFAULT_USER = "taskmaster"
    TIMEOUT = 60.0

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport

    def get_required_api_key_name(self) -> str:
        return "DIFY_AGENT_API_KEY"

    def get_client(self, params: InvocationParams) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.TIMEOUT,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {params.api_key}",
                "Content-Type": "application/json",
            },
        )

    async def close_client(self, client: Any) -> None:
        await client.aclose()

    def _endpoint(self, params: InvocationParams) -> str:
        if not params.base_url:
            return self.DEFAULT_ENDPOINT
        base = params.base_url.rstrip("/")
        return base if base.endswith("/chat-messages") else f"{base}/chat-messages"

    def _payload(self, params: InvocationParams, messages: list[Message], response_mode: str) -> dict:
        options = params.provider_options
        query = extract_query(messages)
        if not query:
            raise ProviderValidationError("Dify Agent: query (from messages) is required")

        payload = {
            "inputs": {**options.get("inputs", {}), "prompt": options.get("prompt") or extract_prompt(messages)},
            "query": query,
            "response_mode": response_mode,
            "conversation_id": options.get("conversation_id", ""),
            "user": options.get("user", self.DEFAULT_USER),
        }
        if options.get("files"):
            payload["files"] = options["files"]
        return payload

    async def _iter_events(self, client: Any, params: InvocationParams, payload: dict) -> AsyncIterator[dict]:
        """Parse the SSE stream; malformed lines are logged and skipped"""
        logger.debug(f"Dify Agent request to {self._endpoint(params)} (agent: {params.model_id})")
        async with client.stream("POST", self._endpoint(params), json=payload) as response:
            if response.status_code != 200:
                raise ValueError(_error_message(response.status_code, await response.aread()))

            async for line in response.aiter_lines():
                line = line.strip()
                if not line.startswith("data:"):
                    continue
                data = line[len("data:"):].strip()
                if not data or data == "[DONE]":
                    continue

                try:
                    event = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning(f"Dify Agent stream line could not be parsed: {line[:200]}")
                    continue
                if not isinstance(event, dict):
                    logger.warning(f"Dify Agent stream line is not an event object: {line[:200]}")
                    continue

                if event.get("event") == "error":
                    raise ValueError(f"Stream error: {event.get('message', event)}")
                yield event

    def _step_from_state(self, state: DifyStreamState) -> StepResult:
        return StepResult(
            text=state.answer,
            finish_reason="stop",
            usage=Usage.from_vendor(state.usage),
            metadata=state.metadata(),
            raw=state,
        )

    async def _complete_step(
        self,
        client: Any,
        params: InvocationParams,
        messages: list[Message],
        tools: list[dict] | None,
        json_mode: bool = False,
    ) -> StepResult:
        if tools:
            logger.debug("Dify agents run their own tools; local tool schemas are not sent")
        state = DifyStreamState()
        async for event in self._iter_events(client, params, self._payload(params, messages, "streaming")):
            state.apply(event)
        return self._step_from_state(state)

    async def _stream_step(
        self,
        client: Any,
        params: InvocationParams,
        messages: list[Message],
        tools: list[dict] | None,
    ) -> AsyncIterator[StreamChunk]:
        state = DifyStreamState()
        async for event in self._iter_events(client, params, self._payload(params, messages, "streaming")):
            delta = state.apply(event)
            if delta:
                yield StreamChunk(type="text", content=delta)
        yield StreamChunk(type="step_finish", step=self._step_from_state(state))

    async def generate_object(self, params: InvocationParams) -> GenerateObjectResult:
        """Structured output from a Dify agent.

        ``mode="blocking"`` parses the whole answer as JSON in one shot and
        fails hard on invalid JSON. Any other mode streams and returns the
        aggregated answer, agent thoughts and files as the object.
        """
        self.validate_params(params)
        self.validate_messages(params.messages)
        if params.schema is None:
            raise ProviderValidationError("Schema is required for object generation")
        if not params.object_name:
            raise ProviderValidationError("Object name is required for object generation")

        blocking = params.mode == "blocking"
        payload = self._payload(params, params.messages, "blocking" if blocking else "streaming")
        payload["schema"] = schema_to_json(params.schema)

        logger.debug(
            f"Generating {self.name} object ('{params.object_name}') with agent: {params.model_id} "
            f"({payload['response_mode']})"
        )
        client = self.get_client(params)
        try:
            if blocking:
                return await self._generate_object_blocking(client, params, payload)
            return await self._generate_object_streaming(client, params, payload)
        except TaskmasterError:
            raise
        except Exception as e:
            self.handle_error("object generation", e)
        finally:
            await self.close_client(client)

    async def _generate_object_streaming(self, client: Any, params: InvocationParams, payload: dict) -> GenerateObjectResult:
        state = DifyStreamState()
        async for event in self._iter_events(client, params, payload):
            state.apply(event)
        return GenerateObjectResult(
            object={
                "answer": state.answer,
                "agent_messages": state.answer,
                "agent_thoughts": state.agent_thoughts,
                "files": state.files,
                "conversation_id": state.conversation_id,
            },
            usage=Usage.from_vendor(state.usage),
            raw_text=state.answer,
            extra=state.metadata(),
        )

    async def _generate_object_blocking(self, client: Any, params: InvocationParams, payload: dict) -> GenerateObjectResult:
        response = await client.post(self._endpoint(params), json=payload)
        if response.status_code != 200:
            raise ValueError(_error_message(response.status_code, response.content))
        result = response.json()

        if isinstance(result.get("data"), (dict, list)) or isinstance(result.get("object"), (dict, list)):
            data = result.get("data") or result.get("object")
            raw_text = json.dumps(data)
        else:
            raw_text = result.get("answer")
            if not raw_text:
                self.handle_error(
                    "object generation",
                    ValueError("Failed to extract object from Dify Agent response"),
                    MalformedOutputError,
                    raw_text=json.dumps(result)[:2000],
                )
            try:
                data = json.loads(raw_text)
            except json.JSONDecodeError as e:
                # No repair here: Dify answers are expected to be plain JSON
                self.handle_error("object generation", e, MalformedOutputError, raw_text=raw_text)

        try:
            obj = self._coerce_object(data, params.schema)
        except ValidationError as e:
            self.handle_error("object generation", e, MalformedOutputError, raw_text=raw_text)

        return GenerateObjectResult(
            object=obj,
            usage=Usage.from_vendor(result.get("usage") or (result.get("metadata") or {}).get("usage")),
            raw_text=raw_text,
            extra={"conversation_id": result.get("conversation_id"), "message_id": result.get("message_id")},
        )
