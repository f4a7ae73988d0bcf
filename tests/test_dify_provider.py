"""Tests for the Dify agent adapter"""

import json
import logging

import httpx
import pytest
from pydantic import BaseModel


class Outline(BaseModel):
    title: str
    sections: list[str]


def make_params(**overrides):
    from taskmaster.provider.types import InvocationParams

    values = {
        "model_id": "dify-agent",
        "messages": [
            {"role": "system", "content": "You write outlines."},
            {"role": "user", "content": "Outline a README"},
        ],
        "api_key": "app-test",
    }
    values.update(overrides)
    return InvocationParams(**values)


def recording_transport(*responses):
    requests = []
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return queue.pop(0)

    return httpx.MockTransport(handler), requests


def sse(*events, raw_lines=()) -> bytes:
    lines = [f"data: {json.dumps(e)}" for e in events]
    lines[1:1] = list(raw_lines)
    return ("\n\n".join(lines) + "\n\n").encode()


CONVERSATION = [
    {"event": "agent_message", "answer": "Hel", "conversation_id": "conv-1"},
    {"event": "agent_thought", "thought": "Plan the sections", "tool": "", "observation": ""},
    {"event": "message", "answer": "lo"},
    {"event": "message_file", "id": "f1", "type": "image", "url": "https://files/f1.png", "belongs_to": "assistant"},
    {
        "event": "message_end",
        "conversation_id": "conv-1",
        "message_id": "msg-1",
        "metadata": {"usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15}},
    },
]


class TestPayload:
    def test_prompt_and_query(self):
        from taskmaster.provider.dify import extract_prompt, extract_query

        messages = make_params().messages

        assert extract_prompt(messages) == "You write outlines."
        assert extract_query(messages) == "Outline a README"

    def test_prompt_falls_back_to_last_user_message(self):
        from taskmaster.provider.dify import extract_prompt

        messages = [
            {"role": "user", "content": "first"},
            {"role": "assistant", "content": "ok"},
            {"role": "user", "content": "second"},
        ]

        assert extract_prompt(messages) == "second"

    def test_provider_options(self):
        from taskmaster.provider.dify import DifyAgentProvider

        params = make_params(provider_options={
            "conversation_id": "conv-7",
            "user": "alice",
            "inputs": {"lang": "en"},
            "files": [{"type": "document", "transfer_method": "remote_url", "url": "https://x/doc.md"}],
        })

        payload = DifyAgentProvider()._payload(params, params.messages, "streaming")

        assert payload["conversation_id"] == "conv-7"
        assert payload["user"] == "alice"
        assert payload["inputs"] == {"lang": "en", "prompt": "You write outlines."}
        assert payload["files"][0]["url"] == "https://x/doc.md"

    def test_defaults(self):
        from taskmaster.provider.dify import DifyAgentProvider

        params = make_params()
        payload = DifyAgentProvider()._payload(params, params.messages, "blocking")

        assert payload["conversation_id"] == ""
        assert payload["user"] == "taskmaster"
        assert payload["response_mode"] == "blocking"
        assert "files" not in payload

    def test_query_required(self):
        from taskmaster.errors import ProviderValidationError
        from taskmaster.provider.dify import DifyAgentProvider

        messages = [{"role": "system", "content": "only a system prompt"}]

        with pytest.raises(ProviderValidationError):
            DifyAgentProvider()._payload(make_params(messages=messages), messages, "streaming")

    def test_endpoint(self):
        from taskmaster.provider.dify import DifyAgentProvider

        provider = DifyAgentProvider()

        assert provider._endpoint(make_params()) == "https://api.dify.ai/v1/chat-messages"
        assert provider._endpoint(make_params(base_url="http://dify.local/v1/")) == "http://dify.local/v1/chat-messages"
        assert provider._endpoint(make_params(base_url="http://dify.local/v1/chat-messages")) == "http://dify.local/v1/chat-messages"


class TestGenerateText:
    @pytest.mark.asyncio
    async def test_aggregates_stream(self):
        from taskmaster.provider.dify import DifyAgentProvider

        transport, requests = recording_transport(httpx.Response(200, content=sse(*CONVERSATION)))
        provider = DifyAgentProvider(transport=transport)

        result = await provider.generate_text(make_params())

        assert result.text == "Hello"
        assert result.usage.total_tokens == 15
        assert result.extra["conversation_id"] == "conv-1"
        assert result.extra["message_id"] == "msg-1"
        assert result.extra["agent_thoughts"][0]["thought"] == "Plan the sections"
        assert result.extra["files"][0]["url"] == "https://files/f1.png"

        request = requests[0]
        assert request.headers["Authorization"] == "Bearer app-test"
        body = json.loads(request.content)
        assert body["query"] == "Outline a README"
        assert body["inputs"]["prompt"] == "You write outlines."
        assert body["response_mode"] == "streaming"

    @pytest.mark.asyncio
    async def test_malformed_lines_are_skipped(self, caplog):
        from taskmaster.provider.dify import DifyAgentProvider

        body = sse(*CONVERSATION, raw_lines=["data: {not json", "event: ping", "data: [1, 2]"])
        transport, _ = recording_transport(httpx.Response(200, content=body))
        provider = DifyAgentProvider(transport=transport)

        with caplog.at_level(logging.WARNING):
            result = await provider.generate_text(make_params())

        assert result.text == "Hello"
        assert "could not be parsed" in caplog.text
        assert "not an event object" in caplog.text

    @pytest.mark.asyncio
    async def test_error_event(self):
        from taskmaster.errors import ProviderAPIError
        from taskmaster.provider.dify import DifyAgentProvider

        body = sse({"event": "agent_message", "answer": "Hi"}, {"event": "error", "message": "quota exceeded"})
        transport, _ = recording_transport(httpx.Response(200, content=body))
        provider = DifyAgentProvider(transport=transport)

        with pytest.raises(ProviderAPIError) as exc:
            await provider.generate_text(make_params())

        assert "Stream error: quota exceeded" in str(exc.value)
        assert exc.value.provider == "DifyAgent"

    @pytest.mark.asyncio
    async def test_http_error(self):
        from taskmaster.errors import ProviderAPIError
        from taskmaster.provider.dify import DifyAgentProvider

        transport, _ = recording_transport(httpx.Response(401, json={"code": "unauthorized", "message": "Invalid key"}))
        provider = DifyAgentProvider(transport=transport)

        with pytest.raises(ProviderAPIError) as exc:
            await provider.generate_text(make_params())

        assert "API error (401): Invalid key" in str(exc.value)

    @pytest.mark.asyncio
    async def test_missing_query_fails_before_request(self):
        from taskmaster.errors import ProviderValidationError
        from taskmaster.provider.dify import DifyAgentProvider

        transport, requests = recording_transport()
        provider = DifyAgentProvider(transport=transport)

        with pytest.raises(ProviderValidationError):
            await provider.generate_text(make_params(messages=[{"role": "system", "content": "x"}]))

        assert requests == []

    @pytest.mark.asyncio
    async def test_stream_text(self):
        from taskmaster.provider.dify import DifyAgentProvider

        transport, _ = recording_transport(httpx.Response(200, content=sse(*CONVERSATION)))
        provider = DifyAgentProvider(transport=transport)

        stream = await provider.stream_text(make_params())
        deltas = [delta async for delta in stream]
        result = await stream.result()

        assert deltas == ["Hel", "lo"]
        assert result.extra["conversation_id"] == "conv-1"


class TestGenerateObject:
    @pytest.mark.asyncio
    async def test_blocking_parses_answer(self):
        from taskmaster.provider.dify import DifyAgentProvider

        answer = json.dumps({"title": "README", "sections": ["Install", "Usage"]})
        transport, requests = recording_transport(httpx.Response(200, json={
            "answer": answer,
            "conversation_id": "conv-2",
            "metadata": {"usage": {"prompt_tokens": 7, "completion_tokens": 3}},
        }))
        provider = DifyAgentProvider(transport=transport)

        result = await provider.generate_object(make_params(schema=Outline, object_name="outline", mode="blocking"))

        assert result.object == Outline(title="README", sections=["Install", "Usage"])
        assert result.usage.total_tokens == 10
        assert result.extra["conversation_id"] == "conv-2"
        body = json.loads(requests[0].content)
        assert body["response_mode"] == "blocking"
        assert body["schema"]["properties"]["title"]["type"] == "string"

    @pytest.mark.asyncio
    async def test_blocking_prefers_data_field(self):
        from taskmaster.provider.dify import DifyAgentProvider

        transport, _ = recording_transport(httpx.Response(200, json={
            "answer": "ignored",
            "data": {"title": "T", "sections": []},
        }))
        provider = DifyAgentProvider(transport=transport)

        result = await provider.generate_object(make_params(schema=Outline, object_name="outline", mode="blocking"))

        assert result.object.title == "T"

    @pytest.mark.asyncio
    async def test_blocking_invalid_json_is_not_repaired(self):
        from taskmaster.errors import MalformedOutputError
        from taskmaster.provider.dify import DifyAgentProvider

        transport, _ = recording_transport(httpx.Response(200, json={"answer": '{"title": "T", "sections": [],}'}))
        provider = DifyAgentProvider(transport=transport)

        with pytest.raises(MalformedOutputError) as exc:
            await provider.generate_object(make_params(schema=Outline, object_name="outline", mode="blocking"))

        assert exc.value.raw_text == '{"title": "T", "sections": [],}'

    @pytest.mark.asyncio
    async def test_blocking_without_answer(self):
        from taskmaster.errors import MalformedOutputError
        from taskmaster.provider.dify import DifyAgentProvider

        transport, _ = recording_transport(httpx.Response(200, json={"conversation_id": "c"}))
        provider = DifyAgentProvider(transport=transport)

        with pytest.raises(MalformedOutputError):
            await provider.generate_object(make_params(schema=Outline, object_name="outline", mode="blocking"))

    @pytest.mark.asyncio
    async def test_blocking_schema_mismatch(self):
        from taskmaster.errors import MalformedOutputError
        from taskmaster.provider.dify import DifyAgentProvider

        transport, _ = recording_transport(httpx.Response(200, json={"answer": '{"title": 5}'}))
        provider = DifyAgentProvider(transport=transport)

        with pytest.raises(MalformedOutputError):
            await provider.generate_object(make_params(schema=Outline, object_name="outline", mode="blocking"))

    @pytest.mark.asyncio
    async def test_streaming_aggregates(self):
        from taskmaster.provider.dify import DifyAgentProvider

        transport, requests = recording_transport(httpx.Response(200, content=sse(*CONVERSATION)))
        provider = DifyAgentProvider(transport=transport)
        schema = {"type": "object"}

        result = await provider.generate_object(make_params(schema=schema, object_name="outline"))

        assert result.object["answer"] == "Hello"
        assert result.object["agent_messages"] == "Hello"
        assert result.object["conversation_id"] == "conv-1"
        assert len(result.object["agent_thoughts"]) == 1
        assert len(result.object["files"]) == 1
        assert json.loads(requests[0].content)["response_mode"] == "streaming"

    @pytest.mark.asyncio
    async def test_schema_required(self):
        from taskmaster.errors import ProviderValidationError
        from taskmaster.provider.dify import DifyAgentProvider

        with pytest.raises(ProviderValidationError):
            await DifyAgentProvider().generate_object(make_params(object_name="outline"))
