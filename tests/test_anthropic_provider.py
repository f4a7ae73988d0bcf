"""Tests for the Anthropic adapter"""

import json

import httpx
import pytest

from taskmaster.tool.base import Tool


class WeatherTool(Tool):
    name = "get_weather"
    description = "Current weather for a city"

    def get_parameters_schema(self) -> dict:
        return {
            "type": "object",
            "properties": {"city": {"type": "string"}},
            "required": ["city"],
        }

    async def execute(self, args: dict, context: dict) -> str:
        return f"Sunny in {args['city']}"


def make_params(**overrides):
    from taskmaster.provider.types import InvocationParams

    values = {
        "model_id": "claude-3-7-sonnet-20250219",
        "messages": [{"role": "system", "content": "Be brief"}, {"role": "user", "content": "Hello"}],
        "api_key": "sk-ant-test",
        "max_tokens": 1024,
        "temperature": 0.2,
    }
    values.update(overrides)
    return InvocationParams(**values)


def recording_transport(*responses):
    """Serve responses in order and keep every request for inspection"""
    requests = []
    queue = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return queue.pop(0)

    return httpx.MockTransport(handler), requests


def sse(*events) -> bytes:
    return "".join(f"event: {e['type']}\ndata: {json.dumps(e)}\n\n" for e in events).encode()


class TestAnthropicProvider:
    @pytest.mark.asyncio
    async def test_generate_text(self):
        from taskmaster.provider.anthropic import AnthropicProvider

        transport, requests = recording_transport(httpx.Response(200, json={
            "content": [{"type": "text", "text": "Hi there"}],
            "stop_reason": "end_turn",
            "usage": {"input_tokens": 12, "output_tokens": 3},
        }))
        provider = AnthropicProvider(transport=transport)

        result = await provider.generate_text(make_params())

        assert result.text == "Hi there"
        assert result.finish_reason == "stop"
        assert result.usage.total_tokens == 15

        request = requests[0]
        assert str(request.url) == "https://api.anthropic.com/v1/messages"
        assert request.headers["x-api-key"] == "sk-ant-test"
        assert request.headers["anthropic-version"] == "2023-06-01"
        body = json.loads(request.content)
        assert body["system"] == "Be brief"
        assert body["messages"] == [{"role": "user", "content": "Hello"}]
        assert body["max_tokens"] == 1024

    @pytest.mark.asyncio
    async def test_tool_use_round_trip(self):
        from taskmaster.provider.anthropic import AnthropicProvider
        from taskmaster.tool.registry import ToolRegistry

        transport, requests = recording_transport(
            httpx.Response(200, json={
                "content": [
                    {"type": "text", "text": "Checking."},
                    {"type": "tool_use", "id": "toolu_1", "name": "get_weather", "input": {"city": "Oslo"}},
                ],
                "stop_reason": "tool_use",
                "usage": {"input_tokens": 20, "output_tokens": 10},
            }),
            httpx.Response(200, json={
                "content": [{"type": "text", "text": "It is sunny in Oslo."}],
                "stop_reason": "end_turn",
                "usage": {"input_tokens": 40, "output_tokens": 8},
            }),
        )
        provider = AnthropicProvider(transport=transport)
        params = make_params(tools=ToolRegistry([WeatherTool()], register_defaults=False))

        result = await provider.generate_text(params)

        assert result.text == "It is sunny in Oslo."
        assert result.usage.input_tokens == 60
        assert result.tool_results[0].result == "Sunny in Oslo"

        first = json.loads(requests[0].content)
        assert first["tools"][0] == {
            "name": "get_weather",
            "description": "Current weather for a city",
            "input_schema": WeatherTool().get_parameters_schema(),
        }
        second = json.loads(requests[1].content)
        assert second["messages"][-2]["content"][1] == {
            "type": "tool_use", "id": "toolu_1", "name": "get_weather", "input": {"city": "Oslo"},
        }
        assert second["messages"][-1] == {
            "role": "user",
            "content": [{"type": "tool_result", "tool_use_id": "toolu_1", "content": "Sunny in Oslo"}],
        }

    @pytest.mark.asyncio
    async def test_http_error_is_wrapped(self):
        from taskmaster.errors import ProviderAPIError
        from taskmaster.provider.anthropic import AnthropicProvider

        transport, _ = recording_transport(
            httpx.Response(429, json={"error": {"type": "rate_limit_error", "message": "Slow down"}})
        )
        provider = AnthropicProvider(transport=transport)

        with pytest.raises(ProviderAPIError) as exc:
            await provider.generate_text(make_params())

        assert "API error (429): Slow down" in str(exc.value)
        assert exc.value.provider == "Anthropic"

    @pytest.mark.asyncio
    async def test_custom_base_url(self):
        from taskmaster.provider.anthropic import AnthropicProvider

        transport, requests = recording_transport(httpx.Response(200, json={
            "content": [{"type": "text", "text": "ok"}], "stop_reason": "end_turn", "usage": {},
        }))
        provider = AnthropicProvider(transport=transport)

        await provider.generate_text(make_params(base_url="http://gateway/v1/"))

        assert str(requests[0].url) == "http://gateway/v1/messages"

    @pytest.mark.asyncio
    async def test_default_max_tokens(self):
        from taskmaster.provider.anthropic import AnthropicProvider

        transport, requests = recording_transport(httpx.Response(200, json={
            "content": [{"type": "text", "text": "ok"}], "stop_reason": "end_turn", "usage": {},
        }))
        provider = AnthropicProvider(transport=transport)

        await provider.generate_text(make_params(max_tokens=None))

        assert json.loads(requests[0].content)["max_tokens"] == 8192

    @pytest.mark.asyncio
    async def test_stream_text(self):
        from taskmaster.provider.anthropic import AnthropicProvider

        body = sse(
            {"type": "message_start", "message": {"usage": {"input_tokens": 9, "output_tokens": 1}}},
            {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hel"}},
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "lo"}},
            {"type": "content_block_stop", "index": 0},
            {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 4}},
            {"type": "message_stop"},
        )
        transport, requests = recording_transport(httpx.Response(200, content=body))
        provider = AnthropicProvider(transport=transport)

        stream = await provider.stream_text(make_params())
        deltas = [delta async for delta in stream]
        result = await stream.result()

        assert deltas == ["Hel", "lo"]
        assert result.text == "Hello"
        assert result.usage.input_tokens == 9
        assert result.usage.output_tokens == 4
        assert json.loads(requests[0].content)["stream"] is True

    @pytest.mark.asyncio
    async def test_stream_tool_use(self):
        from taskmaster.provider.anthropic import AnthropicProvider
        from taskmaster.tool.registry import ToolRegistry

        first = sse(
            {"type": "message_start", "message": {"usage": {"input_tokens": 5}}},
            {"type": "content_block_start", "index": 0,
             "content_block": {"type": "tool_use", "id": "toolu_9", "name": "get_weather", "input": {}}},
            {"type": "content_block_delta", "index": 0, "delta": {"type": "input_json_delta", "partial_json": '{"city"'}},
            {"type": "content_block_delta", "index": 0, "delta": {"type": "input_json_delta", "partial_json": ': "Rome"}'}},
            {"type": "content_block_stop", "index": 0},
            {"type": "message_delta", "delta": {"stop_reason": "tool_use"}, "usage": {"output_tokens": 7}},
        )
        second = sse(
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Sunny."}},
            {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 2}},
        )
        transport, _ = recording_transport(httpx.Response(200, content=first), httpx.Response(200, content=second))
        provider = AnthropicProvider(transport=transport)
        params = make_params(tools=ToolRegistry([WeatherTool()], register_defaults=False))

        stream = await provider.stream_text(params)
        chunks = [chunk async for chunk in stream.full_stream()]

        assert [c.type for c in chunks] == ["tool_call", "tool_result", "text"]
        assert chunks[0].args == {"city": "Rome"}
        assert chunks[1].content == "Sunny in Rome"

    @pytest.mark.asyncio
    async def test_stream_error_event(self):
        from taskmaster.errors import ProviderAPIError
        from taskmaster.provider.anthropic import AnthropicProvider

        body = sse({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}})
        transport, _ = recording_transport(httpx.Response(200, content=body))
        provider = AnthropicProvider(transport=transport)

        stream = await provider.stream_text(make_params())

        with pytest.raises(ProviderAPIError) as exc:
            await stream.result()

        assert "Overloaded" in str(exc.value)

    def test_system_messages_are_joined(self):
        from taskmaster.provider.anthropic import AnthropicProvider

        system, messages = AnthropicProvider()._convert_messages([
            {"role": "system", "content": "One"},
            {"role": "user", "content": "Q"},
            {"role": "system", "content": "Two"},
        ])

        assert system == "One\n\nTwo"
        assert messages == [{"role": "user", "content": "Q"}]
