"""Provider abstraction for LLM APIs

``BaseAIProvider`` owns everything vendor independent: parameter
validation, the multi-step tool-calling loop, history truncation, tool
call repair, structured output parsing with JSON repair, streaming and the
error funnel. A vendor adapter only has to say how to build a client and
how to run one model call (``_complete_step``, optionally
``_stream_step``).
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, NoReturn

from pydantic import BaseModel, ValidationError

from taskmaster.errors import (
    InvalidToolArgumentsError,
    InvocationCancelledError,
    MalformedOutputError,
    NoSuchToolError,
    ProviderAPIError,
    ProviderValidationError,
    StepLimitExceededError,
    TaskmasterError,
)

from .history import prepare_history
from .repair import JSONRepairError, repair_json
from .types import (
    GenerateObjectResult,
    GenerateTextResult,
    InvocationParams,
    Message,
    StepResult,
    StreamChunk,
    TextStream,
    ToolCall,
    ToolResultRecord,
    Usage,
    call_maybe_async,
)

logger = logging.getLogger(__name__)


def schema_to_json(schema: Any) -> dict:
    """JSON schema for a pydantic model class or a plain schema dict"""
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        return schema.model_json_schema()
    if isinstance(schema, dict):
        return schema
    raise ProviderValidationError("Schema must be a pydantic model class or a JSON schema dict")


def object_instruction(object_name: str, schema: Any) -> str:
    return (
        f"Respond only with a JSON object named '{object_name}' that conforms to this JSON schema. "
        "Do not wrap it in code fences or add any other text.\n"
        f"{json.dumps(schema_to_json(schema), indent=2)}"
    )


class BaseAIProvider(ABC):
    """Base class for AI providers"""

    name: str = "BaseAIProvider"

    MAX_STEPS = 50
    MAX_MESSAGES = 100
    MAX_HISTORY_TOKENS = 20480

    # --- Validation ---

    def validate_auth(self, params: InvocationParams):
        """Most providers need an API key; credential-less ones override this"""
        if not params.api_key:
            raise ProviderValidationError(f"{self.name} API key is required")

    def validate_params(self, params: InvocationParams):
        self.validate_auth(params)
        if not params.model_id:
            raise ProviderValidationError(f"{self.name} Model ID is required")
        self.validate_optional_params(params)

    def validate_optional_params(self, params: InvocationParams):
        if params.temperature is not None and not 0 <= params.temperature <= 1:
            raise ProviderValidationError("Temperature must be between 0 and 1")
        if params.max_tokens is not None and params.max_tokens <= 0:
            raise ProviderValidationError("maxTokens must be greater than 0")

    def validate_messages(self, messages: list[Message]):
        if not messages or not isinstance(messages, list):
            raise ProviderValidationError("Invalid or empty messages array provided")
        for message in messages:
            if (
                not isinstance(message, dict)
                or not message.get("role")
                or not (message.get("content") or message.get("tool_calls"))
            ):
                raise ProviderValidationError(
                    "Invalid message format. Each message must have role and content"
                )

    @abstractmethod
    def get_required_api_key_name(self) -> str | None:
        """Environment variable holding this provider's key, None if keyless"""
        pass

    # --- Client and vendor primitives ---

    @abstractmethod
    def get_client(self, params: InvocationParams) -> Any:
        """Create the vendor client for one invocation"""
        pass

    async def close_client(self, client: Any) -> None:
        """Release whatever get_client opened"""
        pass

    @abstractmethod
    async def _complete_step(
        self,
        client: Any,
        params: InvocationParams,
        messages: list[Message],
        tools: list[dict] | None,
        json_mode: bool = False,
    ) -> StepResult:
        """Run one blocking model call"""
        pass

    async def _stream_step(
        self,
        client: Any,
        params: InvocationParams,
        messages: list[Message],
        tools: list[dict] | None,
    ) -> AsyncIterator[StreamChunk]:
        """Run one streaming model call.

        Yields text chunks and ends with a single ``step_finish`` chunk
        carrying the StepResult. The default wraps ``_complete_step``.
        """
        step = await self._complete_step(client, params, messages, tools)
        if step.text:
            yield StreamChunk(type="text", content=step.text)
        yield StreamChunk(type="step_finish", step=step)

    # --- Error funnel ---

    def handle_error(self, operation: str, error: BaseException, error_cls=ProviderAPIError, **extra) -> NoReturn:
        message = str(error) or "Unknown error occurred"
        logger.error(f"{self.name} {operation} failed: {message}")
        raise error_cls(self.name, operation, message, **extra) from error

    # --- Tool calls ---

    def prepare_messages(self, messages: list[Message]) -> list[Message]:
        return prepare_history(messages, self.MAX_MESSAGES, self.MAX_HISTORY_TOKENS)

    def _tool_schemas(self, params: InvocationParams) -> list[dict] | None:
        if params.tools is None:
            return None
        return params.tools.get_schemas(params.active_tools) or None

    def _parse_tool_call(self, call: ToolCall, tools: list[dict] | None) -> dict:
        available = {tool["name"]: tool for tool in tools or []}
        tool = available.get(call.name)
        if tool is None:
            raise NoSuchToolError(call.name, list(available), call.id)

        raw = call.arguments
        if isinstance(raw, str):
            if not raw.strip():
                args = {}
            else:
                try:
                    args = json.loads(raw)
                except json.JSONDecodeError as e:
                    raise InvalidToolArgumentsError(
                        call.name, raw, f"arguments are not valid JSON ({e.msg})", call.id
                    ) from e
        else:
            args = raw if raw is not None else {}

        if not isinstance(args, dict):
            raise InvalidToolArgumentsError(call.name, raw, "arguments must be a JSON object", call.id)

        required = (tool.get("parameters") or {}).get("required") or []
        missing = [key for key in required if key not in args]
        if missing:
            raise InvalidToolArgumentsError(
                call.name, args, f"missing required arguments: {', '.join(missing)}", call.id
            )
        return args

    async def _repair_tool_call(
        self,
        client: Any,
        params: InvocationParams,
        messages: list[Message],
        call: ToolCall,
        error: InvalidToolArgumentsError,
        tools: list[dict] | None,
    ) -> tuple[ToolCall, Usage]:
        """Replay the failed call and its error once, asking the model to fix it.

        Returns the repaired call and the usage of the extra model call.
        """
        logger.warning(f"{self.name} repairing tool call {call.name}: {error}")
        repair_messages = [
            *messages,
            {"role": "assistant", "content": "", "tool_calls": [call.to_message_dict()]},
            {"role": "tool", "tool_call_id": call.id, "content": str(error)},
        ]
        retry = await self._complete_step(client, params, repair_messages, tools)
        replacement = next((c for c in retry.tool_calls if c.name == call.name), None)
        if replacement is None:
            logger.warning(f"{self.name} could not repair tool call {call.name}")
            raise error
        return ToolCall(id=call.id, name=call.name, arguments=replacement.arguments), retry.usage

    async def _resolve_tool_call(
        self,
        client: Any,
        params: InvocationParams,
        messages: list[Message],
        call: ToolCall,
        tools: list[dict] | None,
    ) -> tuple[ToolCall, dict, Usage]:
        try:
            return call, self._parse_tool_call(call, tools), Usage()
        except InvalidToolArgumentsError as error:
            repaired, usage = await self._repair_tool_call(client, params, messages, call, error, tools)
            return repaired, self._parse_tool_call(repaired, tools), usage

    # --- Step loop ---

    async def _run_steps(self, client: Any, params: InvocationParams, streaming: bool) -> AsyncIterator[StreamChunk]:
        """Drive the tool-calling loop, ending with a ``finish`` chunk"""
        messages = list(params.messages)
        response_messages: list[Message] = []
        steps: list[StepResult] = []
        tools = self._tool_schemas(params)
        max_steps = params.max_steps or self.MAX_STEPS
        context = {"cwd": params.project_root or ".", "session": params.session}

        for step_number in range(max_steps):
            if params.abort_signal is not None and params.abort_signal.is_set():
                raise InvocationCancelledError(step_number)

            step_messages = self.prepare_messages(messages)
            logger.debug(
                f"{self.name} step {step_number + 1}/{max_steps} "
                f"with model {params.model_id} ({len(step_messages)} messages)"
            )
            started = time.monotonic()

            if streaming:
                step = None
                async for chunk in self._stream_step(client, params, step_messages, tools):
                    if chunk.type == "step_finish":
                        step = chunk.step
                    else:
                        yield chunk
                if step is None:
                    raise ValueError("Stream ended without a finish event")
            else:
                step = await self._complete_step(client, params, step_messages, tools)
            step.step_number = step_number

            if step.tool_calls:
                resolved = [
                    await self._resolve_tool_call(client, params, step_messages, call, tools)
                    for call in step.tool_calls
                ]
                step.tool_calls = [call for call, _, _ in resolved]
                step.usage = sum((usage for _, _, usage in resolved), step.usage)
                assistant = {
                    "role": "assistant",
                    "content": step.text or "",
                    "tool_calls": [call.to_message_dict() for call in step.tool_calls],
                }
                messages.append(assistant)
                response_messages.append(assistant)

                for call, args, _ in resolved:
                    yield StreamChunk(type="tool_call", id=call.id, name=call.name, args=args)
                    output = await params.tools.execute(call.name, args, context)
                    step.tool_results.append(ToolResultRecord(call.id, call.name, args, output))
                    tool_message = {"role": "tool", "tool_call_id": call.id, "content": output}
                    messages.append(tool_message)
                    response_messages.append(tool_message)
                    yield StreamChunk(type="tool_result", id=call.id, name=call.name, content=output)
            else:
                assistant = {"role": "assistant", "content": step.text or ""}
                messages.append(assistant)
                response_messages.append(assistant)

            steps.append(step)
            logger.debug(
                f"{self.name} step {step_number + 1} finished: reason={step.finish_reason}, "
                f"tool calls={[c.name for c in step.tool_calls]}, "
                f"tokens={step.usage.total_tokens}, time={(time.monotonic() - started) * 1000:.0f}ms"
            )
            await call_maybe_async(params.on_step_finish, step)

            if not (step.finish_reason == "tool-calls" and step.tool_calls):
                break
        else:
            raise StepLimitExceededError(max_steps, self._build_result(steps, response_messages))

        yield StreamChunk(type="finish", result=self._build_result(steps, response_messages))

    def _build_result(self, steps: list[StepResult], response_messages: list[Message]) -> GenerateTextResult:
        last = steps[-1] if steps else StepResult(finish_reason="unknown")
        return GenerateTextResult(
            text=last.text,
            finish_reason=last.finish_reason,
            usage=sum((step.usage for step in steps), Usage()),
            steps=steps,
            tool_calls=[call for step in steps for call in step.tool_calls],
            tool_results=[record for step in steps for record in step.tool_results],
            messages=response_messages,
            extra=dict(last.metadata),
        )

    # --- Public operations ---

    async def generate_text(self, params: InvocationParams) -> GenerateTextResult:
        """Generate text, running tools the model asks for until it stops"""
        self.validate_params(params)
        self.validate_messages(params.messages)

        logger.debug(f"Generating {self.name} text with model: {params.model_id}")
        started = time.monotonic()
        client = None
        result = None
        try:
            client = self.get_client(params)
            async for chunk in self._run_steps(client, params, streaming=False):
                if chunk.type == "finish":
                    result = chunk.result
        except TaskmasterError:
            raise
        except Exception as e:
            self.handle_error("text generation", e)
        finally:
            if client is not None:
                await self.close_client(client)

        logger.debug(
            f"{self.name} generate_text completed for model: {params.model_id}, "
            f"steps: {len(result.steps)}, time: {time.monotonic() - started:.1f}s"
        )
        return result

    async def stream_text(self, params: InvocationParams) -> TextStream:
        """Start a streaming run; validation errors raise before any request"""
        self.validate_params(params)
        self.validate_messages(params.messages)

        logger.debug(f"Streaming {self.name} text with model: {params.model_id}")
        try:
            client = self.get_client(params)
        except TaskmasterError:
            raise
        except Exception as e:
            self.handle_error("text streaming", e)

        logger.debug(f"{self.name} stream_text initiated for model: {params.model_id}")
        return TextStream(self._stream_run(client, params), on_finish=params.on_finish)

    async def _stream_run(self, client: Any, params: InvocationParams) -> AsyncIterator[StreamChunk]:
        try:
            async for chunk in self._run_steps(client, params, streaming=True):
                yield chunk
        except TaskmasterError:
            raise
        except Exception as e:
            self.handle_error("text streaming", e)
        finally:
            await self.close_client(client)

    async def generate_object(self, params: InvocationParams) -> GenerateObjectResult:
        """Generate a JSON object matching params.schema, repairing bad JSON once"""
        self.validate_params(params)
        self.validate_messages(params.messages)
        if params.schema is None:
            raise ProviderValidationError("Schema is required for object generation")
        if not params.object_name:
            raise ProviderValidationError("Object name is required for object generation")

        logger.debug(f"Generating {self.name} object ('{params.object_name}') with model: {params.model_id}")
        messages = [
            *params.messages,
            {"role": "system", "content": object_instruction(params.object_name, params.schema)},
        ]
        client = None
        try:
            client = self.get_client(params)
            step = await self._complete_step(client, params, self.prepare_messages(messages), None, json_mode=True)
        except TaskmasterError:
            raise
        except Exception as e:
            self.handle_error("object generation", e)
        finally:
            if client is not None:
                await self.close_client(client)

        result = self._parse_object(params, step)
        logger.debug(f"{self.name} generate_object completed for model: {params.model_id}")
        return result

    def _parse_object(self, params: InvocationParams, step: StepResult) -> GenerateObjectResult:
        repaired = False
        try:
            data = json.loads(step.text)
        except json.JSONDecodeError as error:
            logger.warning(f"{self.name} generated malformed JSON, attempting to repair...")
            try:
                data = json.loads(repair_json(step.text))
            except JSONRepairError as repair_error:
                logger.error(f"Failed to repair {self.name} JSON: {repair_error}")
                self.handle_error("object generation", error, MalformedOutputError, raw_text=step.text)
            logger.info(f"Successfully repaired {self.name} JSON output")
            repaired = True

        try:
            obj = self._coerce_object(data, params.schema)
        except ValidationError as e:
            self.handle_error("object generation", e, MalformedOutputError, raw_text=step.text)

        return GenerateObjectResult(
            object=obj,
            usage=step.usage,
            finish_reason=step.finish_reason,
            repaired=repaired,
            raw_text=step.text,
        )

    @staticmethod
    def _coerce_object(data: Any, schema: Any) -> Any:
        if isinstance(schema, type) and issubclass(schema, BaseModel):
            return schema.model_validate(data)
        return data
