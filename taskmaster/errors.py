"""Error types shared by the configuration and provider layers"""

from typing import Any


class TaskmasterError(Exception):
    """Base class for all taskmaster errors"""


class ConfigurationError(TaskmasterError):
    """Configuration problem that has to reach the caller"""


class ModelCatalogError(ConfigurationError):
    """The supported-models catalog is missing or malformed"""


class UnsupportedProviderError(ConfigurationError):
    """No adapter is registered for a provider name"""

    def __init__(self, provider: str, supported: list[str] | None = None):
        self.provider = provider
        message = f"Unknown provider: {provider}."
        if supported:
            message += f" Supported: {', '.join(supported)}"
        super().__init__(message)


class ProviderValidationError(TaskmasterError, ValueError):
    """Invalid invocation parameters, raised before any network call"""


class ProviderAPIError(TaskmasterError):
    """Normalized vendor failure tagged with provider name and operation"""

    def __init__(self, provider: str, operation: str, detail: str):
        self.provider = provider
        self.operation = operation
        self.detail = detail
        super().__init__(f"{provider} API error during {operation}: {detail}")


class MalformedOutputError(ProviderAPIError):
    """Structured output could not be parsed, even after repair"""

    def __init__(self, provider: str, operation: str, detail: str, raw_text: str | None = None):
        super().__init__(provider, operation, detail)
        self.raw_text = raw_text


class ToolCallError(TaskmasterError):
    """A model-issued tool call could not be dispatched"""

    def __init__(self, tool_name: str, message: str, tool_call_id: str = ""):
        self.tool_name = tool_name
        self.tool_call_id = tool_call_id
        super().__init__(message)


class NoSuchToolError(ToolCallError):
    def __init__(self, tool_name: str, available: list[str], tool_call_id: str = ""):
        self.available = available
        names = ", ".join(available) if available else "none"
        super().__init__(
            tool_name,
            f"Model tried to call unavailable tool '{tool_name}'. Available tools: {names}.",
            tool_call_id,
        )


class InvalidToolArgumentsError(ToolCallError):
    def __init__(self, tool_name: str, arguments: Any, reason: str, tool_call_id: str = ""):
        self.arguments = arguments
        self.reason = reason
        super().__init__(
            tool_name,
            f"Invalid arguments for tool {tool_name}: {reason}",
            tool_call_id,
        )


class StepLimitExceededError(TaskmasterError):
    """The tool-calling loop hit its step cap while the model still wanted tools"""

    def __init__(self, max_steps: int, partial_result: Any = None):
        self.max_steps = max_steps
        self.partial_result = partial_result
        super().__init__(f"Step limit of {max_steps} reached before the model finished")


class InvocationCancelledError(TaskmasterError):
    """An external abort signal was set between steps"""

    def __init__(self, step_number: int):
        self.step_number = step_number
        super().__init__(f"Invocation cancelled before step {step_number}")
