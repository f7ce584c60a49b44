"""Custom exceptions for Meow."""


class MeowError(Exception):
    """Base exception for Meow."""

    pass


class ConfigurationError(MeowError):
    """Configuration-related errors."""

    pass


class TransportError(MeowError):
    """Provider transport errors."""

    pass


class TransientTransportError(TransportError):
    """Network failure worth retrying (reset, refused, 5xx, silent connect)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class FatalTransportError(TransportError):
    """Provider failure that a retry cannot fix (bad URL, 4xx)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RequestCancelledError(TransportError):
    """The user cancelled the in-flight request."""

    def __init__(self, message: str = "Request cancelled"):
        super().__init__(message)


class ToolError(MeowError):
    """Tool errors."""

    pass


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool not found: {tool_name}")
        self.tool_name = tool_name


class ToolValidationError(ToolError):
    """Tool arguments failed validation."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Invalid arguments for '{tool_name}': {message}")
        self.tool_name = tool_name


class SandboxViolationError(ToolError):
    """A path resolved outside the sandbox root."""

    def __init__(self, path: str, root: str):
        super().__init__(f"Access denied: '{path}' is outside the sandbox root '{root}'")
        self.path = path
        self.root = root


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ToolLimitError(ToolExecutionError):
    """Tool hit its time or output-size ceiling and was aborted."""

    def __init__(self, tool_name: str, limit: str, message: str):
        super().__init__(tool_name, message)
        self.limit = limit
