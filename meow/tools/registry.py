"""Tool registry and base tool class."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, model_validator

from meow.exceptions import ToolNotFoundError, ToolValidationError
from meow.logging import get_logger

if TYPE_CHECKING:
    from meow.tools.sandbox import Sandbox

log = get_logger(__name__)


class ToolOutcome(BaseModel):
    """Result from tool execution."""

    success: bool = True
    content: str = ""
    exit_code: int | None = None
    overflowed: bool = False
    spill_path: str | None = None
    error: str | None = None

    @model_validator(mode="after")
    def _normalize_failure_error(self) -> "ToolOutcome":
        """Ensure failed results always provide an error message."""
        if not self.success and not (self.error or "").strip():
            fallback = (self.content or "").strip()
            self.error = fallback or "Tool execution failed"
        return self


class Tool(ABC):
    """Base class for all tools.

    `parameters` lists argument names with a short description; names in
    `required` must be present and names in `path_args` must resolve inside
    the sandbox root.
    """

    name: str = ""
    description: str = ""
    parameters: dict[str, str] = {}
    required: tuple[str, ...] = ()
    path_args: tuple[str, ...] = ()
    timeout_seconds: float | None = None

    @abstractmethod
    async def execute(self, args: dict[str, Any], sandbox: "Sandbox", max_bytes: int) -> ToolOutcome:
        """Execute the tool.

        Args:
            args: Validated tool arguments
            sandbox: Sandbox used to resolve paths and hold the working directory
            max_bytes: Output size ceiling

        Returns:
            ToolOutcome with success status and content
        """
        pass

    def validate(self, args: dict[str, Any], sandbox: "Sandbox") -> None:
        """Validate tool arguments.

        Raises:
            ToolValidationError: missing or mistyped arguments
            SandboxViolationError: a path argument escapes the sandbox root
        """
        for field in self.required:
            if field not in args or args[field] is None:
                raise ToolValidationError(self.name, f"Missing required argument: {field}")
        for field in self.path_args:
            if field not in args:
                continue
            value = args[field]
            if not isinstance(value, str):
                raise ToolValidationError(self.name, f"Argument '{field}' must be a string path")
            sandbox.resolve(value)

    def describe(self) -> str:
        """One-line usage summary for prompts and /help output."""
        if not self.parameters:
            arg_text = "{}"
        else:
            arg_text = ", ".join(
                f'"{name}": {hint}' for name, hint in self.parameters.items()
            )
            arg_text = "{" + arg_text + "}"
        return f"{self.name} {arg_text} - {self.description}"


class ToolRegistry:
    """Registry for managing available tools."""

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Args:
            tool: Tool instance to register
        """
        if not tool.name:
            raise ValueError("Tool must have a name")

        log.debug("Registering tool", tool=tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def has_tool(self, name: str) -> bool:
        """Return whether a tool name is currently registered."""
        return name in self._tools

    def get(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        if name not in self._tools:
            raise ToolNotFoundError(name)
        return self._tools[name]

    def list_tools(self) -> list[str]:
        return list(self._tools.keys())

    def describe_tools(self) -> list[str]:
        return [tool.describe() for tool in self._tools.values()]
