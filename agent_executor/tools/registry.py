"""
Tool Registry - single source of truth for invocable capabilities.

Each tool is described by a ToolDescriptor carrying its input schema, the
function that implements it and the error policy applied when that
function raises. The registry validates arguments before every call and
runs the tool inside a fault boundary.
"""

import inspect
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Optional, Union, get_type_hints

from pydantic import BaseModel, ConfigDict, ValidationError, create_model

from ..errors import (
    DuplicateToolError,
    ToolArgumentError,
    ToolExecutionError,
    UnknownToolError,
)

logger = logging.getLogger(__name__)

InputSchema = Union[type[BaseModel], Mapping[str, Any]]


class ErrorPolicy(Enum):
    """What to do when a tool's implementation raises."""

    PROPAGATE = "propagate"
    FIXED_MESSAGE = "fixed_message"
    CUSTOM_HANDLER = "custom_handler"


def schema_from_mapping(name: str, fields: Mapping[str, Any]) -> type[BaseModel]:
    """
    Build a pydantic model from a ``{field: type}`` mapping.

    A value may also be a ``(type, default)`` tuple for optional fields.
    Unexpected fields are rejected.
    """
    definitions: dict[str, Any] = {}
    for field_name, field_type in fields.items():
        if isinstance(field_type, tuple):
            definitions[field_name] = field_type
        else:
            definitions[field_name] = (field_type, ...)
    return create_model(
        f"{name.title().replace('_', '')}Input",
        __config__=ConfigDict(extra="forbid"),
        **definitions,
    )


@dataclass(frozen=True)
class ToolDescriptor:
    """A registered capability - defined once, read-only during runs."""

    name: str
    description: str
    input_schema: InputSchema
    invoke: Callable[[dict], Any]
    error_policy: ErrorPolicy = ErrorPolicy.PROPAGATE
    fixed_message: Optional[str] = None
    error_handler: Optional[Callable[[Exception], str]] = None
    return_direct: bool = False
    formatter: Optional[Callable[[Any], str]] = None
    # Pydantic model built from input_schema at construction.
    schema_model: type[BaseModel] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if not self.name:
            raise ValueError("Tool name must not be empty")
        if self.error_policy is ErrorPolicy.FIXED_MESSAGE and self.fixed_message is None:
            raise ValueError(f"Tool '{self.name}': fixed_message policy needs a message")
        if self.error_policy is ErrorPolicy.CUSTOM_HANDLER and self.error_handler is None:
            raise ValueError(f"Tool '{self.name}': custom_handler policy needs a handler")
        if isinstance(self.input_schema, type) and issubclass(self.input_schema, BaseModel):
            model = self.input_schema
        else:
            model = schema_from_mapping(self.name, self.input_schema)
        object.__setattr__(self, "schema_model", model)

    def format_result(self, raw: Any) -> str:
        if self.formatter is not None:
            return str(self.formatter(raw))
        return raw if isinstance(raw, str) else str(raw)


@dataclass
class ToolOutcome:
    """Result of a registry invocation."""

    result_text: str
    recovered: bool = False
    return_direct: bool = False
    error: Optional[str] = None


class ToolRegistry:
    """
    Registry of tools available to a run.

    Populated before runs start. Registration publishes a fresh mapping
    under a lock so concurrent readers always see a consistent snapshot.
    """

    def __init__(self, tools: Optional[Iterable[ToolDescriptor]] = None):
        self._lock = threading.Lock()
        self._tools: dict[str, ToolDescriptor] = {}
        for descriptor in tools or ():
            self.register(descriptor)

    def register(self, descriptor: ToolDescriptor) -> ToolDescriptor:
        """Register a tool. Raises DuplicateToolError on a repeated name."""
        with self._lock:
            if descriptor.name in self._tools:
                raise DuplicateToolError(descriptor.name)
            updated = dict(self._tools)
            updated[descriptor.name] = descriptor
            self._tools = updated
        logger.debug("Registered tool: %s (%s)", descriptor.name, descriptor.error_policy.value)
        return descriptor

    def get(self, name: str) -> Optional[ToolDescriptor]:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def all_tools(self) -> dict[str, ToolDescriptor]:
        """Get a copy of all registered tools."""
        return dict(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def get_tools_summary(self) -> str:
        """Get formatted summary of all tools for prompts."""
        return "\n".join(
            f"- {name}: {tool.description}" for name, tool in self._tools.items()
        )

    def validate_arguments(self, name: str, arguments: Mapping[str, Any]) -> dict:
        """
        Validate arguments against a tool's schema, returning coerced values.

        The result maps each top-level field to its validated value, so
        model-typed fields arrive as model instances rather than dicts.
        """
        descriptor = self._require(name)
        if not isinstance(arguments, Mapping):
            raise ToolArgumentError(name, "arguments must be an object")
        try:
            validated = descriptor.schema_model.model_validate(dict(arguments))
        except ValidationError as e:
            raise ToolArgumentError(name, _summarize_validation_error(e)) from e
        return dict(validated)

    def invoke(self, name: str, arguments: Mapping[str, Any]) -> ToolOutcome:
        """
        Invoke a tool by name.

        Raises:
            UnknownToolError: No tool registered under ``name``.
            ToolArgumentError: Arguments violate the input schema; the tool
                is never called.
            ToolExecutionError: The tool raised and its policy is propagate,
                or its formatter or error handler raised.
        """
        descriptor = self._require(name)
        validated = self.validate_arguments(name, arguments)

        try:
            raw = descriptor.invoke(validated)
        except Exception as e:
            return self._apply_error_policy(descriptor, e)

        try:
            text = descriptor.format_result(raw)
        except Exception as e:
            logger.error("Formatter for tool '%s' failed: %s", descriptor.name, e)
            raise ToolExecutionError(descriptor.name, e) from e

        return ToolOutcome(result_text=text, return_direct=descriptor.return_direct)

    def _require(self, name: str) -> ToolDescriptor:
        descriptor = self._tools.get(name)
        if descriptor is None:
            raise UnknownToolError(name)
        return descriptor

    @staticmethod
    def _apply_error_policy(descriptor: ToolDescriptor, error: Exception) -> ToolOutcome:
        policy = descriptor.error_policy
        if policy is ErrorPolicy.PROPAGATE:
            logger.error("Tool '%s' failed (propagating): %s", descriptor.name, error)
            raise ToolExecutionError(descriptor.name, error) from error

        logger.warning("Tool '%s' failed, recovered via %s: %s", descriptor.name, policy.value, error)
        if policy is ErrorPolicy.FIXED_MESSAGE:
            text = descriptor.fixed_message or ""
        else:
            try:
                text = str(descriptor.error_handler(error))  # type: ignore[misc]
            except Exception as handler_error:
                logger.error(
                    "Error handler for tool '%s' failed: %s", descriptor.name, handler_error
                )
                raise ToolExecutionError(descriptor.name, handler_error) from handler_error
        return ToolOutcome(result_text=text, recovered=True, error=str(error))


def _summarize_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ())) or "arguments"
        parts.append(f"{location}: {item.get('msg', 'invalid value')}")
    return "; ".join(parts)


def tool(
    name: Optional[str] = None,
    *,
    description: Optional[str] = None,
    error_policy: ErrorPolicy = ErrorPolicy.PROPAGATE,
    fixed_message: Optional[str] = None,
    error_handler: Optional[Callable[[Exception], str]] = None,
    return_direct: bool = False,
    formatter: Optional[Callable[[Any], str]] = None,
    registry: Optional[ToolRegistry] = None,
) -> Callable[[Callable[..., Any]], ToolDescriptor]:
    """
    Turn a plain function into a ToolDescriptor.

    The input schema is derived from the function signature and the
    description from its docstring. Passing ``registry`` also registers it.

        @tool(error_policy=ErrorPolicy.FIXED_MESSAGE, fixed_message="Try again.")
        def multiply(a: int, b: int) -> int:
            \"\"\"Multiply two numbers.\"\"\"
            return a * b
    """

    def decorator(func: Callable[..., Any]) -> ToolDescriptor:
        tool_name = name or func.__name__
        hints = get_type_hints(func)
        fields: dict[str, Any] = {}
        for param in inspect.signature(func).parameters.values():
            if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
                raise ValueError(f"Tool '{tool_name}' cannot take *args or **kwargs")
            annotation = hints.get(param.name, Any)
            if param.default is param.empty:
                fields[param.name] = annotation
            else:
                fields[param.name] = (annotation, param.default)

        descriptor = ToolDescriptor(
            name=tool_name,
            description=description or inspect.getdoc(func) or tool_name,
            input_schema=schema_from_mapping(tool_name, fields),
            invoke=lambda args: func(**args),
            error_policy=error_policy,
            fixed_message=fixed_message,
            error_handler=error_handler,
            return_direct=return_direct,
            formatter=formatter,
        )
        if registry is not None:
            registry.register(descriptor)
        return descriptor

    return decorator
