"""Concrete implementations for tool handlers."""

import inspect
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List

from pydantic import create_model

from .models import ToolCall, ToolResult

logger = logging.getLogger(__name__)


class Tool(ABC):
    """Interface for executing the tools a model may call."""

    @abstractmethod
    def get_tools(self) -> List[Dict[str, Any]]:
        """Returns the tool definitions sent with every request.

        Each definition is ``{"name", "description", "input_schema"}``.
        """
        return []

    @abstractmethod
    def execute_tool_call(self, tool_call: ToolCall) -> ToolResult:
        """Executes one tool call and returns its textual result.

        Failures are reported as a result with ``is_error=True`` so the model
        can see and react to them.
        """
        pass


class NoTool(Tool):
    """Default handler that provides no tools and does nothing."""

    def get_tools(self) -> List[Dict[str, Any]]:
        return []

    def execute_tool_call(self, tool_call: ToolCall) -> ToolResult:
        return ToolResult(
            tool_call_id=tool_call.id,
            content=f"Cannot run tool '{tool_call.name}': NoTool handler is active.",
            is_error=True,
        )


class PythonTool(Tool):
    """Exposes plain Python callables as tools.

    The input schema of each tool is generated from the function signature
    and its description from the docstring. Return values that are not
    strings are encoded as JSON, or with ``str()`` when not serializable.
    """

    def __init__(self):
        self._registry: Dict[str, Callable[..., Any]] = {}

    def register_function(self, func: Callable[..., Any]) -> Callable[..., Any]:
        """Registers ``func`` under its own name; usable as a decorator."""
        if not callable(func):
            raise ValueError(f"Cannot register {func!r}: it is not callable")
        self._registry[func.__name__] = func
        return func

    def get_tools(self) -> List[Dict[str, Any]]:
        return [self._generate_schema(func) for func in self._registry.values()]

    def _generate_schema(self, func: Callable[..., Any]) -> Dict[str, Any]:
        fields = {}
        for name, param in inspect.signature(func).parameters.items():
            if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
                continue
            annotation = Any if param.annotation is param.empty else param.annotation
            default = ... if param.default is param.empty else param.default
            fields[name] = (annotation, default)
        schema = create_model(f"{func.__name__}_input", **fields).model_json_schema()
        input_schema = {
            "type": "object",
            "properties": schema.get("properties", {}),
            "required": schema.get("required", []),
        }
        return {
            "name": func.__name__,
            "description": inspect.getdoc(func) or "",
            "input_schema": input_schema,
        }

    def execute_tool_call(self, tool_call: ToolCall) -> ToolResult:
        func = self._registry.get(tool_call.name)
        if func is None:
            return ToolResult(
                tool_call_id=tool_call.id,
                content=f"Tool '{tool_call.name}' not found.",
                is_error=True,
            )
        try:
            result = func(**tool_call.input)
        except TypeError as e:
            return ToolResult(
                tool_call_id=tool_call.id,
                content=f"Invalid arguments for tool '{tool_call.name}': {e}",
                is_error=True,
            )
        except Exception as e:
            logger.exception("Tool %s raised", tool_call.name)
            return ToolResult(
                tool_call_id=tool_call.id,
                content=f"Error executing tool '{tool_call.name}': {e}",
                is_error=True,
            )
        return ToolResult(tool_call_id=tool_call.id, content=self._serialize(result))

    @staticmethod
    def _serialize(result: Any) -> str:
        if isinstance(result, str):
            return result
        try:
            return json.dumps(result)
        except (TypeError, ValueError):
            return str(result)
