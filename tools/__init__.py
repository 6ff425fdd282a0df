"""
@tool decorator — marks a coroutine as a model-callable tool and declares
its argument schema.

Usage:
    from tools import collect_tools, tool

    def build_gmail_tools(client, cache):
        @tool(
            properties={"query": {"type": "string", "description": "Gmail search query"}},
            required=["query"],
        )
        async def gmail_search_emails(query: str, limit: int = 10):
            \"\"\"Search emails in Gmail using Gmail search syntax.\"\"\"
            ...

        return collect_tools("gmail", gmail_search_emails)

The tool name is the function name; the description is the docstring.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    parameters: Dict[str, Any]
    handler: Callable[..., Awaitable[Any]]
    connector_type: str = ""

    def schema(self) -> Dict[str, Any]:
        """Provider-neutral schema handed to the LLM adapter."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


def tool(
    *,
    properties: Optional[Dict[str, Dict[str, Any]]] = None,
    required: Sequence[str] = (),
) -> Callable:
    """
    Decorator that tags a coroutine function as a tool.

    Parameters
    ----------
    properties : JSON-schema properties of the argument object.
    required   : names of the required arguments.
    """

    def decorator(func: Callable) -> Callable:
        func.is_tool = True  # type: ignore[attr-defined]
        func.tool_parameters = {  # type: ignore[attr-defined]
            "type": "object",
            "properties": dict(properties or {}),
            "required": list(required),
        }
        return func

    return decorator


def collect_tools(connector_type: str, *funcs: Callable) -> List[ToolDefinition]:
    """Turn ``@tool``-decorated functions into ``ToolDefinition`` objects."""
    definitions = []
    for func in funcs:
        if not getattr(func, "is_tool", False):
            raise RuntimeError(f"'{func.__name__}' is missing the @tool decorator")
        definitions.append(
            ToolDefinition(
                name=func.__name__,
                description=inspect.cleandoc(func.__doc__ or "").split("\n\n")[0],
                parameters=func.tool_parameters,
                handler=func,
                connector_type=connector_type,
            )
        )
    return definitions
