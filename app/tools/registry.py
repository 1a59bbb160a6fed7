"""
Tool registry.

Collects the functions the realtime engine may call during a voice session
and formats them for the engine's session config.
  - Tools have clear, distinct purposes
  - Descriptions written like docs for a new hire
  - Helpful error messages with actionable guidance (the agent reads them aloud)

Handlers are async and receive the session context as keyword arguments:
    handler(session_id=..., sessions=SessionManager, vehicles=VehicleCollector, **tool_args) -> str
"""

import logging
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ToolRisk(str, Enum):
    READ = "read"       # Read-only, no side effects
    WRITE = "write"     # Modifies the session application
    EXTERNAL = "external"  # Calls the reference lookup service


# Each tool: {name, description, parameters, handler, risk, category}
_tools: list[dict] = []


def tool(
    name: str,
    description: str,
    parameters: dict,
    risk: ToolRisk = ToolRisk.READ,
    category: str = "general",
):
    """
    Decorator to register a function as an engine-callable tool.

    Args:
        name:        Tool name (collect_*, validate_*, get_*)
        description: What it does, when to use it, what it returns
        parameters:  JSON Schema for the tool's parameters
        risk:        Risk classification
        category:    Grouping category (application, vehicle, lookup)
    """

    def decorator(func: Callable):
        params = dict(parameters)
        if "type" not in params:
            params["type"] = "object"
        params.setdefault("additionalProperties", False)

        if any(t["name"] == name for t in _tools):
            logger.debug("Tool %s already registered", name)
            return func

        _tools.append({
            "name": name,
            "description": description,
            "parameters": params,
            "handler": func,
            "risk": risk.value,
            "category": category,
        })
        logger.debug("Registered tool: %s [%s/%s]", name, category, risk.value)
        return func

    return decorator


def get_tools_for_realtime() -> list[dict]:
    """All tools in the realtime session.update format (flat function objects)."""
    return [
        {
            "type": "function",
            "name": t["name"],
            "description": t["description"],
            "parameters": t["parameters"],
        }
        for t in _tools
    ]


def get_tool(name: str) -> Optional[dict]:
    for t in _tools:
        if t["name"] == name:
            return t
    return None


def get_tool_handler(name: str) -> Optional[Callable]:
    """Get the handler function for a tool by name."""
    t = get_tool(name)
    return t["handler"] if t else None


def get_tool_risk(name: str) -> Optional[str]:
    """Risk level of a tool, None for unknown names."""
    t = get_tool(name)
    return t["risk"] if t else None


def get_tool_category(name: str) -> Optional[str]:
    t = get_tool(name)
    return t["category"] if t else None


def filter_arguments(name: str, arguments: dict) -> dict:
    """Keep only the arguments declared in the tool's schema."""
    t = get_tool(name)
    if t is None:
        return {}
    allowed = set((t["parameters"].get("properties") or {}).keys())
    return {k: v for k, v in arguments.items() if k in allowed}


def get_tool_names() -> list[str]:
    """Get names of all registered tools."""
    return [t["name"] for t in _tools]


def init_tools() -> None:
    """
    Import tool modules to trigger registration.
    Call this once on startup.
    """
    from . import insurance  # noqa: F401

    logger.info(
        "Tools ready: %d tools [%s]",
        len(_tools),
        ", ".join(get_tool_names()),
    )
