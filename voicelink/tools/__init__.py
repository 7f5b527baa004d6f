"""Built-in tools exposed to the realtime model."""

from voicelink.core.tools import ToolRegistry
from voicelink.tools.clock import GET_TIME_DESCRIPTION, GetTimeParams, get_time


def register_default_tools(registry: ToolRegistry) -> ToolRegistry:
    """Register the built-in tools on registry."""
    registry.register("getTime", GET_TIME_DESCRIPTION, GetTimeParams, get_time)
    return registry


__all__ = ["GetTimeParams", "get_time", "register_default_tools"]
