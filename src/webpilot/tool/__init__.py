from .capability import Capability
from .decorator import ToolMetadata, ToolParam, tool
from .registry import ToolRegistry

__all__ = [
    "Capability",
    "ToolMetadata",
    "ToolParam",
    "ToolRegistry",
    "tool",
]
