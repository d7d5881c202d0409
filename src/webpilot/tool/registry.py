"""The tool catalog as the gateway sees it: filled once at startup, then read-only."""

import logging
from types import ModuleType
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Set

from .decorator import ToolMetadata

logger = logging.getLogger(__name__)


class ToolRegistry:
    def __init__(self, tools: Iterable[Callable] = ()):
        self._tools: Dict[str, ToolMetadata] = {}
        for func in tools:
            self.register(func)

    def register(self, func: Callable) -> None:
        metadata = getattr(func, "metadata", None)
        if not isinstance(metadata, ToolMetadata):
            raise ValueError(f"{getattr(func, '__name__', func)!r} is not an @tool function")
        if metadata.name in self._tools:
            raise ValueError(f"Tool already registered: {metadata.name}")
        self._tools[metadata.name] = metadata

    def register_module(self, module: ModuleType) -> None:
        """Register the public ``@tool`` functions of ``module`` in definition order."""
        found = [
            value
            for attr, value in vars(module).items()
            if not attr.startswith("_") and isinstance(getattr(value, "metadata", None), ToolMetadata)
        ]
        for func in found:
            self.register(func)
        logger.info("Loaded %d tools from %s", len(found), module.__name__)

    def get(self, name: str) -> Optional[ToolMetadata]:
        return self._tools.get(name)

    def get_schema(self, name: str) -> Optional[Dict[str, Any]]:
        metadata = self._tools.get(name)
        return None if metadata is None else metadata.to_json_schema()

    def get_schemas(self, names: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
        """``tools/list`` entries, for all tools or the named ones (unknown names skipped)."""
        selected = self._tools.values() if names is None else (
            self._tools[name] for name in names if name in self._tools
        )
        return [metadata.to_json_schema() for metadata in selected]

    @property
    def tool_names(self) -> List[str]:
        return list(self._tools)

    @property
    def navigation_tools(self) -> Set[str]:
        """Tools whose ``url`` argument may choose an ``auto_<host>`` session."""
        return {name for name, metadata in self._tools.items() if metadata.navigates}

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolMetadata]:
        return iter(self._tools.values())
