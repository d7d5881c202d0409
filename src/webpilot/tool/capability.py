"""What a tool reaches outside the process.

Tools declare these in ``@tool(capabilities=[...])``; the decorator turns
them into MCP annotations (``openWorldHint``, ``readOnlyHint``).
"""

from enum import Enum
from typing import FrozenSet, Iterable, Set


class Capability(str, Enum):
    BROWSER = "browser"
    NETWORK = "network"
    FILESYSTEM = "filesystem"
    SESSIONS = "sessions"
    NONE = "none"

    @property
    def implies(self) -> FrozenSet["Capability"]:
        # Driving a page always means talking to remote hosts.
        if self is Capability.BROWSER:
            return frozenset({Capability.NETWORK})
        return frozenset()


def expand_capabilities(caps: Iterable[Capability]) -> Set[Capability]:
    expanded: Set[Capability] = set()
    pending = list(caps)
    while pending:
        cap = pending.pop()
        if cap not in expanded:
            expanded.add(cap)
            pending.extend(cap.implies)
    return expanded
