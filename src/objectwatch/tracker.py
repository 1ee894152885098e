"""
Path and dependency tracking keyed by object identity.

The tracker answers two questions for the interception layer:
- has this property been written through the observer before? (new vs changed)
- under which path was this object first reached?

Identities are id() values of unwrapped targets. The interceptor's proxy cache
keeps every tracked target alive, so an identity cannot be recycled while its
entries exist; forget() and clear() are the explicit invalidation steps.
"""

import logging
from typing import Any, Dict, FrozenSet, Set

logger = logging.getLogger(__name__)


class ChangeTracker:
    """Per-identity record of observed properties and first-reach paths.

    Thread safety: Not thread-safe (owned by a single synchronous call stack).
    """

    def __init__(self):
        self._dependencies: Dict[int, Set[Any]] = {}
        self._paths: Dict[int, str] = {}

    def assign_path(self, identity: int, path: str) -> None:
        """Assign the canonical path for an identity. First assignment wins."""
        self._paths.setdefault(identity, path)

    def record_change(self, identity: int, prop: Any, path: str) -> None:
        """Register prop as observed on identity."""
        self._dependencies.setdefault(identity, set()).add(prop)
        self._paths.setdefault(identity, path)

    def has_dependency(self, identity: int, prop: Any) -> bool:
        deps = self._dependencies.get(identity)
        return deps is not None and prop in deps

    def get_path(self, identity: int) -> str:
        """Path under which identity was first reached, "" if unknown."""
        return self._paths.get(identity, '')

    def remove_dependency(self, identity: int, prop: Any) -> None:
        """Drop prop from identity's set; drops the identity entry when it empties."""
        deps = self._dependencies.get(identity)
        if deps is None:
            return
        deps.discard(prop)
        if not deps:
            del self._dependencies[identity]

    def dependencies(self, identity: int) -> FrozenSet[Any]:
        return frozenset(self._dependencies.get(identity, ()))

    def forget(self, identity: int) -> None:
        """Invalidate every entry for identity (owner released the object)."""
        self._dependencies.pop(identity, None)
        self._paths.pop(identity, None)

    def clear(self) -> None:
        self._dependencies.clear()
        self._paths.clear()
        logger.debug("Cleared change tracker")

    def __len__(self) -> int:
        return len(self._dependencies)
