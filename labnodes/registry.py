"""Kind registry mapping node kinds to driver factories.

The orchestrator resolves a kind name to a fresh driver instance through a
``KindRegistry`` and never constructs drivers directly. A registry is built
once at process start, frozen, and then only read.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Generic, TypeVar

from labnodes.errors import UnknownKindError

if TYPE_CHECKING:
    from labnodes.nodes.base import Node

logger = logging.getLogger(__name__)

T = TypeVar("T")

NodeFactory = Callable[[], "Node"]


class LazySingleton(Generic[T]):
    """Create a singleton lazily from a factory function."""

    def __init__(self, factory: Callable[[], T]):
        self._factory = factory
        self._instance: T | None = None

    def get(self) -> T:
        if self._instance is None:
            self._instance = self._factory()
        return self._instance

    def reset(self) -> None:
        self._instance = None


class KindRegistry:
    """Dispatch table from kind name to driver factory.

    Registering the same kind twice raises ``ValueError``: a duplicate is a
    programming error, not a runtime condition. After ``freeze()`` the
    registry rejects further registrations.
    """

    def __init__(self) -> None:
        self._factories: dict[str, NodeFactory] = {}
        self._frozen = False

    def register(self, kind: str, factory: NodeFactory) -> None:
        if self._frozen:
            raise RuntimeError(f"cannot register kind '{kind}': registry is frozen")
        if kind in self._factories:
            raise ValueError(f"node kind '{kind}' is already registered")
        self._factories[kind] = factory
        logger.debug(f"Registered node kind {kind}")

    def new(self, kind: str) -> "Node":
        """Return a fresh driver instance for kind."""
        factory = self._factories.get(kind)
        if factory is None:
            raise UnknownKindError(kind, self.kinds())
        return factory()

    def kinds(self) -> list[str]:
        return sorted(self._factories)

    def freeze(self) -> "KindRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __contains__(self, kind: object) -> bool:
        return kind in self._factories

    def __len__(self) -> int:
        return len(self._factories)


def build_default_registry() -> KindRegistry:
    """Build a frozen registry holding all built-in kinds."""
    from labnodes.nodes import register_builtin_kinds

    registry = KindRegistry()
    register_builtin_kinds(registry)
    return registry.freeze()


_registry = LazySingleton(build_default_registry)


def get_registry() -> KindRegistry:
    """Return the process-wide default registry."""
    return _registry.get()


def reset_registry() -> None:
    """Reset the default registry (mainly for testing)."""
    _registry.reset()
