"""Container runtime interface consumed by node drivers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from labnodes.schemas import NodeConfig


@dataclass
class ExecResult:
    """Output of a command executed inside a container."""
    stdout: bytes = b""
    stderr: bytes = b""
    exit_code: int = 0

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")


class ContainerRuntime(ABC):
    """Abstract base class for container runtimes.

    Implementations must serialize operations against the same container
    while letting operations on different containers run concurrently.
    Failures are raised as ``ContainerRuntimeError``.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Runtime name (e.g., 'docker')."""
        ...

    @abstractmethod
    async def create_container(self, config: "NodeConfig") -> str:
        """Create and start a container for a node.

        The runtime snapshots ``binds``, ``env`` and ``sysctls`` from the
        config at this point.

        Returns:
            The container ID
        """
        ...

    @abstractmethod
    async def exec(self, container: str, cmd: list[str]) -> ExecResult:
        """Run a command inside a running container.

        A non-zero exit status is reported through ``ExecResult`` and is
        not an error; only failing to run the command at all raises.
        """
        ...

    @abstractmethod
    async def delete_container(self, container: str) -> None:
        """Remove a container. Removing a missing container is not an error."""
        ...
