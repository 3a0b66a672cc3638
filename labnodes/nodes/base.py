"""Node driver interface.

Every vendor driver implements the same capability set so the orchestrator
can drive heterogeneous nodes uniformly:

    node = registry.new(kind)
    node.init(config, with_runtime(runtime))
    await node.pre_deploy(topology_name, ca_dir, ca_root_dir)
    await node.deploy()
    await node.post_deploy(nodes)
    ...
    await node.save_config()
    await node.delete()

Lifecycle methods of one node are awaited one after another; different
nodes may be driven concurrently.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable

from labnodes.errors import ContainerRuntimeError, InvalidConfigError
from labnodes.metrics import track_operation
from labnodes.runtime.base import ExecResult

if TYPE_CHECKING:
    from labnodes.runtime.base import ContainerRuntime
    from labnodes.schemas import MgmtNet, NodeConfig

logger = logging.getLogger(__name__)

# Key of the primary image in get_images()
IMAGE_KEY = "image"

NodeOption = Callable[["Node"], None]


def with_runtime(runtime: "ContainerRuntime") -> NodeOption:
    """Option injecting the container runtime during init()."""
    def _apply(node: "Node") -> None:
        node.with_runtime(runtime)
    return _apply


def with_mgmt_net(mgmt_net: "MgmtNet") -> NodeOption:
    """Option injecting the management network during init()."""
    def _apply(node: "Node") -> None:
        node.with_mgmt_net(mgmt_net)
    return _apply


class Node(ABC):
    """Abstract base class for node drivers.

    Drivers are constructed only through a ``KindRegistry`` factory and
    start empty; ``init()`` attaches the configuration.
    """

    kind: str = ""

    def __init__(self) -> None:
        self._config: NodeConfig | None = None
        self._runtime: ContainerRuntime | None = None
        self.container_id: str | None = None

    # --- Dependency injection ---

    def with_runtime(self, runtime: "ContainerRuntime") -> None:
        self._runtime = runtime

    def get_runtime(self) -> "ContainerRuntime | None":
        return self._runtime

    @property
    def runtime(self) -> "ContainerRuntime | None":
        return self._runtime

    def with_mgmt_net(self, mgmt_net: "MgmtNet") -> None:
        if self._config is not None:
            self._config.mgmt_net = mgmt_net

    # --- Configuration ---

    @property
    def config(self) -> "NodeConfig":
        if self._config is None:
            raise InvalidConfigError(f"{self.kind} node used before init()")
        return self._config

    def init(self, config: "NodeConfig", *options: NodeOption) -> None:
        """Attach and normalize the configuration.

        Subclasses extend validate() for kind specific checks and call this
        first, then fill kind specific defaults. Nothing is attached when
        validation fails.

        Raises:
            InvalidConfigError: a mandatory field is missing or invalid
        """
        self.validate(config)
        self._config = config
        if not config.kind:
            config.kind = self.kind
        for option in options:
            option(self)

    def validate(self, config: "NodeConfig") -> None:
        """Check config before it is attached. Must not modify it."""
        if not config.short_name:
            raise InvalidConfigError("node name is required")

    # --- Lifecycle ---

    @abstractmethod
    async def pre_deploy(self, topology_name: str, ca_dir: str, ca_root_dir: str) -> None:
        """Prepare identity material and on-disk artifacts."""
        ...

    async def deploy(self) -> None:
        """Create the node container through the runtime."""
        runtime = self._require_runtime()
        async with track_operation(self.kind, "deploy"):
            try:
                self.container_id = await runtime.create_container(self.config)
            except ContainerRuntimeError as e:
                raise ContainerRuntimeError(
                    f"deploy failed: {e.message}", self.config.short_name
                ) from e

    @abstractmethod
    async def post_deploy(self, nodes: dict[str, "Node"]) -> None:
        """Provision the running node. ``nodes`` holds all topology nodes."""
        ...

    @abstractmethod
    async def ready(self) -> None:
        """Return once the node control plane accepts configuration.

        Raises:
            ReadyTimeoutError: the node did not become ready in time
        """
        ...

    async def delete(self) -> None:
        """Remove the node container."""
        runtime = self._require_runtime()
        async with track_operation(self.kind, "delete"):
            try:
                await runtime.delete_container(self.config.long_name)
            except ContainerRuntimeError as e:
                raise ContainerRuntimeError(
                    f"delete failed: {e.message}", self.config.short_name
                ) from e

    @abstractmethod
    async def save_config(self) -> None:
        """Persist the running configuration inside the node."""
        ...

    def get_images(self) -> dict[str, str]:
        """Images needed by this node keyed by role, for pre-pulling."""
        return {IMAGE_KEY: self.config.image}

    # --- Helpers ---

    def _require_runtime(self) -> "ContainerRuntime":
        if self._runtime is None:
            raise ContainerRuntimeError(
                "no container runtime configured",
                self._config.short_name if self._config else None,
            )
        return self._runtime

    async def _exec(self, cmd: list[str]) -> ExecResult:
        """Exec in the node container, tagging runtime errors with the node name."""
        runtime = self._require_runtime()
        try:
            return await runtime.exec(self.config.long_name, cmd)
        except ContainerRuntimeError as e:
            raise ContainerRuntimeError(
                f"failed to execute {cmd[0] if cmd else 'command'}: {e.message}",
                self.config.short_name,
            ) from e

    def __repr__(self) -> str:
        name = self._config.short_name if self._config else "-"
        return f"<{type(self).__name__} {name}>"
