"""Plain Linux container node driver."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from labnodes.config import settings
from labnodes.errors import ArtifactGenerationError
from labnodes.metrics import track_operation
from labnodes.nodes.base import Node, NodeOption
from labnodes.utils import create_directory

if TYPE_CHECKING:
    from labnodes.schemas import NodeConfig

logger = logging.getLogger(__name__)


class LinuxNode(Node):
    """Driver for generic Linux containers.

    No certificates, no generated artifacts and no readiness gate: the
    container is usable as soon as the runtime reports it started.
    """

    kind = "linux"

    def init(self, config: "NodeConfig", *options: NodeOption) -> None:
        super().init(config, *options)
        if not self.config.image:
            self.config.image = "alpine:latest"

    async def pre_deploy(self, topology_name: str, ca_dir: str, ca_root_dir: str) -> None:
        cfg = self.config
        if not cfg.lab_dir:
            return
        async with track_operation(self.kind, "pre_deploy"):
            try:
                create_directory(cfg.lab_dir, settings.lab_dir_mode)
            except OSError as e:
                raise ArtifactGenerationError(
                    f"failed to create lab directory {cfg.lab_dir}: {e}", cfg.short_name
                ) from e

    async def post_deploy(self, nodes: dict[str, Node]) -> None:
        pass

    async def ready(self) -> None:
        pass

    async def save_config(self) -> None:
        logger.debug(f"Save config is not supported for linux node {self.config.short_name}")
