"""Docker runtime built on the Docker SDK.

All SDK calls are blocking, so they run in ``asyncio.to_thread``. The SDK
lets transport failures (``requests`` connection errors and read timeouts)
through unwrapped; both those and SDK errors surface as
``ContainerRuntimeError``.

Calls against the same container are serialized with a per-container lock;
different containers proceed independently.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
from typing import Any

import docker
from docker.errors import DockerException, ImageNotFound, NotFound
from requests.exceptions import RequestException

from labnodes.config import settings
from labnodes.errors import ContainerRuntimeError
from labnodes.runtime.base import ContainerRuntime, ExecResult
from labnodes.schemas import NodeConfig


logger = logging.getLogger(__name__)

# Labels applied to every container created by this runtime
LABEL_NODE_NAME = "labnodes.node_name"
LABEL_NODE_KIND = "labnodes.node_kind"
LABEL_NODE_TYPE = "labnodes.node_type"
LABEL_LAB_DIR = "labnodes.lab_dir"


def parse_bind(bind: str) -> tuple[str, str, str]:
    """Split a ``host:container[:mode]`` bind into its parts.

    Mode defaults to ``rw``.
    """
    parts = bind.split(":")
    if len(parts) == 2:
        return parts[0], parts[1], "rw"
    if len(parts) == 3 and parts[2]:
        return parts[0], parts[1], parts[2]
    raise ValueError(f"invalid bind '{bind}', expected host:container[:mode]")


class DockerRuntime(ContainerRuntime):
    """Container runtime backed by the local Docker daemon."""

    def __init__(self, client: docker.DockerClient | None = None):
        self._docker = client
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def name(self) -> str:
        return "docker"

    @property
    def docker(self) -> docker.DockerClient:
        """Lazy-initialize Docker client with extended timeout for slow operations."""
        if self._docker is None:
            self._docker = docker.DockerClient(
                base_url=settings.docker_socket,
                timeout=settings.docker_client_timeout,
            )
        return self._docker

    def _lock(self, container: str) -> asyncio.Lock:
        lock = self._locks.get(container)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[container] = lock
        return lock

    def _container_config(self, config: NodeConfig) -> dict[str, Any]:
        """Build keyword arguments for ``containers.create()``."""
        labels = {
            LABEL_NODE_NAME: config.short_name,
            LABEL_NODE_KIND: config.kind,
            LABEL_NODE_TYPE: config.node_type,
            LABEL_LAB_DIR: config.lab_dir,
        }
        labels.update(config.labels)

        create: dict[str, Any] = {
            "image": config.image,
            "name": config.long_name,
            "hostname": config.short_name,
            "environment": dict(config.env),
            "labels": labels,
            "detach": True,
            "tty": True,
            "stdin_open": True,
            "privileged": True,
            "restart_policy": {"Name": "no"},
        }

        if config.binds:
            volumes: dict[str, dict[str, str]] = {}
            for bind in config.binds:
                host_path, container_path, mode = parse_bind(bind)
                volumes[host_path] = {"bind": container_path, "mode": mode}
            create["volumes"] = volumes

        if config.sysctls:
            create["sysctls"] = dict(config.sysctls)

        if config.user:
            create["user"] = config.user

        if config.entrypoint:
            create["entrypoint"] = shlex.split(config.entrypoint)

        if config.cmd:
            create["command"] = shlex.split(config.cmd)

        if config.mgmt_net is not None and config.mgmt_net.network:
            create["network"] = config.mgmt_net.network

        return create

    async def create_container(self, config: NodeConfig) -> str:
        create = self._container_config(config)
        async with self._lock(config.long_name):
            logger.info(f"Creating container {config.long_name} with image {config.image}")
            try:
                container = await asyncio.to_thread(
                    lambda: self.docker.containers.create(**create)
                )
            except ImageNotFound as e:
                raise ContainerRuntimeError(
                    f"image {config.image} not found", config.short_name
                ) from e
            except (DockerException, RequestException) as e:
                raise ContainerRuntimeError(
                    f"failed to create container {config.long_name}: {e}", config.short_name
                ) from e

            try:
                await asyncio.to_thread(container.start)
            except (DockerException, RequestException) as e:
                # Do not leave a created-but-dead container behind
                try:
                    await asyncio.to_thread(container.remove, force=True, v=True)
                except (DockerException, RequestException) as cleanup_err:
                    logger.warning(
                        f"Failed to clean up container {config.long_name}: {cleanup_err}"
                    )
                raise ContainerRuntimeError(
                    f"failed to start container {config.long_name}: {e}", config.short_name
                ) from e

            logger.debug(f"Container {config.long_name} started ({container.short_id})")
            return container.id

    async def exec(self, container: str, cmd: list[str]) -> ExecResult:
        async with self._lock(container):
            try:
                target = await asyncio.to_thread(self.docker.containers.get, container)
                result = await asyncio.to_thread(target.exec_run, cmd, demux=True)
            except (DockerException, RequestException) as e:
                raise ContainerRuntimeError(f"exec in {container} failed: {e}") from e

        stdout, stderr = result.output if result.output else (None, None)
        return ExecResult(
            stdout=stdout or b"",
            stderr=stderr or b"",
            exit_code=result.exit_code or 0,
        )

    async def delete_container(self, container: str) -> None:
        async with self._lock(container):
            try:
                target = await asyncio.to_thread(self.docker.containers.get, container)
                await asyncio.to_thread(target.remove, force=True, v=True)
                logger.info(f"Removed container {container}")
            except NotFound:
                logger.debug(f"Container {container} already removed")
            except (DockerException, RequestException) as e:
                raise ContainerRuntimeError(f"failed to remove {container}: {e}") from e
            # the container is gone, its lock is no longer needed
            self._locks.pop(container, None)
