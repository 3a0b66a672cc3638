"""Container runtimes for node drivers."""

from labnodes.runtime.base import ContainerRuntime, ExecResult
from labnodes.runtime.docker import DockerRuntime

__all__ = [
    "ContainerRuntime",
    "DockerRuntime",
    "ExecResult",
]
