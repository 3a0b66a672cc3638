"""labnodes - node lifecycle drivers for containerized network labs.

An orchestrator resolves a node kind through a ``KindRegistry``, then
drives the returned ``Node`` through init, pre-deploy, deploy and
post-deploy, and later save-config and delete.
"""

from labnodes.errors import (
    ArtifactGenerationError,
    CertificateError,
    ContainerRuntimeError,
    InvalidConfigError,
    NodeError,
    ReadyTimeoutError,
    RemoteCommandError,
    UnknownKindError,
)
from labnodes.nodes import Node, with_mgmt_net, with_runtime
from labnodes.registry import KindRegistry, build_default_registry, get_registry
from labnodes.schemas import MgmtNet, NodeConfig, NodeExtras

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "MgmtNet",
    "NodeConfig",
    "NodeExtras",
    # Drivers and registry
    "KindRegistry",
    "Node",
    "build_default_registry",
    "get_registry",
    "with_mgmt_net",
    "with_runtime",
    # Errors
    "ArtifactGenerationError",
    "CertificateError",
    "ContainerRuntimeError",
    "InvalidConfigError",
    "NodeError",
    "ReadyTimeoutError",
    "RemoteCommandError",
    "UnknownKindError",
]
