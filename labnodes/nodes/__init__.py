"""Node drivers and built-in kinds."""

from __future__ import annotations

from typing import TYPE_CHECKING

from labnodes.nodes.base import IMAGE_KEY, Node, NodeOption, with_mgmt_net, with_runtime
from labnodes.nodes.linux import LinuxNode
from labnodes.nodes.srl import SRLinuxNode, with_certificate_authority

if TYPE_CHECKING:
    from labnodes.registry import KindRegistry

# kind name -> driver class; aliases map to the same class
BUILTIN_KINDS: dict[str, type[Node]] = {
    "nokia_srlinux": SRLinuxNode,
    "srl": SRLinuxNode,
    "linux": LinuxNode,
}


def register_builtin_kinds(registry: "KindRegistry") -> None:
    """Register every built-in driver with registry."""
    for kind, driver in BUILTIN_KINDS.items():
        registry.register(kind, driver)


__all__ = [
    "BUILTIN_KINDS",
    "IMAGE_KEY",
    "LinuxNode",
    "Node",
    "NodeOption",
    "SRLinuxNode",
    "register_builtin_kinds",
    "with_certificate_authority",
    "with_mgmt_net",
    "with_runtime",
]
