"""Exceptions raised by node drivers and their collaborators.

Every error carries the short name of the node it concerns so failures in
multi-node topologies stay attributable. Messages are prefixed with
``"<node>: "`` when a node is known.
"""

from __future__ import annotations


class NodeError(Exception):
    """Base exception for node lifecycle errors."""

    retriable = False

    def __init__(self, message: str, node: str | None = None):
        super().__init__(f"{node}: {message}" if node else message)
        self.message = message
        self.node = node


class InvalidConfigError(NodeError):
    """A mandatory field is missing or a selector is not recognized."""


class UnknownKindError(NodeError):
    """No driver factory is registered for a kind."""

    def __init__(self, kind: str, known: list[str]):
        super().__init__(
            f"unknown node kind '{kind}', should be any of {', '.join(known)}"
        )
        self.kind = kind
        self.known = known


class ArtifactGenerationError(NodeError):
    """Rendering or writing an on-disk artifact failed."""


class CertificateError(NodeError):
    """Node certificate material could not be retrieved or generated."""


class ContainerRuntimeError(NodeError):
    """The container runtime failed to create, exec in, or delete a container."""


class RemoteCommandError(NodeError):
    """A command inside the container wrote to its error stream."""

    def __init__(self, message: str, node: str | None = None, stdout: str = "", stderr: str = ""):
        super().__init__(message, node)
        self.stdout = stdout
        self.stderr = stderr


class ReadyTimeoutError(NodeError):
    """The node control plane did not come up before the deadline."""

    def __init__(self, message: str, node: str | None = None, state: str | None = None):
        super().__init__(message, node)
        self.state = state
