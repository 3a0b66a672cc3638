"""Node configuration models.

``NodeConfig`` is the per-node record that flows through every lifecycle
stage. The orchestrator builds it from the topology definition, the driver
normalizes it in ``init()`` and fills the TLS fields during ``pre_deploy()``.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, model_validator


class NodeExtras(BaseModel):
    """Vendor specific provisioning inputs."""
    srl_agents: list[str] = Field(default_factory=list)  # agent spec YAML paths


class MgmtNet(BaseModel):
    """Management network the node is attached to."""
    network: str = "clab"
    bridge: str = ""
    ipv4_subnet: str = ""
    ipv4_gw: str = ""
    ipv6_subnet: str = ""
    ipv6_gw: str = ""
    mtu: int = 1500


class NodeConfig(BaseModel):
    """Configuration of a single lab node."""

    # Identity
    short_name: str
    long_name: str = ""  # container name, defaults to short_name
    fqdn: str = ""
    lab_dir: str = ""
    index: int = 0

    # Kind selectors
    kind: str = ""
    node_type: str = ""
    image: str = ""

    # Runtime shaping, snapshotted by the runtime at container create time
    env: dict[str, str] = Field(default_factory=dict)
    sysctls: dict[str, str] = Field(default_factory=dict)
    binds: list[str] = Field(default_factory=list)  # host:container[:mode]
    user: str = ""
    cmd: str = ""
    entrypoint: str = ""
    labels: dict[str, str] = Field(default_factory=dict)

    # Provisioning inputs
    startup_config: str = ""  # path to a startup-config template
    license: str = ""  # path to a license file
    extras: NodeExtras | None = None

    # Management addressing
    mgmt_ipv4_address: str = ""
    mgmt_ipv4_prefix_length: int = 0
    mgmt_ipv6_address: str = ""
    mgmt_ipv6_prefix_length: int = 0
    mgmt_net: MgmtNet | None = None

    # Populated during pre_deploy
    tls_cert: str = ""
    tls_key: str = ""
    tls_anchor: str = ""

    @model_validator(mode="after")
    def _default_long_name(self) -> "NodeConfig":
        if not self.long_name:
            self.long_name = self.short_name
        return self

    @property
    def lab_path(self) -> Path:
        return Path(self.lab_dir)

    def template_context(self) -> dict:
        """Fields exposed to startup-config and bootstrap templates."""
        return self.model_dump(exclude={"extras", "mgmt_net"})
