"""Nokia SR Linux node driver.

SR Linux runs as a container whose boot is driven by two files prepared in
the lab directory:

- ``topology.yml``: chassis/card description for the emulated hardware
  type, carrying a random base MAC (mounted read-only at /tmp/topology.yml)
- ``config/``: the persisted configuration directory (mounted read-write at
  /etc/opt/srlinux/), holding ``config.json`` when a startup-config is given
  and ``appmgr/`` with custom agent specs

When the user supplies no configuration, post-deploy waits for the
management server and the initial commit, then applies a default config
enabling a TLS server profile, gNMI, JSON-RPC and LLDP.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
from pathlib import Path
from typing import TYPE_CHECKING

from labnodes.artifacts import (
    TemplateRenderer,
    generate_topology_file,
    render_startup_config,
    write_artifact,
)
from labnodes.certs import (
    NODE_CSR_TEMPLATE,
    ROOT_CA_CERT,
    ROOT_CA_KEY,
    CertificateAuthority,
    CertificateMaterial,
    CertInput,
    FileCertificateAuthority,
)
from labnodes.config import settings
from labnodes.errors import (
    ArtifactGenerationError,
    CertificateError,
    InvalidConfigError,
    RemoteCommandError,
)
from labnodes.metrics import track_operation
from labnodes.nodes.base import Node, NodeOption
from labnodes.readiness import CommandProbe, ReadinessPoller, ReadinessStage, ReadyState
from labnodes.utils import copy_file, create_directory, file_exists, merge_string_maps

if TYPE_CHECKING:
    from labnodes.schemas import NodeConfig

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates" / "srl"

SRL_DEFAULT_TYPE = "ixrd2"

# node type -> topology template
SRL_TYPES = {
    "ixr6": "7250IXR6.yml",
    "ixr10": "7250IXR10.yml",
    "ixrd1": "7220IXRD1.yml",
    "ixrd2": "7220IXRD2.yml",
    "ixrd3": "7220IXRD3.yml",
    "ixrh2": "7220IXRH2.yml",
    "ixrh3": "7220IXRH3.yml",
}

# Always applied, overriding user supplied values for the same keys
SRL_SYSCTLS = {
    "net.ipv4.ip_forward": "0",
    "net.ipv6.conf.all.disable_ipv6": "0",
    "net.ipv6.conf.all.accept_dad": "0",
    "net.ipv6.conf.default.accept_dad": "0",
    "net.ipv6.conf.all.autoconf": "0",
    "net.ipv6.conf.default.autoconf": "0",
}

SRL_ENV = {"SRLINUX": "1"}

# touching /.dockerenv lets sr_linux start under non-docker runtimes too
SRL_CMD = "sudo bash -c 'touch /.dockerenv && /opt/srlinux/bin/sr_linux'"
SRL_DEFAULT_USER = "0:0"

# Lab directory layout
CONFIG_DIR = "config"
STARTUP_CONFIG_FILE = "config.json"
APPMGR_DIR = "appmgr"
LICENSE_FILE = "license.key"
TOPOLOGY_FILE = "topology.yml"
BOOTSTRAP_FILE = "clab-config"

# In-container paths
CONTAINER_CONFIG_DIR = "/etc/opt/srlinux/"
CONTAINER_TOPOLOGY = "/tmp/topology.yml"
CONTAINER_LICENSE = "/opt/srlinux/etc/license.key"
CONTAINER_BOOTSTRAP_TMP = "/tmp/clab-config"

SAVE_CMD = ["sr_cli", "-d", "tools", "system", "configuration", "save"]
MGMT_SERVER_READY_CMD = shlex.split(
    "sr_cli -d info from state system app-management application mgmt_server state | grep running"
)
COMMIT_COMPLETE_CMD = shlex.split(
    "sr_cli -d info from state system configuration commit 1 status | grep complete"
)

# Additional config applied on top of the factory config
SRL_CONFIG_CMDS_TEMPLATE = """set / system tls server-profile clab-profile
set / system tls server-profile clab-profile key "{{ tls_key }}"
set / system tls server-profile clab-profile certificate "{{ tls_cert }}"
{%- if tls_anchor %}
set / system tls server-profile clab-profile authenticate-client true
set / system tls server-profile clab-profile trust-anchor "{{ tls_anchor }}"
{%- else %}
set / system tls server-profile clab-profile authenticate-client false
{%- endif %}
set / system gnmi-server admin-state enable network-instance mgmt admin-state enable tls-profile clab-profile
set / system json-rpc-server admin-state enable network-instance mgmt http admin-state enable
set / system json-rpc-server admin-state enable network-instance mgmt https admin-state enable tls-profile clab-profile
set / system lldp admin-state enable
set / system aaa authentication idle-timeout 7200
commit save"""


def render_default_config(config: "NodeConfig") -> str:
    """Render the default bootstrap commands for a node."""
    return TemplateRenderer().render_string(SRL_CONFIG_CMDS_TEMPLATE, config.template_context())


def with_certificate_authority(ca: CertificateAuthority) -> NodeOption:
    """Option injecting the certificate authority during init()."""
    def _apply(node: Node) -> None:
        if isinstance(node, SRLinuxNode):
            node.certificate_authority = ca
    return _apply


class SRLinuxNode(Node):
    """Driver for Nokia SR Linux containers."""

    kind = "nokia_srlinux"

    def __init__(self) -> None:
        super().__init__()
        self.certificate_authority: CertificateAuthority = FileCertificateAuthority()
        self.renderer = TemplateRenderer(TEMPLATES_DIR)
        self.base_mac: str | None = None
        self.readiness: ReadinessPoller | None = None

    def validate(self, config: "NodeConfig") -> None:
        super().validate(config)

        if not config.lab_dir:
            raise InvalidConfigError("lab directory is required", config.short_name)

        node_type = config.node_type or SRL_DEFAULT_TYPE
        if node_type not in SRL_TYPES:
            raise InvalidConfigError(
                f"wrong node type. '{node_type}' doesn't exist. "
                f"should be any of {', '.join(sorted(SRL_TYPES))}",
                config.short_name,
            )

    def init(self, config: "NodeConfig", *options: NodeOption) -> None:
        super().init(config, *options)
        cfg = self.config

        if not cfg.node_type:
            cfg.node_type = SRL_DEFAULT_TYPE

        cfg.cmd = SRL_CMD
        cfg.env = merge_string_maps(SRL_ENV, cfg.env)

        if not cfg.user:
            cfg.user = SRL_DEFAULT_USER

        cfg.sysctls.update(SRL_SYSCTLS)

        lab = cfg.lab_path
        binds = []
        if cfg.license:
            # the license referenced in the topology is copied to this fixed path
            binds.append(f"{lab / LICENSE_FILE}:{CONTAINER_LICENSE}:ro")
        binds.append(f"{lab / CONFIG_DIR}:{CONTAINER_CONFIG_DIR}:rw")
        binds.append(f"{lab / TOPOLOGY_FILE}:{CONTAINER_TOPOLOGY}:ro")
        # re-running init must not mount the same paths twice
        for bind in binds:
            if bind not in cfg.binds:
                cfg.binds.append(bind)

    # --- Pre-deploy ---

    async def pre_deploy(self, topology_name: str, ca_dir: str, ca_root_dir: str) -> None:
        cfg = self.config
        async with track_operation(self.kind, "pre_deploy"):
            try:
                create_directory(cfg.lab_dir, settings.lab_dir_mode)
            except OSError as e:
                raise ArtifactGenerationError(
                    f"failed to create lab directory {cfg.lab_dir}: {e}", cfg.short_name
                ) from e

            await self._load_certificates(topology_name, ca_dir, ca_root_dir)
            try:
                await asyncio.to_thread(self._copy_agents)
                await asyncio.to_thread(self._create_srl_files)
            except OSError as e:
                raise ArtifactGenerationError(
                    f"failed to prepare lab directory: {e}", cfg.short_name
                ) from e

    async def _load_certificates(self, topology_name: str, ca_dir: str, ca_root_dir: str) -> None:
        cfg = self.config
        ca = self.certificate_authority

        try:
            material = await asyncio.to_thread(ca.retrieve_node_cert_data, cfg, ca_dir)
            logger.debug(f"Using existing certificate for {cfg.short_name}")
        except CertificateError:
            cert_input = CertInput(
                name=cfg.short_name,
                long_name=cfg.long_name,
                fqdn=cfg.fqdn,
                prefix=topology_name,
                key_size=settings.cert_key_size,
            )
            try:
                material = await asyncio.to_thread(
                    ca.generate_cert,
                    str(Path(ca_root_dir) / ROOT_CA_CERT),
                    str(Path(ca_root_dir) / ROOT_CA_KEY),
                    NODE_CSR_TEMPLATE,
                    cert_input,
                    str(Path(ca_dir) / cert_input.name),
                )
            except CertificateError as e:
                if settings.strict_certificates:
                    raise CertificateError(
                        f"failed to generate certificates: {e.message}", cfg.short_name
                    ) from e
                logger.error(f"Failed to generate certificates for node {cfg.short_name}: {e}")
                material = CertificateMaterial()
            logger.debug(f"{cfg.short_name} CSR: {material.csr.decode(errors='replace')}")
            logger.debug(f"{cfg.short_name} Cert: {material.cert.decode(errors='replace')}")

        cfg.tls_cert = material.cert.decode()
        cfg.tls_key = material.key.decode()

    def _copy_agents(self) -> None:
        """Copy custom agent specs into config/appmgr/."""
        cfg = self.config
        if cfg.extras is None or not cfg.extras.srl_agents:
            return

        appmgr = cfg.lab_path / CONFIG_DIR / APPMGR_DIR
        create_directory(cfg.lab_path / CONFIG_DIR, settings.lab_dir_mode)
        create_directory(appmgr, settings.lab_dir_mode)
        for src in cfg.extras.srl_agents:
            dst = appmgr / Path(src).name
            try:
                copy_file(src, dst, settings.file_mode)
            except OSError as e:
                raise ArtifactGenerationError(
                    f"agent copy src {src} -> dst {dst} failed: {e}", cfg.short_name
                ) from e

    def _create_srl_files(self) -> None:
        cfg = self.config
        logger.debug(f"Creating directory structure for SR Linux container: {cfg.short_name}")
        lab = cfg.lab_path

        if cfg.license:
            dst = lab / LICENSE_FILE
            try:
                copy_file(cfg.license, dst, settings.file_mode)
            except OSError as e:
                raise ArtifactGenerationError(
                    f"license copy src {cfg.license} -> dst {dst} failed: {e}", cfg.short_name
                ) from e
            logger.debug(f"Copied license {cfg.license} -> {dst}")

        self.base_mac = generate_topology_file(
            self.renderer, SRL_TYPES[cfg.node_type], lab, cfg.short_name
        )

        create_directory(lab / CONFIG_DIR, settings.lab_dir_mode)

        # a startup-config file is used as a template for config.json
        if cfg.startup_config:
            render_startup_config(cfg, lab / CONFIG_DIR / STARTUP_CONFIG_FILE, self.renderer)

    # --- Post-deploy ---

    def has_existing_config(self) -> bool:
        cfg = self.config
        return bool(cfg.startup_config) or file_exists(
            cfg.lab_path / CONFIG_DIR / STARTUP_CONFIG_FILE
        )

    async def post_deploy(self, nodes: dict[str, Node]) -> None:
        # never overwrite configuration the user supplied or the node persisted
        if self.has_existing_config():
            logger.debug(f"Node {self.config.short_name} has a configuration, skipping defaults")
            return

        logger.info(f"Running postdeploy actions for Nokia SR Linux '{self.config.short_name}' node")
        async with track_operation(self.kind, "post_deploy"):
            await self._add_default_config()

    async def _add_default_config(self) -> None:
        cfg = self.config
        await self.ready()

        commands = render_default_config(cfg)
        logger.debug(f"Node {cfg.short_name} additional config:\n{commands}")

        try:
            path = await self._transfer_config(commands)
            result = await self._exec(["bash", "-c", f"sr_cli -ed < {path}"])
        finally:
            # the commands file holds the TLS private key
            if settings.bootstrap_transfer == "file":
                (cfg.lab_path / CONFIG_DIR / BOOTSTRAP_FILE).unlink(missing_ok=True)

        logger.debug(
            f"node {cfg.short_name}. stdout: {result.stdout_text}, stderr: {result.stderr_text}"
        )

    async def _transfer_config(self, commands: str) -> str:
        """Place the bootstrap commands where the container can read them.

        Returns:
            The in-container path of the commands file
        """
        cfg = self.config
        if settings.bootstrap_transfer == "exec":
            await self._exec(
                ["bash", "-c", f"echo {shlex.quote(commands)} > {CONTAINER_BOOTSTRAP_TMP}"]
            )
            return CONTAINER_BOOTSTRAP_TMP

        dst = cfg.lab_path / CONFIG_DIR / BOOTSTRAP_FILE
        await asyncio.to_thread(write_artifact, dst, commands + "\n", cfg.short_name)
        return CONTAINER_CONFIG_DIR + BOOTSTRAP_FILE

    # --- Readiness ---

    def _readiness_poller(self) -> ReadinessPoller:
        return ReadinessPoller(
            runtime=self._require_runtime(),
            container=self.config.long_name,
            stages=[
                ReadinessStage(
                    ReadyState.WAITING_MGMT_PROCESS,
                    CommandProbe(MGMT_SERVER_READY_CMD, "running", "mgmt_server"),
                ),
                ReadinessStage(
                    ReadyState.WAITING_COMMIT,
                    CommandProbe(COMMIT_COMPLETE_CMD, "complete", "initial commit"),
                ),
            ],
            log_name=self.config.short_name,
            kind=self.kind,
        )

    async def ready(self) -> None:
        """Return when the boot reached the stage where config commands are accepted."""
        self.readiness = self._readiness_poller()
        async with track_operation(self.kind, "ready"):
            await self.readiness.wait()

    # --- Save ---

    async def save_config(self) -> None:
        cfg = self.config
        async with track_operation(self.kind, "save_config"):
            result = await self._exec(SAVE_CMD)

            # stderr output fails the save even with a zero exit status
            if result.stderr:
                raise RemoteCommandError(
                    f"errors: {result.stderr_text}",
                    cfg.short_name,
                    stdout=result.stdout_text,
                    stderr=result.stderr_text,
                )

        logger.info(
            f"saved SR Linux configuration from {cfg.short_name} node. Output:\n{result.stdout_text}"
        )
