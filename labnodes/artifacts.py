"""On-disk artifacts rendered before a node container starts.

Two renders feed the container through bind mounts in the lab directory:

- the startup configuration overlay: a user supplied file used as a
  template and rendered with the node's derived fields (TLS material,
  management addresses, names)
- the vendor topology descriptor: a kind specific template rendered with a
  random base MAC so concurrently deployed nodes never share interface MACs

Any template or file failure raises ``ArtifactGenerationError``.
"""

from __future__ import annotations

import logging
import os
import secrets
from pathlib import Path
from typing import Any, Callable

import yaml
from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError

from labnodes.config import settings
from labnodes.errors import ArtifactGenerationError
from labnodes.schemas import NodeConfig

logger = logging.getLogger(__name__)

TOPOLOGY_FILE = "topology.yml"

# First octet of generated base MACs: locally administered, unicast
MAC_NAMESPACE = 0x02


class TemplateRenderer:
    """Render jinja2 templates from a directory or from inline text."""

    def __init__(self, templates_dir: Path | str | None = None):
        loader = FileSystemLoader(str(templates_dir)) if templates_dir else None
        self.env = Environment(
            loader=loader,
            autoescape=False,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )

    def render(self, template_name: str, context: dict[str, Any]) -> str:
        tmpl = self.env.get_template(template_name)
        return tmpl.render(**context)

    def render_string(self, text: str, context: dict[str, Any]) -> str:
        return self.env.from_string(text).render(**context)


def generate_base_mac(rand: Callable[[int], bytes] = secrets.token_bytes) -> str:
    """Return a base MAC of the form ``02:xx:yy:00:00:00``.

    The second and third octets are random; the remaining octets are left
    for the device to number its ports.
    """
    buf = rand(2)
    return f"{MAC_NAMESPACE:02x}:{buf[0]:02x}:{buf[1]:02x}:00:00:00"


def write_artifact(dst: Path | str, content: str, node: str | None = None) -> None:
    try:
        Path(dst).write_text(content)
        os.chmod(dst, settings.file_mode)
    except OSError as e:
        raise ArtifactGenerationError(f"failed to write {dst}: {e}", node) from e


def generate_topology_file(
    renderer: TemplateRenderer,
    template_name: str,
    lab_dir: Path | str,
    node: str | None = None,
    mac: str | None = None,
) -> str:
    """Render the vendor topology descriptor into ``<lab_dir>/topology.yml``.

    Returns:
        The base MAC written into the descriptor
    """
    dst = Path(lab_dir) / TOPOLOGY_FILE
    mac = mac or generate_base_mac()

    try:
        rendered = renderer.render(template_name, {"mac": mac})
        yaml.safe_load(rendered)
    except TemplateError as e:
        raise ArtifactGenerationError(
            f"failed to render topology template {template_name}: {e}", node
        ) from e
    except yaml.YAMLError as e:
        raise ArtifactGenerationError(
            f"topology template {template_name} did not render valid YAML: {e}", node
        ) from e

    logger.debug(f"Writing topology file {dst} with base MAC {mac}")
    write_artifact(dst, rendered, node)
    return mac


def render_startup_config(
    config: NodeConfig,
    dst: Path | str,
    renderer: TemplateRenderer | None = None,
) -> None:
    """Render ``config.startup_config`` as a template into dst."""
    renderer = renderer or TemplateRenderer()
    logger.debug(f"Reading startup-config {config.startup_config}")

    try:
        source = Path(config.startup_config).read_text()
    except OSError as e:
        raise ArtifactGenerationError(
            f"failed to read startup-config {config.startup_config}: {e}",
            config.short_name,
        ) from e

    try:
        rendered = renderer.render_string(source, config.template_context())
    except TemplateError as e:
        raise ArtifactGenerationError(
            f"failed to render startup-config {config.startup_config}: {e}",
            config.short_name,
        ) from e

    write_artifact(dst, rendered, config.short_name)
