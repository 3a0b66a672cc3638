"""Node certificate material.

Drivers that expose TLS services (gNMI, JSON-RPC) need a per-node
certificate signed by the lab root CA. The lab CA directory layout is:

    <ca_root_dir>/root-ca.pem
    <ca_root_dir>/root-ca-key.pem
    <ca_dir>/<node>/<node>.pem
    <ca_dir>/<node>/<node>-key.pem
    <ca_dir>/<node>/<node>.csr

Node material is retrieved from disk when present and generated otherwise.
"""

from __future__ import annotations

import datetime
import ipaddress
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
from jinja2 import Template, TemplateError

from labnodes.config import settings
from labnodes.errors import CertificateError
from labnodes.utils import create_directory

if TYPE_CHECKING:
    from labnodes.schemas import NodeConfig

logger = logging.getLogger(__name__)

ROOT_CA_CERT = "root-ca.pem"
ROOT_CA_KEY = "root-ca-key.pem"

# CSR description rendered per node, cfssl-style JSON
NODE_CSR_TEMPLATE = """{
    "CN": "{{ name }}.{{ prefix }}.io",
    "key": {"algo": "rsa", "size": {{ key_size }}},
    "names": [{"C": "BE", "L": "Antwerp", "O": "Nokia", "OU": "Container lab"}],
    "hosts": [
        "{{ name }}",
        "{{ long_name }}"{% if fqdn %},
        "{{ fqdn }}"{% endif %}
    ]
}"""

ROOT_CSR_TEMPLATE = """{
    "CN": "{{ prefix }} Root CA",
    "key": {"algo": "rsa", "size": {{ key_size }}},
    "names": [{"C": "BE", "L": "Antwerp", "O": "Nokia", "OU": "Container lab"}]
}"""

_NAME_FIELDS = {
    "C": NameOID.COUNTRY_NAME,
    "L": NameOID.LOCALITY_NAME,
    "O": NameOID.ORGANIZATION_NAME,
    "OU": NameOID.ORGANIZATIONAL_UNIT_NAME,
}


@dataclass(frozen=True)
class CertificateMaterial:
    """PEM encoded certificate, private key and signing request."""
    cert: bytes = b""
    key: bytes = b""
    csr: bytes = b""


@dataclass
class CertInput:
    """Values substituted into the CSR template."""
    name: str
    long_name: str
    fqdn: str
    prefix: str
    key_size: int = 2048


def node_cert_paths(ca_dir: str | Path, name: str) -> tuple[Path, Path, Path]:
    """Return (cert, key, csr) paths for a node inside the lab CA directory."""
    node_dir = Path(ca_dir) / name
    return (
        node_dir / f"{name}.pem",
        node_dir / f"{name}-key.pem",
        node_dir / f"{name}.csr",
    )


class CertificateAuthority(ABC):
    """Retrieve-or-issue interface for node identity material."""

    @abstractmethod
    def retrieve_node_cert_data(self, config: "NodeConfig", ca_dir: str) -> CertificateMaterial:
        """Load existing material for a node.

        Raises:
            CertificateError: if the material is not present
        """
        ...

    @abstractmethod
    def generate_cert(
        self,
        ca_cert_path: str,
        ca_key_path: str,
        template: str,
        cert_input: CertInput,
        output_dir: str,
    ) -> CertificateMaterial:
        """Issue node material signed by the CA and write it to output_dir.

        Raises:
            CertificateError: if rendering, key generation or signing fails
        """
        ...


def _render_request(template: str, cert_input: CertInput | dict) -> dict:
    values = cert_input if isinstance(cert_input, dict) else asdict(cert_input)
    try:
        return json.loads(Template(template).render(**values))
    except (TemplateError, ValueError) as e:
        raise CertificateError(f"invalid certificate request template: {e}") from e


def _subject(request: dict) -> x509.Name:
    attributes = [x509.NameAttribute(NameOID.COMMON_NAME, request["CN"])]
    for names in request.get("names", []):
        for field, oid in _NAME_FIELDS.items():
            if names.get(field):
                attributes.append(x509.NameAttribute(oid, names[field]))
    return x509.Name(attributes)


def _san(hosts: list[str]) -> x509.SubjectAlternativeName:
    entries: list[x509.GeneralName] = []
    for host in hosts:
        if not host:
            continue
        try:
            entries.append(x509.IPAddress(ipaddress.ip_address(host)))
        except ValueError:
            entries.append(x509.DNSName(host))
    return x509.SubjectAlternativeName(entries)


def _pem_key(key: rsa.RSAPrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


class FileCertificateAuthority(CertificateAuthority):
    """Certificate authority keeping all material as PEM files on disk."""

    def __init__(self, validity_days: int | None = None, key_size: int | None = None):
        self.validity_days = validity_days or settings.cert_validity_days
        self.key_size = key_size or settings.cert_key_size

    def retrieve_node_cert_data(self, config: "NodeConfig", ca_dir: str) -> CertificateMaterial:
        cert_path, key_path, csr_path = node_cert_paths(ca_dir, config.short_name)
        try:
            cert = cert_path.read_bytes()
            key = key_path.read_bytes()
        except OSError as e:
            raise CertificateError(
                f"no certificate material in {cert_path.parent}", config.short_name
            ) from e
        csr = csr_path.read_bytes() if csr_path.exists() else b""
        return CertificateMaterial(cert=cert, key=key, csr=csr)

    def generate_root_ca(self, output_dir: str, prefix: str) -> CertificateMaterial:
        """Create a self-signed lab root CA in output_dir."""
        request = _render_request(
            ROOT_CSR_TEMPLATE, {"prefix": prefix, "key_size": self.key_size}
        )
        key = rsa.generate_private_key(public_exponent=65537, key_size=self.key_size)
        subject = _subject(request)
        now = datetime.datetime.now(datetime.timezone.utc)
        cert = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + datetime.timedelta(days=self.validity_days))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=True,
                    crl_sign=True,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .sign(key, hashes.SHA256())
        )

        out = create_directory(output_dir, settings.lab_dir_mode)
        material = CertificateMaterial(
            cert=cert.public_bytes(serialization.Encoding.PEM),
            key=_pem_key(key),
        )
        (out / ROOT_CA_CERT).write_bytes(material.cert)
        (out / ROOT_CA_KEY).write_bytes(material.key)
        logger.debug(f"Generated root CA for {prefix} in {out}")
        return material

    def generate_cert(
        self,
        ca_cert_path: str,
        ca_key_path: str,
        template: str,
        cert_input: CertInput,
        output_dir: str,
    ) -> CertificateMaterial:
        try:
            ca_cert = x509.load_pem_x509_certificate(Path(ca_cert_path).read_bytes())
            ca_key = serialization.load_pem_private_key(
                Path(ca_key_path).read_bytes(), password=None
            )
        except (OSError, ValueError) as e:
            raise CertificateError(f"failed to load root CA: {e}", cert_input.name) from e

        request = _render_request(template, cert_input)
        key_size = request.get("key", {}).get("size", self.key_size)
        key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
        subject = _subject(request)
        san = _san(request.get("hosts", []))

        csr = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(subject)
            .add_extension(san, critical=False)
            .sign(key, hashes.SHA256())
        )

        now = datetime.datetime.now(datetime.timezone.utc)
        cert = (
            x509.CertificateBuilder()
            .subject_name(csr.subject)
            .issuer_name(ca_cert.subject)
            .public_key(csr.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + datetime.timedelta(days=self.validity_days))
            .add_extension(san, critical=False)
            .add_extension(
                x509.ExtendedKeyUsage(
                    [ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]
                ),
                critical=False,
            )
            .sign(ca_key, hashes.SHA256())
        )

        material = CertificateMaterial(
            cert=cert.public_bytes(serialization.Encoding.PEM),
            key=_pem_key(key),
            csr=csr.public_bytes(serialization.Encoding.PEM),
        )

        out = Path(output_dir)
        cert_path = out / f"{cert_input.name}.pem"
        key_path = out / f"{cert_input.name}-key.pem"
        csr_path = out / f"{cert_input.name}.csr"
        try:
            create_directory(output_dir, settings.lab_dir_mode)
            cert_path.write_bytes(material.cert)
            key_path.write_bytes(material.key)
            csr_path.write_bytes(material.csr)
        except OSError as e:
            raise CertificateError(
                f"failed to write certificate material to {output_dir}: {e}", cert_input.name
            ) from e

        logger.debug(f"Issued certificate for {cert_input.name} ({request['CN']})")
        return material
