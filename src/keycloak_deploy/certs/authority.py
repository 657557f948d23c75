"""Create and inspect the CA and server certificates used by Keycloak.

Everything is written below a fixed layout so that the container, Kubernetes and
bare-metal deployments can all find the same files:

    certs/ca/ca.pem
    certs/ca/ca-key.pem
    certs/ca/servers/<name>.crt
    certs/ca/servers/<name>.key
    certs/ca/servers/<name>-chain.crt
    certs/ca/servers/<name>.p12

All outputs are left world readable (0644) so that the rootless container user
(UID 1000) can read them from a bind mount.
"""

import logging
import shutil
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from keycloak_deploy.certs.models import (
    CA_REQUEST_TEMPLATE,
    DEFAULT_TEMPLATE_DIRECTORY,
    EXTENDED_KEY_USAGES,
    SERVER_REQUEST_TEMPLATE,
    SIGNING_CONFIG_TEMPLATE,
    TEMPLATE_FILES,
    CertificateRequest,
    PrivateKey,
    load_request,
    load_signing_config,
)
from keycloak_deploy.lib.command_helpers import confirm, pause
from keycloak_deploy.lib.exceptions import MissingFileError
from keycloak_deploy.lib.magic_numbers import CERTIFICATE_FILE_MODE
from keycloak_deploy.lib.model_helpers import duration_to_timedelta

log = logging.getLogger(__name__)

CA_NAME = "ca"
DEFAULT_SERVER_NAME = "keycloak"
DEFAULT_KEYSTORE_PASSWORD = "changeit"  # noqa: S105
SERVER_PROFILE = "server"
# Matches the backdating cfssl applies to not_before to absorb clock skew.
BACKDATE = timedelta(minutes=5)
PERMISSION_PATTERNS = ("*.crt", "*.key", "*.p12", "*.pem")


@dataclass(frozen=True)
class ServerCertificatePaths:
    certificate: Path
    key: Path
    chain: Path
    keystore: Path
    request: Path

    def outputs(self) -> tuple[Path, ...]:
        return (self.certificate, self.chain, self.keystore, self.key)


@dataclass(frozen=True)
class CertificateLayout:
    """The fixed directory layout for the CA and its server certificates."""

    base_directory: Path = Path()

    @property
    def ca_directory(self) -> Path:
        return self.base_directory.joinpath("certs", CA_NAME)

    @property
    def servers_directory(self) -> Path:
        return self.ca_directory.joinpath("servers")

    @property
    def ca_certificate(self) -> Path:
        return self.ca_directory.joinpath(f"{CA_NAME}.pem")

    @property
    def ca_key(self) -> Path:
        return self.ca_directory.joinpath(f"{CA_NAME}-key.pem")

    @property
    def ca_csr(self) -> Path:
        return self.ca_directory.joinpath(f"{CA_NAME}.csr")

    def server_paths(self, name: str) -> ServerCertificatePaths:
        servers = self.servers_directory
        return ServerCertificatePaths(
            certificate=servers.joinpath(f"{name}.crt"),
            key=servers.joinpath(f"{name}.key"),
            chain=servers.joinpath(f"{name}-chain.crt"),
            keystore=servers.joinpath(f"{name}.p12"),
            request=servers.joinpath(f"{name}-config.json"),
        )

    def server_certificates(self) -> list[Path]:
        if not self.servers_directory.is_dir():
            return []
        return sorted(
            cert
            for cert in self.servers_directory.glob("*.crt")
            if not cert.name.endswith("-chain.crt")
        )


@dataclass
class CertificateSummary:
    name: str
    subject: str
    issuer: str
    not_before: datetime
    not_after: datetime
    issued_by_ca: bool | None = None
    extensions: list[str] = field(default_factory=list)

    @property
    def expired(self) -> bool:
        return self.not_after < datetime.now(tz=UTC)


def check_templates(template_directory: Path = DEFAULT_TEMPLATE_DIRECTORY) -> None:
    descriptions = {
        CA_REQUEST_TEMPLATE: "CA certificate template",
        SERVER_REQUEST_TEMPLATE: "Server certificate template",
        SIGNING_CONFIG_TEMPLATE: "CA config template",
    }
    for template in TEMPLATE_FILES:
        path = template_directory.joinpath(template)
        if not path.is_file():
            msg = f"{descriptions[template]} not found: {path}"
            raise MissingFileError(msg)


def _private_key_bytes(key: PrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _write(path: Path, content: bytes, mode: int = CERTIFICATE_FILE_MODE) -> None:
    path.write_bytes(content)
    path.chmod(mode)


def load_certificate(path: Path) -> x509.Certificate:
    return x509.load_pem_x509_certificate(path.read_bytes())


def load_private_key(path: Path) -> PrivateKey:
    return serialization.load_pem_private_key(path.read_bytes(), password=None)


def build_ca_certificate(
    request: CertificateRequest, key: PrivateKey, now: datetime | None = None
) -> x509.Certificate:
    now = now or datetime.now(tz=UTC)
    constraints = request.ca
    validity = duration_to_timedelta(constraints.expiry if constraints else "87600h")
    subject = request.subject()
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - BACKDATE)
        .not_valid_after(now + validity)
        .add_extension(
            x509.BasicConstraints(
                ca=True, path_length=constraints.pathlen if constraints else None
            ),
            critical=True,
        )
        .add_extension(
            x509.KeyUsage(
                digital_signature=False,
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
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(key.public_key()),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )


def build_server_certificate(  # noqa: PLR0913
    request: CertificateRequest,
    key: PrivateKey,
    ca_certificate: x509.Certificate,
    ca_key: PrivateKey,
    validity: timedelta,
    usages: x509.KeyUsage,
    extended_usages: x509.ExtendedKeyUsage | None,
    now: datetime | None = None,
) -> x509.Certificate:
    now = now or datetime.now(tz=UTC)
    builder = (
        x509.CertificateBuilder()
        .subject_name(request.subject())
        .issuer_name(ca_certificate.subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - BACKDATE)
        .not_valid_after(now + validity)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(usages, critical=True)
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(key.public_key()),
            critical=False,
        )
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()),
            critical=False,
        )
    )
    if extended_usages is not None:
        builder = builder.add_extension(extended_usages, critical=False)
    sans = request.subject_alternative_names()
    if sans:
        builder = builder.add_extension(
            x509.SubjectAlternativeName(sans), critical=False
        )
    return builder.sign(ca_key, hashes.SHA256())


def create_ca(
    layout: CertificateLayout,
    template_directory: Path = DEFAULT_TEMPLATE_DIRECTORY,
) -> bool:
    """Create the CA key pair unless a CA certificate already exists.

    :returns: True when a new CA was written, False when an existing one was kept.
    """
    if layout.ca_certificate.exists():
        log.info("CA already exists at %s", layout.ca_certificate)
        log.info("Skipping CA creation. Use --force-ca to regenerate.")
        return False

    log.info("Creating new CA...")
    layout.ca_directory.mkdir(parents=True, exist_ok=True)
    request = load_request(template_directory.joinpath(CA_REQUEST_TEMPLATE))
    key = request.key.generate_private_key()
    certificate = build_ca_certificate(request, key)
    _write(layout.ca_key, _private_key_bytes(key))
    _write(
        layout.ca_certificate, certificate.public_bytes(serialization.Encoding.PEM)
    )
    log.info("CA created successfully at %s", layout.ca_certificate)
    return True


def regenerate_ca(
    layout: CertificateLayout,
    template_directory: Path = DEFAULT_TEMPLATE_DIRECTORY,
    *,
    assume_yes: bool = False,
) -> bool:
    log.warning(
        "This will regenerate the CA. "
        "All existing server certificates will need to be regenerated."
    )
    if not confirm(
        "Are you sure? (yes/no): ", assume_yes=assume_yes, require_word="yes"
    ):
        log.info("Cancelled.")
        return False
    for stale in (layout.ca_certificate, layout.ca_key, layout.ca_csr):
        stale.unlink(missing_ok=True)
    return create_ca(layout, template_directory)


def create_server_certificate(  # noqa: PLR0913
    layout: CertificateLayout,
    name: str = DEFAULT_SERVER_NAME,
    template_directory: Path = DEFAULT_TEMPLATE_DIRECTORY,
    *,
    common_name: str | None = None,
    hosts: list[str] | None = None,
    keystore_password: str = DEFAULT_KEYSTORE_PASSWORD,
    pause_for_edit: bool = False,
    profile: str = SERVER_PROFILE,
) -> ServerCertificatePaths:
    """Issue a server certificate signed by the CA plus its chain and keystore.

    The request template is copied next to the outputs as `<name>-config.json` so the
    operator can adjust CN and hosts before signing when `pause_for_edit` is set. The
    copy is removed once the certificate exists.
    """
    name = name or DEFAULT_SERVER_NAME
    log.info("Creating server certificate: %s", name)

    if not layout.ca_certificate.exists():
        log.error("CA not found. Creating CA first...")
        create_ca(layout, template_directory)
    if not layout.ca_key.is_file():
        msg = f"CA key not found: {layout.ca_key}"
        raise MissingFileError(
            msg,
            hints=[
                "Restore the CA key or regenerate the CA:",
                "  keycloak-deploy certs --force-ca",
            ],
        )

    # unusable templates are reported against the originals, before any copy exists
    request_template = template_directory.joinpath(SERVER_REQUEST_TEMPLATE)
    load_request(request_template)
    signing_config = load_signing_config(
        template_directory.joinpath(SIGNING_CONFIG_TEMPLATE)
    )
    signing_profile = signing_config.profile(profile)

    paths = layout.server_paths(name)
    layout.servers_directory.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(request_template, paths.request)

    try:
        if pause_for_edit:
            log.info("Edit %s to customize CN, hosts, etc. if needed", paths.request)
            pause("Press Enter to continue or Ctrl+C to cancel and edit the config...")
        request = load_request(paths.request).with_overrides(common_name, hosts)
        ca_certificate = load_certificate(layout.ca_certificate)
        ca_key = load_private_key(layout.ca_key)

        key = request.key.generate_private_key()
        certificate = build_server_certificate(
            request,
            key,
            ca_certificate,
            ca_key,
            validity=signing_config.validity(profile),
            usages=signing_profile.key_usage(),
            extended_usages=signing_profile.extended_key_usage(),
        )
        certificate_pem = certificate.public_bytes(serialization.Encoding.PEM)
        ca_pem = ca_certificate.public_bytes(serialization.Encoding.PEM)

        _write(paths.key, _private_key_bytes(key))
        _write(paths.certificate, certificate_pem)
        log.info("Creating full chain certificate...")
        _write(paths.chain, certificate_pem + ca_pem)
        log.info("Creating PKCS12 keystore...")
        _write(
            paths.keystore,
            pkcs12.serialize_key_and_certificates(
                name=name.encode(),
                key=key,
                cert=certificate,
                cas=[ca_certificate],
                encryption_algorithm=serialization.BestAvailableEncryption(
                    keystore_password.encode()
                ),
            ),
        )
    finally:
        paths.request.unlink(missing_ok=True)
        for csr in layout.servers_directory.glob("*.csr"):
            csr.unlink()

    log.info("Verifying certificate extensions...")
    for line in describe_extensions(certificate):
        log.info("  %s", line)

    log.info("Setting permissions for container use...")
    for output in paths.outputs():
        output.chmod(CERTIFICATE_FILE_MODE)
    log.info("Server certificate created successfully: %s", name)
    return paths


def fix_permissions(layout: CertificateLayout) -> list[Path]:
    log.info("Fixing permissions for container use...")
    fixed: list[Path] = []
    if layout.ca_certificate.exists():
        for path in (layout.ca_certificate, layout.ca_key):
            if path.exists():
                path.chmod(CERTIFICATE_FILE_MODE)
                fixed.append(path)
        log.info("Fixed CA permissions")

    if layout.servers_directory.is_dir():
        for pattern in PERMISSION_PATTERNS:
            for path in sorted(layout.servers_directory.rglob(pattern)):
                if path.is_file():
                    path.chmod(CERTIFICATE_FILE_MODE)
                    fixed.append(path)
        log.info(
            "Fixed server certificate permissions in %s", layout.servers_directory
        )
    else:
        log.warning("No server certificates directory found")

    log.info("Permissions fixed. Files are now readable by container user (UID 1000)")
    return fixed


def _format_general_name(name: x509.GeneralName) -> str:
    if isinstance(name, x509.DNSName):
        return f"DNS:{name.value}"
    if isinstance(name, x509.IPAddress):
        return f"IP Address:{name.value}"
    return str(name.value)


def describe_extensions(certificate: x509.Certificate) -> list[str]:
    """Human readable lines for the X509v3 extensions of a certificate."""
    eku_names = {oid: usage for usage, oid in EXTENDED_KEY_USAGES.items()}
    lines = []
    for extension in certificate.extensions:
        value = extension.value
        critical = " (critical)" if extension.critical else ""
        if isinstance(value, x509.BasicConstraints):
            text = f"Basic Constraints{critical}: CA:{str(value.ca).upper()}"
        elif isinstance(value, x509.KeyUsage):
            enabled = [
                flag.replace("_", " ")
                for flag in (
                    "digital_signature",
                    "content_commitment",
                    "key_encipherment",
                    "data_encipherment",
                    "key_agreement",
                    "key_cert_sign",
                    "crl_sign",
                )
                if getattr(value, flag)
            ]
            text = f"Key Usage{critical}: {', '.join(enabled)}"
        elif isinstance(value, x509.ExtendedKeyUsage):
            usages = [eku_names.get(oid, oid.dotted_string) for oid in value]
            text = f"Extended Key Usage{critical}: {', '.join(usages)}"
        elif isinstance(value, x509.SubjectAlternativeName):
            names = ", ".join(_format_general_name(name) for name in value)
            text = f"Subject Alternative Name{critical}: {names}"
        elif isinstance(value, x509.SubjectKeyIdentifier):
            text = f"Subject Key Identifier: {value.digest.hex(':').upper()}"
        elif isinstance(value, x509.AuthorityKeyIdentifier):
            identifier = (value.key_identifier or b"").hex(":").upper()
            text = f"Authority Key Identifier: {identifier}"
        else:
            text = f"{extension.oid.dotted_string}{critical}"
        lines.append(text)
    return lines


def issued_by(certificate: x509.Certificate, issuer: x509.Certificate) -> bool:
    try:
        certificate.verify_directly_issued_by(issuer)
    except (ValueError, TypeError, InvalidSignature):
        return False
    return True


def describe_certificate(
    certificate: x509.Certificate,
    name: str,
    ca_certificate: x509.Certificate | None = None,
) -> CertificateSummary:
    return CertificateSummary(
        name=name,
        subject=certificate.subject.rfc4514_string(),
        issuer=certificate.issuer.rfc4514_string(),
        not_before=certificate.not_valid_before_utc,
        not_after=certificate.not_valid_after_utc,
        issued_by_ca=(
            issued_by(certificate, ca_certificate) if ca_certificate else None
        ),
        extensions=describe_extensions(certificate),
    )


def verify_certificates(layout: CertificateLayout) -> list[CertificateSummary]:
    """Summarize the CA and every server certificate in the layout.

    :raises MissingFileError: If there is no CA certificate.
    """
    log.info("Verifying certificates...")
    if not layout.ca_certificate.exists():
        msg = f"CA not found at {layout.ca_certificate}"
        raise MissingFileError(msg)

    ca_certificate = load_certificate(layout.ca_certificate)
    summaries = [describe_certificate(ca_certificate, CA_NAME)]
    if not layout.servers_directory.is_dir():
        log.warning("No server certificates found in %s", layout.servers_directory)
        return summaries
    summaries.extend(
        describe_certificate(load_certificate(path), path.stem, ca_certificate)
        for path in layout.server_certificates()
    )
    return summaries
