"""Publish the Keycloak server certificate as a Kubernetes TLS secret."""

import base64
import logging
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from kubernetes import client, config
from kubernetes.client import ApiException
from pydantic import Field
from pydantic_settings import SettingsConfigDict

from keycloak_deploy.certs.authority import (
    DEFAULT_SERVER_NAME,
    CertificateLayout,
    load_certificate,
    load_private_key,
)
from keycloak_deploy.lib.command_helpers import confirm
from keycloak_deploy.lib.exceptions import KeycloakDeployError, MissingFileError
from keycloak_deploy.lib.model_helpers import DeploySettings

log = logging.getLogger(__name__)

HTTP_NOT_FOUND = 404
TLS_SECRET_TYPE = "kubernetes.io/tls"
GENERATE_CERTIFICATES_HINTS = [
    "Generate certificates first:",
    "  keycloak-deploy certs --all",
]


class TLSSecretConfig(DeploySettings):
    model_config = SettingsConfigDict(env_prefix="keycloak_k8s_")
    namespace: str = Field(default="keycloak", validation_alias="NAMESPACE")
    secret_name: str = Field(default="keycloak-tls", validation_alias="SECRET_NAME")
    cert_dir: Path = Field(
        default=CertificateLayout().servers_directory, validation_alias="CERT_DIR"
    )
    cert_file: Path | None = Field(default=None, validation_alias="CERT_FILE")
    key_file: Path | None = Field(default=None, validation_alias="KEY_FILE")
    kubeconfig: str | None = None
    kube_context: str | None = None

    @property
    def certificate_path(self) -> Path:
        return self.cert_file or self.cert_dir.joinpath(f"{DEFAULT_SERVER_NAME}.crt")

    @property
    def key_path(self) -> Path:
        return self.key_file or self.cert_dir.joinpath(f"{DEFAULT_SERVER_NAME}.key")


def load_kubernetes_client(
    kubeconfig: str | None = None, context: str | None = None
) -> client.CoreV1Api:
    try:
        if kubeconfig:
            config.load_kube_config(config_file=kubeconfig, context=context)
        else:
            config.load_kube_config(context=context)
    except Exception as exc:
        msg = f"Error loading Kubernetes config: {exc}"
        raise KeycloakDeployError(msg) from exc
    return client.CoreV1Api()


def check_certificate_files(secret_config: TLSSecretConfig) -> None:
    for description, path in (
        ("Certificate file", secret_config.certificate_path),
        ("Private key file", secret_config.key_path),
    ):
        if not path.is_file():
            msg = f"{description} not found: {path}"
            raise MissingFileError(msg, hints=GENERATE_CERTIFICATES_HINTS)


def certificate_matches_key(certificate_path: Path, key_path: Path) -> bool:
    public_format = serialization.PublicFormat.SubjectPublicKeyInfo
    encoding = serialization.Encoding.PEM
    certificate_key = load_certificate(certificate_path).public_key()
    private_key = load_private_key(key_path)
    return certificate_key.public_bytes(
        encoding, public_format
    ) == private_key.public_key().public_bytes(encoding, public_format)


def tls_secret_body(secret_config: TLSSecretConfig) -> client.V1Secret:
    return client.V1Secret(
        api_version="v1",
        kind="Secret",
        type=TLS_SECRET_TYPE,
        metadata=client.V1ObjectMeta(
            name=secret_config.secret_name,
            namespace=secret_config.namespace,
            labels={"app.kubernetes.io/name": "keycloak"},
        ),
        data={
            "tls.crt": base64.b64encode(
                secret_config.certificate_path.read_bytes()
            ).decode(),
            "tls.key": base64.b64encode(secret_config.key_path.read_bytes()).decode(),
        },
    )


def ensure_namespace(core_api: client.CoreV1Api, namespace: str) -> bool:
    """Create the namespace when it is missing.

    :returns: True if the namespace was created.
    """
    try:
        core_api.read_namespace(name=namespace)
    except ApiException as exc:
        if exc.status != HTTP_NOT_FOUND:
            raise
    else:
        return False
    log.info("Creating namespace: %s", namespace)
    core_api.create_namespace(
        body=client.V1Namespace(metadata=client.V1ObjectMeta(name=namespace))
    )
    return True


def secret_exists(core_api: client.CoreV1Api, name: str, namespace: str) -> bool:
    try:
        core_api.read_namespaced_secret(name=name, namespace=namespace)
    except ApiException as exc:
        if exc.status == HTTP_NOT_FOUND:
            return False
        raise
    return True


def create_tls_secret(
    secret_config: TLSSecretConfig,
    core_api: client.CoreV1Api | None = None,
    *,
    assume_yes: bool = False,
) -> bool:
    """Create (or replace, after confirmation) the Keycloak TLS secret.

    :returns: True when a secret was created, False when the existing one was kept.
    """
    check_certificate_files(secret_config)
    if not certificate_matches_key(
        secret_config.certificate_path, secret_config.key_path
    ):
        msg = (
            f"Private key {secret_config.key_path} does not match certificate "
            f"{secret_config.certificate_path}"
        )
        raise KeycloakDeployError(msg, hints=GENERATE_CERTIFICATES_HINTS)

    core_api = core_api or load_kubernetes_client(
        secret_config.kubeconfig, secret_config.kube_context
    )
    name, namespace = secret_config.secret_name, secret_config.namespace
    try:
        ensure_namespace(core_api, namespace)
        if secret_exists(core_api, name, namespace):
            log.warning("Secret %s already exists in namespace %s", name, namespace)
            if not confirm("Delete and recreate? (y/N): ", assume_yes=assume_yes):
                log.info("Keeping existing secret. Exiting.")
                return False
            core_api.delete_namespaced_secret(name=name, namespace=namespace)

        log.info("Creating TLS secret: %s in namespace: %s", name, namespace)
        log.info("Using certificate: %s", secret_config.certificate_path)
        log.info("Using private key: %s", secret_config.key_path)
        core_api.create_namespaced_secret(
            namespace=namespace, body=tls_secret_body(secret_config)
        )
    except ApiException as exc:
        msg = f"Kubernetes API request failed ({exc.status}): {exc.reason}"
        raise KeycloakDeployError(msg) from exc

    log.info("TLS secret created successfully!")
    log.info("You can now deploy Keycloak with HTTPS using:")
    log.info("  keycloak-deploy k8s render --output-dir k8s")
    log.info("  kubectl apply -f k8s/keycloak_start_dev_https.yaml")
    return True
