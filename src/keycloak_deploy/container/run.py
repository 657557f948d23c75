"""Start Keycloak in a container with TLS material from the certificate layout."""

import logging
import shlex
from enum import Enum
from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import SettingsConfigDict

from keycloak_deploy.certs.authority import (
    DEFAULT_KEYSTORE_PASSWORD,
    DEFAULT_SERVER_NAME,
    CertificateLayout,
)
from keycloak_deploy.container.engine import ContainerEngine, detect_engine
from keycloak_deploy.lib.command_helpers import run_command
from keycloak_deploy.lib.exceptions import MissingFileError
from keycloak_deploy.lib.magic_numbers import KEYCLOAK_HTTPS_PORT
from keycloak_deploy.lib.model_helpers import DeploySettings

log = logging.getLogger(__name__)

CONTAINER_CERTS_DIRECTORY = "/opt/keycloak/certs"
CONTAINER_DATA_DIRECTORY = "/opt/keycloak/data"
SECRET_VARIABLES = ("KC_BOOTSTRAP_ADMIN_PASSWORD", "KC_HTTPS_KEYSTORE_PASSWORD")
MASKED_VALUE = "**********"


class TLSMode(Enum):
    PEM = "pem"
    KEYSTORE = "keystore"


class RunConfig(DeploySettings):
    model_config = SettingsConfigDict(env_prefix="keycloak_run_")
    image_name: str = Field(default="keycloak:latest", validation_alias="IMAGE_NAME")
    container_name: str = "keycloak"
    server_name: str = DEFAULT_SERVER_NAME
    base_directory: Path = Path()
    data_volume: str = "keycloak-data"
    https_port: int = KEYCLOAK_HTTPS_PORT
    host_port: int = KEYCLOAK_HTTPS_PORT
    tls_mode: TLSMode = TLSMode.PEM
    keystore_password: SecretStr = SecretStr(DEFAULT_KEYSTORE_PASSWORD)
    admin_username: str = "admin"
    admin_password: SecretStr = SecretStr("admin")
    production: bool = False


def tls_environment(config: RunConfig) -> dict[str, str]:
    """Keycloak HTTPS settings pointing at the mounted certificate directory."""
    name = config.server_name
    if config.tls_mode is TLSMode.KEYSTORE:
        return {
            "KC_HTTPS_KEYSTORE_FILE": f"{CONTAINER_CERTS_DIRECTORY}/{name}.p12",
            "KC_HTTPS_KEYSTORE_PASSWORD": config.keystore_password.get_secret_value(),
        }
    return {
        "KC_HTTPS_CERTIFICATE_FILE": f"{CONTAINER_CERTS_DIRECTORY}/{name}.crt",
        "KC_HTTPS_CERTIFICATE_KEY_FILE": f"{CONTAINER_CERTS_DIRECTORY}/{name}.key",
        "KC_HTTPS_CERTIFICATE_CHAIN_FILE": (
            f"{CONTAINER_CERTS_DIRECTORY}/{name}-chain.crt"
        ),
    }


def container_environment(config: RunConfig) -> dict[str, str]:
    return {
        "KC_BOOTSTRAP_ADMIN_USERNAME": config.admin_username,
        "KC_BOOTSTRAP_ADMIN_PASSWORD": (
            config.admin_password.get_secret_value()
        ),
        "KC_HTTP_ENABLED": "false",
        "KC_HTTPS_PORT": str(config.https_port),
        **tls_environment(config),
    }


def required_certificate_files(config: RunConfig) -> list[Path]:
    paths = CertificateLayout(config.base_directory).server_paths(config.server_name)
    if config.tls_mode is TLSMode.KEYSTORE:
        return [paths.keystore]
    return [paths.certificate, paths.key, paths.chain]


def check_certificates(config: RunConfig) -> None:
    for path in required_certificate_files(config):
        if not path.is_file():
            msg = f"Certificate file not found: {path}"
            raise MissingFileError(
                msg,
                hints=[
                    "Generate certificates first:",
                    f"  keycloak-deploy certs --server {config.server_name}",
                ],
            )


def run_arguments(engine: ContainerEngine, config: RunConfig) -> list[str]:
    servers_directory = (
        CertificateLayout(config.base_directory).servers_directory.resolve()
    )
    cmd = [
        engine.binary,
        "run",
        "--detach",
        "--name",
        config.container_name,
        "-p",
        f"{config.host_port}:{config.https_port}",
        "-v",
        f"{servers_directory}:{CONTAINER_CERTS_DIRECTORY}:ro,Z",
        "-v",
        f"{config.data_volume}:{CONTAINER_DATA_DIRECTORY}:Z",
    ]
    for key, value in container_environment(config).items():
        cmd.extend(["-e", f"{key}={value}"])
    cmd.extend([config.image_name, "start" if config.production else "start-dev"])
    return cmd


def _mask_secret(argument: str) -> str:
    name, separator, _ = argument.partition("=")
    if separator and name in SECRET_VARIABLES:
        return f"{name}={MASKED_VALUE}"
    return argument


def masked_arguments(cmd: list[str]) -> list[str]:
    """Copy of a run command with password environment values hidden."""
    return [_mask_secret(argument) for argument in cmd]


def run_container(
    config: RunConfig,
    engine: ContainerEngine | None = None,
    *,
    dry_run: bool = False,
) -> list[str]:
    check_certificates(config)
    engine = engine or detect_engine()
    cmd = run_arguments(engine, config)
    if dry_run:
        print(shlex.join(masked_arguments(cmd)))  # noqa: T201
        return cmd
    log.info("Starting container %s from %s", config.container_name, config.image_name)
    run_command(cmd)
    log.info(
        "Keycloak is starting on https://localhost:%s (logs: %s logs -f %s)",
        config.host_port,
        engine.binary,
        config.container_name,
    )
    return cmd
