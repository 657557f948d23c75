"""Local orchestration around the bare-metal Keycloak deployment.

The host changes themselves live in the pyinfra deploy (`deploy.py`); this module
checks the host before it runs, collects anything the operator still has to supply,
and reports on the service afterwards.
"""

import logging
import pwd
import shutil
import sys
import time
from dataclasses import dataclass
from pathlib import Path

from keycloak_deploy.baremetal.models import KeycloakServerConfig
from keycloak_deploy.lib.command_helpers import (
    confirm,
    require_root,
    resolve_binary,
    run_command,
)
from keycloak_deploy.lib.exceptions import (
    CommandFailedError,
    MissingFileError,
    OperatorAbort,
)
from keycloak_deploy.lib.linux_helpers import SYSTEMD_UNIT_DIRECTORY
from keycloak_deploy.lib.magic_numbers import KEYCLOAK_HTTP_PORT, PUBLIC_FILE_MODE

log = logging.getLogger(__name__)

DEPLOY_FILE = Path(__file__).resolve().parent.joinpath("deploy.py")
STARTUP_GRACE_SECONDS = 3


@dataclass
class ListeningCheck:
    https_listening: bool
    http_listening: bool
    sockets: list[str]


def check_keycloak_user(user: str) -> None:
    try:
        pwd.getpwnam(user)
    except KeyError as exc:
        msg = f"User '{user}' does not exist. Please create it first:"
        raise MissingFileError(
            msg, hints=[f"  sudo useradd -r -s /bin/false {user}"]
        ) from exc
    log.info("User '%s' exists", user)


def check_keycloak_installation(keycloak_config: KeycloakServerConfig) -> None:
    if not keycloak_config.home.is_dir():
        msg = f"Keycloak is not installed at {keycloak_config.home}"
        raise MissingFileError(msg)
    if not keycloak_config.kc_script.is_file():
        msg = f"Keycloak binary not found at {keycloak_config.kc_script}"
        raise MissingFileError(msg)
    log.info("Keycloak installation found at %s", keycloak_config.home)


def check_java() -> Path:
    java = resolve_binary("java")
    log.info("Java found at: %s", java)
    return java


def resolve_hostname(
    keycloak_config: KeycloakServerConfig,
) -> KeycloakServerConfig:
    """Prompt for the public hostname when it was not configured."""
    if not keycloak_config.hostname:
        try:
            hostname = input(
                "Enter Keycloak hostname (e.g., https://auth.example.com): "
            ).strip()
        except EOFError:
            hostname = ""
        if not hostname:
            msg = "Hostname cannot be empty"
            raise OperatorAbort(msg)
        keycloak_config = keycloak_config.model_copy(update={"hostname": hostname})
    log.info("Using hostname: %s", keycloak_config.hostname)
    return keycloak_config


def check_tls_certificates(
    keycloak_config: KeycloakServerConfig, *, assume_yes: bool = False
) -> bool:
    """Warn about missing TLS files and let the operator decide whether to go on."""
    certificate = keycloak_config.tls_certificate_file
    key = keycloak_config.tls_key_file
    if certificate.is_file() and key.is_file():
        log.info("TLS certificates found")
        return True
    log.warning("TLS certificates not found at %s/", keycloak_config.tls_directory)
    log.warning(
        "Please ensure tls.crt and tls.key are placed in %s/ "
        "before starting Keycloak",
        keycloak_config.tls_directory,
    )
    if not confirm("Continue anyway? (y/N): ", assume_yes=assume_yes):
        msg = "TLS certificates missing"
        raise OperatorAbort(msg)
    return False


def run_pyinfra_deploy(
    keycloak_config: KeycloakServerConfig, deploy_file: Path = DEPLOY_FILE
) -> None:
    cmd = [sys.executable, "-m", "pyinfra", "@local", str(deploy_file), "--yes"]
    try:
        run_command(cmd, env=keycloak_config.to_environment())
    except CommandFailedError as exc:
        msg = "Keycloak host deployment failed"
        raise CommandFailedError(
            msg,
            hints=[
                "If setting capabilities failed, install libcap2-bin: "
                "apt-get install libcap2-bin",
                f"Check status with: systemctl status {keycloak_config.service_name}",
                f"Check logs with: journalctl -u {keycloak_config.service_name} -f",
            ],
            returncode=exc.returncode,
        ) from exc


def show_status(service_name: str) -> None:
    print()  # noqa: T201
    log.info("=== Service Status ===")
    run_command(["systemctl", "status", service_name, "--no-pager", "-l"], check=False)


def check_listening_ports(
    https_port: int, http_port: int = KEYCLOAK_HTTP_PORT
) -> ListeningCheck:
    """Inspect `ss -tulpen` for java sockets on the HTTPS and HTTP ports."""
    result = run_command(["ss", "-tulpen"], check=False, capture=True)
    java_sockets = [line for line in result.stdout.splitlines() if "java" in line]

    def listening_on(port: int) -> bool:
        return any(f":{port} " in f"{line} " for line in java_sockets)

    return ListeningCheck(
        https_listening=listening_on(https_port),
        http_listening=listening_on(http_port),
        sockets=java_sockets,
    )


def validate_setup(keycloak_config: KeycloakServerConfig) -> ListeningCheck:
    log.info("Validating setup...")
    show_status(keycloak_config.service_name)

    print()  # noqa: T201
    log.info("=== Port Check ===")
    ports = check_listening_ports(keycloak_config.https_port)
    if ports.https_listening:
        log.info("Keycloak is listening on port %s", keycloak_config.https_port)
        for socket in ports.sockets:
            print(socket)  # noqa: T201
    else:
        log.warning(
            "Keycloak is not listening on port %s yet (may need a moment to start)",
            keycloak_config.https_port,
        )
    if ports.http_listening:
        log.warning(
            "Keycloak is also listening on port %s (unexpected)", KEYCLOAK_HTTP_PORT
        )
    else:
        log.info("No HTTP listener on port %s", KEYCLOAK_HTTP_PORT)

    service = keycloak_config.service_name
    hostname = keycloak_config.hostname
    print()  # noqa: T201
    log.info("=== Validation Complete ===")
    log.info("To check service status: systemctl status %s", service)
    log.info("To view logs: journalctl -u %s -f", service)
    log.info("To test HTTPS: curl -vk %s", hostname)
    log.info(
        "To test OIDC: curl -s %s/realms/master/.well-known/openid-configuration "
        "| jq .issuer",
        hostname,
    )
    return ports


def setup_dev(
    keycloak_config: KeycloakServerConfig,
    *,
    assume_yes: bool = False,
    deploy_file: Path = DEPLOY_FILE,
) -> KeycloakServerConfig:
    """Preflight the host, apply the pyinfra deploy and validate the result."""
    require_root()
    check_keycloak_user(keycloak_config.user)
    check_keycloak_installation(keycloak_config)
    check_java()
    keycloak_config = resolve_hostname(keycloak_config)
    check_tls_certificates(keycloak_config, assume_yes=assume_yes)

    print()  # noqa: T201
    log.info("Starting setup process...")
    run_pyinfra_deploy(keycloak_config, deploy_file)
    log.warning("Note: Capabilities may be lost after Java upgrades")

    time.sleep(STARTUP_GRACE_SECONDS)
    validate_setup(keycloak_config)
    print()  # noqa: T201
    log.info("Setup complete!")
    return keycloak_config


def useful_commands(service_name: str) -> list[str]:
    return [
        f"  Start service:    sudo systemctl start {service_name}",
        f"  Stop service:     sudo systemctl stop {service_name}",
        f"  Restart service:  sudo systemctl restart {service_name}",
        f"  Check status:     systemctl status {service_name}",
        f"  View logs:        journalctl -u {service_name} -f",
        f"  Disable service:  sudo systemctl disable {service_name}",
    ]


def install_unit_file(
    keycloak_config: KeycloakServerConfig,
    service_file: Path | None = None,
    unit_directory: Path = SYSTEMD_UNIT_DIRECTORY,
) -> Path:
    """Copy (or render) the unit file into the systemd unit directory."""
    destination = unit_directory.joinpath(f"{keycloak_config.service_name}.service")
    log.info("Copying service file to %s...", destination)
    if service_file is not None:
        if not service_file.is_file():
            msg = f"Service file not found: {service_file}"
            raise MissingFileError(msg)
        log.info("Service file found: %s", service_file)
        shutil.copyfile(service_file, destination)
    else:
        destination.write_text(keycloak_config.render_systemd_unit())
    destination.chmod(PUBLIC_FILE_MODE)
    log.info("Service file deployed successfully")
    return destination


def deploy_service(
    keycloak_config: KeycloakServerConfig,
    service_file: Path | None = None,
    *,
    start: bool | None = None,
    unit_directory: Path = SYSTEMD_UNIT_DIRECTORY,
) -> bool:
    """Install and enable the unit, optionally starting it.

    :param start: Start the service without asking (True), leave it stopped (False),
        or ask the operator (None).

    :returns: Whether the service was started.
    """
    require_root()
    service = keycloak_config.service_name
    log.info("Deploying Keycloak systemd service...")
    install_unit_file(keycloak_config, service_file, unit_directory)

    log.info("Reloading systemd daemon...")
    run_command(["systemctl", "daemon-reexec"])
    run_command(["systemctl", "daemon-reload"])
    log.info("Systemd daemon reloaded")

    log.info("Enabling Keycloak service...")
    try:
        run_command(["systemctl", "enable", service])
    except CommandFailedError as exc:
        msg = "Failed to enable service"
        raise CommandFailedError(msg, returncode=exc.returncode) from exc
    log.info("Service enabled successfully")

    log.info("Service deployment complete!")
    log.warning("Note: The service is enabled but not started automatically.")
    log.warning("Start it manually with: sudo systemctl start %s", service)
    print()  # noqa: T201
    log.info("=== Useful Commands ===")
    print("\n".join(useful_commands(service)))  # noqa: T201

    print()  # noqa: T201
    if start is None:
        start = confirm("Start the Keycloak service now? (y/N): ")
    if not start:
        return False

    log.info("Starting Keycloak service...")
    try:
        run_command(["systemctl", "start", service])
    except CommandFailedError as exc:
        msg = "Failed to start service"
        raise CommandFailedError(
            msg,
            hints=[f"Check logs with: journalctl -u {service} -f"],
            returncode=exc.returncode,
        ) from exc
    log.info("Service started successfully")
    time.sleep(2)
    show_status(service)
    return True
