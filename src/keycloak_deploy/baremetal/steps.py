from io import StringIO

from pyinfra import host
from pyinfra.api import deploy
from pyinfra.facts.files import File
from pyinfra.facts.server import LinuxDistribution
from pyinfra.operations import files, server, systemd

from keycloak_deploy.baremetal.facts import FileCapabilities, JavaBinary
from keycloak_deploy.baremetal.models import KeycloakServerConfig
from keycloak_deploy.lib.linux_helpers import (
    DEFAULT_DIRECTORY_MODE,
    libcap_package,
    linux_family,
)

NET_BIND_CAPABILITY = "cap_net_bind_service=+ep"
# getcap reports granted capabilities without the "+"
GRANTED_NET_BIND_CAPABILITY = "cap_net_bind_service=ep"


@deploy("Write Keycloak configuration")
def configure_keycloak(keycloak_config: KeycloakServerConfig):
    files.directory(
        name="Create Keycloak configuration directory",
        path=str(keycloak_config.conf_directory),
        user="root",
        group="root",
        mode=DEFAULT_DIRECTORY_MODE,
        present=True,
    )
    keycloak_conf = files.put(
        name="Create keycloak.conf",
        src=StringIO(keycloak_config.render_keycloak_conf()),
        dest=str(keycloak_config.conf_file),
        user="root",
        group="root",
        mode="644",
    )
    return keycloak_conf.changed


@deploy("Prepare Keycloak TLS directory")
def prepare_tls_directory(keycloak_config: KeycloakServerConfig):
    files.directory(
        name="Create Keycloak TLS directory",
        path=str(keycloak_config.tls_directory),
        user="root",
        group=keycloak_config.user,
        mode="750",
        present=True,
    )
    tls_files = (
        (keycloak_config.tls_key_file, "640"),
        (keycloak_config.tls_certificate_file, "644"),
    )
    for tls_file, mode in tls_files:
        if host.get_fact(File, path=str(tls_file)):
            files.file(
                name=f"Set permissions on {tls_file.name}",
                path=str(tls_file),
                user="root",
                group=keycloak_config.user,
                mode=mode,
                present=True,
            )


@deploy("Allow Java to bind to privileged ports")
def grant_java_bind_capability(keycloak_config: KeycloakServerConfig):  # noqa: ARG001
    distribution = host.get_fact(LinuxDistribution)
    package = libcap_package(
        linux_family(distribution["name"], distribution["release_meta"])
    )
    # Other distributions are expected to ship setcap already
    if package:
        server.packages(
            name="Install setcap and getcap",
            packages=[package],
            present=True,
        )
    java_binary = host.get_fact(JavaBinary)
    granted = host.get_fact(FileCapabilities, path=java_binary)
    if granted != GRANTED_NET_BIND_CAPABILITY:
        server.shell(
            name=f"Set {NET_BIND_CAPABILITY} on {java_binary}",
            commands=[f"setcap '{NET_BIND_CAPABILITY}' {java_binary}"],
        )


@deploy("Register Keycloak service")
def register_keycloak_service(
    keycloak_config: KeycloakServerConfig,
    start_service_immediately: bool = True,  # noqa: FBT001, FBT002
):
    systemd_unit = files.put(
        name=f"Create service definition for {keycloak_config.service_name}",
        src=StringIO(keycloak_config.render_systemd_unit()),
        dest=str(keycloak_config.systemd_unit_file),
        user="root",
        group="root",
        mode="644",
    )
    systemd.service(
        name=f"Register service for {keycloak_config.service_name}",
        service=keycloak_config.service_name,
        running=start_service_immediately,
        enabled=True,
        daemon_reload=systemd_unit.changed,
    )
