import logging
from dataclasses import dataclass
from enum import Enum

from keycloak_deploy.lib.command_helpers import command_exists, command_succeeds
from keycloak_deploy.lib.exceptions import MissingDependencyError

log = logging.getLogger(__name__)


class EngineName(Enum):
    PODMAN = "podman"
    DOCKER = "docker"


ENGINE_SOCKETS = {
    EngineName.PODMAN: "/run/podman/podman.sock",
    EngineName.DOCKER: "/var/run/docker.sock",
}


@dataclass(frozen=True)
class ContainerEngine:
    """The container CLI available on this machine."""

    name: EngineName
    has_buildx: bool = False

    @property
    def binary(self) -> str:
        return self.name.value

    @property
    def socket_path(self) -> str:
        return ENGINE_SOCKETS[self.name]

    def build_command(self, platform: str | None = None) -> list[str]:
        """The build invocation, including the platform flag when it is honored."""
        if self.name is EngineName.PODMAN:
            cmd = ["podman", "build"]
            if platform:
                cmd.extend(["--platform", platform])
            return cmd
        if platform and self.has_buildx:
            return ["docker", "buildx", "build", "--platform", platform]
        if platform:
            log.warning("Docker buildx not available, platform flag may not work")
        return ["docker", "build"]

    def image_exists_command(self, image: str) -> list[str]:
        if self.name is EngineName.PODMAN:
            return ["podman", "image", "exists", image]
        return ["docker", "image", "inspect", image]

    def image_exists(self, image: str) -> bool:
        return command_succeeds(self.image_exists_command(image))


def docker_has_buildx() -> bool:
    return command_exists("docker") and command_succeeds(
        ["docker", "buildx", "version"]
    )


def detect_engine() -> ContainerEngine:
    """Prefer podman, fall back to docker.

    :raises MissingDependencyError: If neither podman nor docker is installed.
    """
    if command_exists("podman"):
        return ContainerEngine(EngineName.PODMAN)
    if command_exists("docker"):
        return ContainerEngine(EngineName.DOCKER, has_buildx=docker_has_buildx())
    msg = "Neither podman nor docker found"
    raise MissingDependencyError(msg)
