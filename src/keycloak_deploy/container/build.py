"""Build the Keycloak container image for one or more architectures.

The official Keycloak base image is only published for some architectures. When it is
available for the requested platform the slimmer `DockerFile.official` is used,
otherwise the image is assembled on a Debian base from `DockerFile`. A failed build on
the official base is retried once on the Debian base.
"""

import logging
from enum import Enum
from pathlib import Path

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from keycloak_deploy.container.engine import ContainerEngine, detect_engine
from keycloak_deploy.container.registry import official_image_available
from keycloak_deploy.lib.command_helpers import run_command
from keycloak_deploy.lib.exceptions import CommandFailedError
from keycloak_deploy.lib.model_helpers import DeploySettings
from keycloak_deploy.lib.versions import KEYCLOAK_VERSION

log = logging.getLogger(__name__)

DEBIAN_DOCKERFILE = "DockerFile"
OFFICIAL_DOCKERFILE = "DockerFile.official"
DEFAULT_BUILD_CONTEXT = Path("dockerfiles", "keycloak")


class BaseImage(Enum):
    AUTO = "auto"
    OFFICIAL = "official"
    DEBIAN = "debian"


class BuildConfig(DeploySettings):
    model_config = SettingsConfigDict(env_prefix="keycloak_build_")
    keycloak_version: str = Field(
        default=KEYCLOAK_VERSION, validation_alias="KEYCLOAK_VERSION"
    )
    dockerfile: str = Field(default=DEBIAN_DOCKERFILE, validation_alias="DOCKERFILE")
    image_name: str = Field(default="keycloak:latest", validation_alias="IMAGE_NAME")
    platform: str | None = Field(default=None, validation_alias="PLATFORM")
    context_directory: Path = DEFAULT_BUILD_CONTEXT
    base_image: BaseImage = BaseImage.AUTO


def resolve_base_image(config: BuildConfig) -> BaseImage:
    if config.base_image is not BaseImage.AUTO:
        return config.base_image
    if config.platform:
        if official_image_available(config.keycloak_version, config.platform):
            return BaseImage.OFFICIAL
        return BaseImage.DEBIAN
    log.info(
        "No platform specified, will attempt official image with automatic fallback"
    )
    return BaseImage.OFFICIAL


def select_dockerfile(config: BuildConfig, base_image: BaseImage) -> str:
    if base_image is BaseImage.OFFICIAL:
        if config.context_directory.joinpath(OFFICIAL_DOCKERFILE).is_file():
            log.info("Using official Keycloak base image (%s)", OFFICIAL_DOCKERFILE)
            return OFFICIAL_DOCKERFILE
        log.warning(
            "%s not found, using %s (Debian base)",
            OFFICIAL_DOCKERFILE,
            config.dockerfile,
        )
        return config.dockerfile
    log.info("Using Debian base image (%s)", config.dockerfile)
    return config.dockerfile


def build_arguments(
    engine: ContainerEngine, config: BuildConfig, dockerfile: str
) -> list[str]:
    return [
        *engine.build_command(config.platform),
        "--build-arg",
        f"KEYCLOAK_VERSION={config.keycloak_version}",
        "--build-arg",
        f"TARGETPLATFORM={config.platform or ''}",
        "-f",
        str(config.context_directory.joinpath(dockerfile)),
        "-t",
        config.image_name,
        str(config.context_directory),
    ]


def build_image(config: BuildConfig, engine: ContainerEngine | None = None) -> str:
    """Build the image and return the Dockerfile that produced it.

    :raises MissingDependencyError: If neither podman nor docker is installed.
    :raises CommandFailedError: If the build fails and no fallback applies.
    """
    engine = engine or detect_engine()
    base_image = resolve_base_image(config)
    dockerfile = select_dockerfile(config, base_image)
    log.info(
        "Building Keycloak image for platform: %s", config.platform or "auto-detect"
    )
    cmd = build_arguments(engine, config, dockerfile)
    log.info("Building with: %s", " ".join(cmd[: cmd.index("--build-arg")]))

    try:
        run_command(cmd)
    except CommandFailedError as exc:
        if dockerfile != OFFICIAL_DOCKERFILE:
            msg = "Build failed"
            raise CommandFailedError(msg, returncode=exc.returncode) from exc
        log.warning("Official image build failed, trying Debian base...")
        if not config.context_directory.joinpath(DEBIAN_DOCKERFILE).is_file():
            msg = f"{DEBIAN_DOCKERFILE} not found, cannot fallback"
            raise CommandFailedError(msg, returncode=exc.returncode) from exc
        log.info("Building with Debian base (%s) as fallback", DEBIAN_DOCKERFILE)
        dockerfile = DEBIAN_DOCKERFILE
        run_command(build_arguments(engine, config, dockerfile))

    log.info("Build complete! Image: %s", config.image_name)
    return dockerfile
