"""Inspect image layers with dive to find size optimisations."""

import logging

from pydantic import Field

from keycloak_deploy.container.engine import ContainerEngine, detect_engine
from keycloak_deploy.lib.command_helpers import require_binaries, run_command
from keycloak_deploy.lib.exceptions import MissingFileError
from keycloak_deploy.lib.model_helpers import DeploySettings
from keycloak_deploy.lib.versions import DIVE_IMAGE

log = logging.getLogger(__name__)

OPTIMIZATION_TIPS = """\
1. Look for large files that can be removed
2. Check for duplicate files across layers
3. Identify inefficient layer ordering
4. Look for unnecessary packages or files
5. Consider multi-stage builds for build dependencies

Common optimizations:
  - Combine RUN commands to reduce layers
  - Remove package manager cache in same layer
  - Use .dockerignore to exclude unnecessary files
  - Remove build dependencies in final stage
  - Use specific tags instead of 'latest'
"""


def dive_install_hints(image: str) -> list[str]:
    return [
        "Install dive:",
        "  macOS:   brew install dive",
        "  Linux:   See https://github.com/wagoodman/dive#installation",
        "  Windows: See https://github.com/wagoodman/dive#installation",
        "Or use Docker/Podman to run dive:",
        "  docker run --rm -it -v /var/run/docker.sock:/var/run/docker.sock "
        f"{DIVE_IMAGE} {image}",
        "  podman run --rm -it -v /run/podman/podman.sock:/var/run/docker.sock "
        f"{DIVE_IMAGE} {image}",
    ]


class AnalyzeConfig(DeploySettings):
    image_name: str = Field(default="keycloak:latest", validation_alias="IMAGE_NAME")
    ci_mode: bool = Field(default=False, validation_alias="CI_MODE")


def check_dive(image: str) -> str:
    require_binaries(["dive"], {"dive": dive_install_hints(image)})
    result = run_command(["dive", "--version"], check=False, capture=True)
    version = (result.stdout or result.stderr).strip().splitlines()
    log.info("dive found: %s", version[0] if version else "unknown version")
    return version[0] if version else ""


def check_image(engine: ContainerEngine, image: str) -> None:
    if not engine.image_exists(image):
        msg = f"Image '{image}' not found"
        raise MissingFileError(
            msg,
            hints=[
                "Build the image first:",
                f"  {engine.binary} build -t {image} -f DockerFile .",
            ],
        )
    log.info("Using %s to analyze image", engine.binary.capitalize())


def dive_command(engine: ContainerEngine, image: str, *, ci_mode: bool) -> list[str]:
    cmd = [
        engine.binary,
        "run",
        "--rm",
        "-it",
        "-v",
        f"{engine.socket_path}:/var/run/docker.sock",
        DIVE_IMAGE,
        image,
    ]
    if ci_mode:
        cmd.append("--ci")
    return cmd


def analyze_image(config: AnalyzeConfig, engine: ContainerEngine | None = None) -> None:
    """Run dive against the image, interactively unless in CI mode."""
    check_dive(config.image_name)
    engine = engine or detect_engine()
    check_image(engine, config.image_name)

    print()  # noqa: T201
    log.info("=== Optimization Tips ===")
    print(OPTIMIZATION_TIPS)  # noqa: T201

    log.info("Analyzing image: %s", config.image_name)
    if config.ci_mode:
        log.info("Running in CI mode (non-interactive)")
    else:
        log.info("Starting interactive dive analysis...")
        log.info("Use arrow keys to navigate, 'Tab' to switch views, 'Ctrl+C' to exit")
    run_command(dive_command(engine, config.image_name, ci_mode=config.ci_mode))
