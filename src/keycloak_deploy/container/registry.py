"""Check whether the official Keycloak image is published for a platform.

Three probes are tried in order: `skopeo inspect --raw`, `docker buildx imagetools
inspect --raw`, and finally the registry's HTTP API using the anonymous bearer token
flow. Each returns the raw image index which is searched for the architecture.
"""

import json
import logging
import re

import httpx

from keycloak_deploy.container.engine import docker_has_buildx
from keycloak_deploy.lib.command_helpers import command_exists, run_command
from keycloak_deploy.lib.exceptions import CommandFailedError, MissingDependencyError
from keycloak_deploy.lib.linux_helpers import normalize_cpu_arch, platform_architecture
from keycloak_deploy.lib.versions import OFFICIAL_KEYCLOAK_IMAGE

log = logging.getLogger(__name__)

HTTP_UNAUTHORIZED = 401
REQUEST_TIMEOUT = 30
MANIFEST_MEDIA_TYPES = ", ".join(
    (
        "application/vnd.oci.image.index.v1+json",
        "application/vnd.docker.distribution.manifest.list.v2+json",
        "application/vnd.oci.image.manifest.v1+json",
        "application/vnd.docker.distribution.manifest.v2+json",
    )
)
CHALLENGE_PARAMETER = re.compile(r'(\w+)="([^"]*)"')


def official_image(version: str) -> str:
    return f"{OFFICIAL_KEYCLOAK_IMAGE}:{version}"


def index_has_architecture(raw_index: str | dict, architecture: str) -> bool:
    """Search an image index (manifest list) for an architecture."""
    index = json.loads(raw_index) if isinstance(raw_index, str) else raw_index
    wanted = normalize_cpu_arch(architecture)
    for manifest in index.get("manifests", []):
        platform = manifest.get("platform") or {}
        if normalize_cpu_arch(platform.get("architecture", "")) == wanted:
            return True
    return False


def split_image_reference(image: str) -> tuple[str, str, str]:
    """Split `registry/repository:tag` into its three parts."""
    registry, _, remainder = image.partition("/")
    repository, _, tag = remainder.rpartition(":")
    if not repository:
        repository, tag = remainder, "latest"
    return registry, repository, tag


def _raw_index_with_skopeo(image: str) -> str:
    result = run_command(
        ["skopeo", "inspect", "--raw", f"docker://{image}"], capture=True, timeout=60
    )
    return result.stdout


def _raw_index_with_buildx(image: str) -> str:
    result = run_command(
        ["docker", "buildx", "imagetools", "inspect", image, "--raw"],
        capture=True,
        timeout=60,
    )
    return result.stdout


def _bearer_token(client: httpx.Client, challenge: str) -> str:
    parameters = dict(CHALLENGE_PARAMETER.findall(challenge))
    realm = parameters.pop("realm")
    response = client.get(realm, params=parameters)
    response.raise_for_status()
    body = response.json()
    return body.get("token") or body["access_token"]


def _raw_index_with_registry_api(image: str) -> dict:
    registry, repository, tag = split_image_reference(image)
    url = f"https://{registry}/v2/{repository}/manifests/{tag}"
    headers = {"Accept": MANIFEST_MEDIA_TYPES}
    with httpx.Client(timeout=REQUEST_TIMEOUT, follow_redirects=True) as client:
        response = client.get(url, headers=headers)
        challenge = response.headers.get("www-authenticate", "")
        if response.status_code == HTTP_UNAUTHORIZED and challenge.startswith(
            "Bearer"
        ):
            token = _bearer_token(client, challenge)
            headers["Authorization"] = f"Bearer {token}"
            response = client.get(url, headers=headers)
        response.raise_for_status()
        return response.json()


def official_image_available(version: str, platform: str) -> bool:
    """Report whether the official image has a manifest for the platform."""
    image = official_image(version)
    architecture = platform_architecture(platform)
    log.info("Checking if official Keycloak image exists for platform: %s", platform)

    try:
        if command_exists("skopeo"):
            raw_index: str | dict = _raw_index_with_skopeo(image)
        elif docker_has_buildx():
            raw_index = _raw_index_with_buildx(image)
        else:
            log.debug("skopeo and docker buildx unavailable, querying the registry")
            raw_index = _raw_index_with_registry_api(image)
        found = index_has_architecture(raw_index, architecture)
    except (
        CommandFailedError,
        MissingDependencyError,
        httpx.HTTPError,
        json.JSONDecodeError,
        KeyError,
    ) as exc:
        log.warning("Cannot check for official image: %s", exc)
        log.warning(
            "Will attempt to build and fall back to Debian base "
            "if official image fails"
        )
        return False

    if found:
        log.info("Official image found for platform %s", platform)
    else:
        log.warning(
            "Official image not found for platform %s, will use Debian base", platform
        )
    return found
