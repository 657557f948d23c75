"""Tests for engine selection and image builds.

The container engine is never invoked; run_command and the registry probe are replaced
with fakes that record what would have been executed.
"""

import subprocess

import pytest

from keycloak_deploy.container import build, engine
from keycloak_deploy.container.build import (
    DEBIAN_DOCKERFILE,
    DEFAULT_BUILD_CONTEXT,
    OFFICIAL_DOCKERFILE,
    BaseImage,
    BuildConfig,
    build_arguments,
    build_image,
)
from keycloak_deploy.container.engine import ContainerEngine, EngineName, detect_engine
from keycloak_deploy.lib.exceptions import CommandFailedError, MissingDependencyError

PODMAN = ContainerEngine(EngineName.PODMAN)


@pytest.fixture
def context_directory(tmp_path):
    """A build context containing both Dockerfiles."""
    directory = tmp_path / "keycloak"
    directory.mkdir()
    (directory / DEBIAN_DOCKERFILE).write_text("FROM debian:trixie-slim\n")
    (directory / OFFICIAL_DOCKERFILE).write_text("FROM quay.io/keycloak/keycloak\n")
    return directory


@pytest.fixture
def commands(monkeypatch):
    """Record build commands; any command using a Dockerfile in `failing` exits 1."""
    recorded = []
    failing = set()

    def fake_run_command(cmd, **kwargs):
        recorded.append(cmd)
        dockerfile = cmd[cmd.index("-f") + 1]
        if any(dockerfile.endswith(f"/{name}") for name in failing):
            raise CommandFailedError("build failed", returncode=1)
        return subprocess.CompletedProcess(cmd, 0)

    monkeypatch.setattr(build, "run_command", fake_run_command)
    fake_run_command.recorded = recorded
    fake_run_command.failing = failing
    return fake_run_command


@pytest.fixture
def official_available(monkeypatch):
    """Control the answer of the official image probe."""
    probes = []

    def _set(available):
        def fake_probe(version, platform):
            probes.append((version, platform))
            return available

        monkeypatch.setattr(build, "official_image_available", fake_probe)
        return probes

    return _set


class TestContainerEngine:
    """Test engine detection and build invocations."""

    def test_prefers_podman(self, monkeypatch):
        """Podman wins when both engines are installed."""
        monkeypatch.setattr(engine, "command_exists", lambda binary: True)
        assert detect_engine() == ContainerEngine(EngineName.PODMAN)

    def test_docker_with_buildx(self, monkeypatch):
        """Docker is used when podman is missing, remembering buildx support."""
        monkeypatch.setattr(engine, "command_exists", lambda binary: binary == "docker")
        monkeypatch.setattr(engine, "command_succeeds", lambda cmd: True)
        assert detect_engine() == ContainerEngine(EngineName.DOCKER, has_buildx=True)

    def test_no_engine(self, monkeypatch):
        """Without podman or docker nothing can be built."""
        monkeypatch.setattr(engine, "command_exists", lambda binary: False)
        with pytest.raises(MissingDependencyError, match="Neither podman nor docker"):
            detect_engine()

    def test_build_commands(self, caplog):
        """The platform flag is passed only where the engine honors it."""
        docker = ContainerEngine(EngineName.DOCKER)
        buildx = ContainerEngine(EngineName.DOCKER, has_buildx=True)

        assert PODMAN.build_command("linux/arm64") == [
            "podman",
            "build",
            "--platform",
            "linux/arm64",
        ]
        assert PODMAN.build_command() == ["podman", "build"]
        assert buildx.build_command("linux/arm64") == [
            "docker",
            "buildx",
            "build",
            "--platform",
            "linux/arm64",
        ]
        assert docker.build_command("linux/arm64") == ["docker", "build"]
        assert "buildx not available" in caplog.text

    def test_image_exists_commands(self):
        """Each engine has its own way of checking for a local image."""
        assert PODMAN.image_exists_command("keycloak:latest") == [
            "podman",
            "image",
            "exists",
            "keycloak:latest",
        ]
        assert ContainerEngine(EngineName.DOCKER).image_exists_command("kc") == [
            "docker",
            "image",
            "inspect",
            "kc",
        ]


class TestBuildConfig:
    """Test build settings."""

    def test_environment(self, monkeypatch):
        """Settings come from the same variables the build has always used."""
        monkeypatch.setenv("KEYCLOAK_VERSION", "26.0.0")
        monkeypatch.setenv("IMAGE_NAME", "registry.example.com/keycloak:dev")
        monkeypatch.setenv("PLATFORM", "linux/arm64")

        config = BuildConfig()

        assert config.keycloak_version == "26.0.0"
        assert config.image_name == "registry.example.com/keycloak:dev"
        assert config.platform == "linux/arm64"
        assert config.base_image is BaseImage.AUTO

    def test_generic_variables_ignored(self, monkeypatch):
        """BASE_IMAGE and CONTEXT_DIRECTORY need the KEYCLOAK_BUILD_ prefix."""
        monkeypatch.setenv("BASE_IMAGE", "debian")
        monkeypatch.setenv("CONTEXT_DIRECTORY", "/tmp/elsewhere")
        monkeypatch.setenv("KEYCLOAK_BUILD_BASE_IMAGE", "official")

        config = BuildConfig()

        assert config.base_image is BaseImage.OFFICIAL
        assert config.context_directory == DEFAULT_BUILD_CONTEXT

    def test_build_arguments(self, context_directory):
        """Version and platform are passed as build arguments."""
        config = BuildConfig(
            keycloak_version="26.4.7",
            platform="linux/amd64",
            context_directory=context_directory,
        )

        assert build_arguments(PODMAN, config, OFFICIAL_DOCKERFILE) == [
            "podman",
            "build",
            "--platform",
            "linux/amd64",
            "--build-arg",
            "KEYCLOAK_VERSION=26.4.7",
            "--build-arg",
            "TARGETPLATFORM=linux/amd64",
            "-f",
            str(context_directory / OFFICIAL_DOCKERFILE),
            "-t",
            "keycloak:latest",
            str(context_directory),
        ]


class TestBuildImage:
    """Test base image selection and fallback."""

    def test_official_image_for_supported_platform(
        self, context_directory, commands, official_available
    ):
        """A published official image is used as the base."""
        probes = official_available(True)
        config = BuildConfig(
            platform="linux/amd64", context_directory=context_directory
        )

        assert build_image(config, PODMAN) == OFFICIAL_DOCKERFILE
        assert probes == [(config.keycloak_version, "linux/amd64")]
        assert len(commands.recorded) == 1

    def test_debian_for_unsupported_platform(
        self, context_directory, commands, official_available
    ):
        """Without an official image the Debian base is built directly."""
        official_available(False)
        config = BuildConfig(
            platform="linux/ppc64le", context_directory=context_directory
        )

        assert build_image(config, PODMAN) == DEBIAN_DOCKERFILE
        assert len(commands.recorded) == 1

    def test_force_debian_skips_probe(
        self, context_directory, commands, official_available
    ):
        """--force-debian never queries the registry."""
        probes = official_available(True)
        config = BuildConfig(
            platform="linux/amd64",
            base_image=BaseImage.DEBIAN,
            context_directory=context_directory,
        )

        assert build_image(config, PODMAN) == DEBIAN_DOCKERFILE
        assert probes == []

    def test_no_platform_tries_official(
        self, context_directory, commands, official_available
    ):
        """Without a platform the official base is attempted without probing."""
        probes = official_available(False)
        config = BuildConfig(context_directory=context_directory)

        assert build_image(config, PODMAN) == OFFICIAL_DOCKERFILE
        assert probes == []

    def test_falls_back_to_debian(
        self, context_directory, commands, official_available
    ):
        """A failed official build is retried once on the Debian base."""
        official_available(True)
        commands.failing.add(OFFICIAL_DOCKERFILE)
        config = BuildConfig(
            platform="linux/amd64", context_directory=context_directory
        )

        assert build_image(config, PODMAN) == DEBIAN_DOCKERFILE
        assert len(commands.recorded) == 2

    def test_debian_failure_is_fatal(
        self, context_directory, commands, official_available
    ):
        """There is nothing to fall back to from the Debian base."""
        commands.failing.add(DEBIAN_DOCKERFILE)
        config = BuildConfig(
            base_image=BaseImage.DEBIAN, context_directory=context_directory
        )

        with pytest.raises(CommandFailedError, match="Build failed"):
            build_image(config, PODMAN)
        assert len(commands.recorded) == 1

    def test_missing_official_dockerfile(
        self, context_directory, commands, official_available
    ):
        """Without DockerFile.official the Debian Dockerfile is used."""
        official_available(True)
        (context_directory / OFFICIAL_DOCKERFILE).unlink()
        config = BuildConfig(
            platform="linux/amd64", context_directory=context_directory
        )

        assert build_image(config, PODMAN) == DEBIAN_DOCKERFILE
