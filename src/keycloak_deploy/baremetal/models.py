from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined
from pydantic import field_validator
from pydantic_settings import SettingsConfigDict

from keycloak_deploy.lib.linux_helpers import SYSTEMD_UNIT_DIRECTORY
from keycloak_deploy.lib.magic_numbers import (
    DEFAULT_HTTPS_PORT,
    SYSTEMD_NOFILE_LIMIT,
    SYSTEMD_RESTART_SECONDS,
)
from keycloak_deploy.lib.model_helpers import DeploySettings

TEMPLATES_DIRECTORY = Path(__file__).resolve().parent.joinpath("templates")


def template_environment() -> Environment:
    return Environment(
        loader=FileSystemLoader(TEMPLATES_DIRECTORY),
        keep_trailing_newline=True,
        undefined=StrictUndefined,
        autoescape=False,  # noqa: S701
    )


class KeycloakServerConfig(DeploySettings):
    """Settings for a Keycloak server installed directly on a host.

    Values can be supplied through `KEYCLOAK_` prefixed environment variables, e.g.
    `KEYCLOAK_HOSTNAME=https://auth.example.com`.
    """

    model_config = SettingsConfigDict(env_prefix="keycloak_")
    user: str = "keycloak"
    home: Path = Path("/opt/keycloak")
    tls_directory: Path = Path("/etc/keycloak/tls")
    service_name: str = "keycloak"
    hostname: str | None = None
    http_enabled: bool = False
    https_port: int = DEFAULT_HTTPS_PORT
    hostname_strict: bool = True
    hostname_strict_https: bool = True
    management_scheme: str = "inherited"
    start_command: str = "start-dev"

    @field_validator("hostname")
    @classmethod
    def hostname_not_blank(cls, hostname: str | None) -> str | None:
        if hostname is not None and not hostname.strip():
            msg = "Hostname cannot be empty"
            raise ValueError(msg)
        return hostname.strip() if hostname else hostname

    @property
    def conf_directory(self) -> Path:
        return self.home.joinpath("conf")

    @property
    def conf_file(self) -> Path:
        return self.conf_directory.joinpath("keycloak.conf")

    @property
    def kc_script(self) -> Path:
        return self.home.joinpath("bin", "kc.sh")

    @property
    def tls_certificate_file(self) -> Path:
        return self.tls_directory.joinpath("tls.crt")

    @property
    def tls_key_file(self) -> Path:
        return self.tls_directory.joinpath("tls.key")

    @property
    def systemd_unit_file(self) -> Path:
        return SYSTEMD_UNIT_DIRECTORY.joinpath(f"{self.service_name}.service")

    @property
    def keycloak_conf_context(self) -> dict[str, Any]:
        return {
            "http_enabled": self.http_enabled,
            "https_port": self.https_port,
            "tls_certificate_file": self.tls_certificate_file,
            "tls_key_file": self.tls_key_file,
            "hostname": self.hostname,
            "hostname_strict": self.hostname_strict,
            "hostname_strict_https": self.hostname_strict_https,
            "management_scheme": self.management_scheme,
        }

    @property
    def systemd_template_context(self) -> dict[str, Any]:
        return {
            "user": self.user,
            "group": self.user,
            "home": self.home,
            "start_command": self.start_command,
            "conf_directory": self.conf_directory,
            "read_write_paths": [self.home, self.tls_directory.parent],
            "restart_seconds": SYSTEMD_RESTART_SECONDS,
            "nofile_limit": SYSTEMD_NOFILE_LIMIT,
        }

    def render_keycloak_conf(self) -> str:
        if not self.hostname:
            msg = "A hostname is required to render keycloak.conf"
            raise ValueError(msg)
        template = template_environment().get_template("keycloak.conf.j2")
        return template.render(**self.keycloak_conf_context)

    def render_systemd_unit(self) -> str:
        template = template_environment().get_template("keycloak.service.j2")
        return template.render(**self.systemd_template_context)

    def to_environment(self) -> dict[str, str]:
        """Environment variables that reproduce this configuration in a subprocess."""
        environment = {}
        for field_name, value in self.model_dump(exclude_none=True).items():
            rendered = str(value).lower() if isinstance(value, bool) else str(value)
            environment[f"KEYCLOAK_{field_name.upper()}"] = rendered
        return environment
