"""Errors raised while preparing or deploying Keycloak.

Library code raises these and the command line layer turns them into an error log
line, the attached hints, and a non-zero exit status.
"""

from collections.abc import Sequence


class KeycloakDeployError(Exception):
    """Base class for operator facing failures."""

    exit_code = 1

    def __init__(self, message: str, hints: Sequence[str] = ()):
        super().__init__(message)
        self.message = message
        self.hints = list(hints)


class MissingDependencyError(KeycloakDeployError):
    """A required executable is not available on the PATH."""


class MissingFileError(KeycloakDeployError):
    """A file or directory that the operation depends on does not exist."""


class CommandFailedError(KeycloakDeployError):
    """An external command exited with a non-zero status."""

    def __init__(
        self,
        message: str,
        hints: Sequence[str] = (),
        returncode: int | None = None,
    ):
        super().__init__(message, hints)
        self.returncode = returncode


class PrivilegeError(KeycloakDeployError):
    """The operation needs root privileges or a privileged call was refused."""


class OperatorAbort(KeycloakDeployError):
    """The operator declined to continue."""


class InvalidTemplateError(KeycloakDeployError):
    """A certificate template exists but cannot be used."""
