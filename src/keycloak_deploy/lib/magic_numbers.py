"""
Module of meaningful integer values.

This module consists of constants that are used to provide meaningful representations of
integer values used when deploying Keycloak.
"""

DEFAULT_HTTPS_PORT = 443
DEFAULT_POSTGRES_PORT = 5432
KEYCLOAK_HTTP_PORT = 8080
KEYCLOAK_HTTPS_PORT = 8443
KEYCLOAK_MANAGEMENT_PORT = 9000
SYSTEMD_RESTART_SECONDS = 5
SYSTEMD_NOFILE_LIMIT = 65535
# File modes
CERTIFICATE_FILE_MODE = 0o644
PUBLIC_FILE_MODE = 0o644
