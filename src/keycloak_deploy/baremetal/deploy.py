"""pyinfra deploy for a development Keycloak server listening on port 443.

Run with `pyinfra @local src/keycloak_deploy/baremetal/deploy.py`; settings are read
from `KEYCLOAK_` prefixed environment variables (see KeycloakServerConfig).
`keycloak-deploy baremetal setup-dev` runs its preflight checks and then invokes this
file the same way.
"""

from keycloak_deploy.baremetal.models import KeycloakServerConfig
from keycloak_deploy.baremetal.steps import (
    configure_keycloak,
    grant_java_bind_capability,
    prepare_tls_directory,
    register_keycloak_service,
)

keycloak_config = KeycloakServerConfig()

configure_keycloak(keycloak_config)
prepare_tls_directory(keycloak_config)
grant_java_bind_capability(keycloak_config)
register_keycloak_service(keycloak_config, start_service_immediately=True)
