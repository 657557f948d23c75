# renovate: datasource=github-releases depName=keycloak packageName=keycloak/keycloak
KEYCLOAK_VERSION = "26.4.7"
# renovate: datasource=docker depName=postgres packageName=postgres
POSTGRES_VERSION = "17"
# renovate: datasource=docker depName=dive packageName=wagoodman/dive
DIVE_IMAGE = "wagoodman/dive"
OFFICIAL_KEYCLOAK_IMAGE = "quay.io/keycloak/keycloak"
