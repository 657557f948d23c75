"""Kubernetes manifests and Helm chart values for running Keycloak.

Each manifest file is a list of resource dictionaries that is dumped as a multi
document YAML stream, so the output can be applied directly with `kubectl apply -f`.
"""

from collections.abc import Iterable
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import SettingsConfigDict

from keycloak_deploy.lib.magic_numbers import (
    DEFAULT_POSTGRES_PORT,
    KEYCLOAK_HTTP_PORT,
    KEYCLOAK_HTTPS_PORT,
    KEYCLOAK_MANAGEMENT_PORT,
)
from keycloak_deploy.lib.model_helpers import DeploySettings
from keycloak_deploy.lib.versions import (
    KEYCLOAK_VERSION,
    OFFICIAL_KEYCLOAK_IMAGE,
    POSTGRES_VERSION,
)

START_DEV_MANIFEST = "keycloak_start_dev.yaml"
START_DEV_HTTPS_MANIFEST = "keycloak_start_dev_https.yaml"
POSTGRES_MANIFEST = "keycloak_postgres.yaml"
HELM_VALUES = "values.yaml"
TLS_MOUNT_PATH = "/etc/x509/https"

Manifest = dict[str, Any]


class ManifestConfig(DeploySettings):
    model_config = SettingsConfigDict(env_prefix="keycloak_k8s_")
    namespace: str = Field(default="keycloak", validation_alias="NAMESPACE")
    secret_name: str = Field(default="keycloak-tls", validation_alias="SECRET_NAME")
    image: str = f"{OFFICIAL_KEYCLOAK_IMAGE}:{KEYCLOAK_VERSION}"
    replicas: int = 1
    admin_username: str = "admin"
    admin_password: str = "admin"  # noqa: S105
    hostname: str | None = None
    postgres_image: str = f"postgres:{POSTGRES_VERSION}"
    postgres_database: str = "keycloak"
    postgres_username: str = "keycloak"
    postgres_password: str = "keycloak"  # noqa: S105
    postgres_storage: str = "5Gi"


def _labels(name: str) -> dict[str, str]:
    return {"app": name, "app.kubernetes.io/name": name}


def _env(values: dict[str, str]) -> list[dict[str, Any]]:
    return [{"name": key, "value": value} for key, value in values.items()]


def _secret_env(name: str, secret: str, key: str) -> dict[str, Any]:
    return {"name": name, "valueFrom": {"secretKeyRef": {"name": secret, "key": key}}}


def keycloak_service(
    cfg: ManifestConfig, port_name: str, port: int, service_type: str = "ClusterIP"
) -> Manifest:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": "keycloak",
            "namespace": cfg.namespace,
            "labels": _labels("keycloak"),
        },
        "spec": {
            "type": service_type,
            "selector": {"app": "keycloak"},
            "ports": [
                {"name": port_name, "port": port, "targetPort": port},
                {
                    "name": "management",
                    "port": KEYCLOAK_MANAGEMENT_PORT,
                    "targetPort": KEYCLOAK_MANAGEMENT_PORT,
                },
            ],
        },
    }


def keycloak_deployment(  # noqa: PLR0913
    cfg: ManifestConfig,
    *,
    args: list[str],
    env: list[dict[str, Any]],
    port_name: str,
    port: int,
    scheme: str,
    volumes: list[dict[str, Any]] | None = None,
    volume_mounts: list[dict[str, Any]] | None = None,
) -> Manifest:
    probe = {
        "httpGet": {
            "path": "/health/ready",
            "port": KEYCLOAK_MANAGEMENT_PORT,
            "scheme": scheme,
        },
        "initialDelaySeconds": 30,
        "periodSeconds": 10,
    }
    container: dict[str, Any] = {
        "name": "keycloak",
        "image": cfg.image,
        "args": args,
        "env": env,
        "ports": [
            {"name": port_name, "containerPort": port},
            {"name": "management", "containerPort": KEYCLOAK_MANAGEMENT_PORT},
        ],
        "readinessProbe": probe,
        "livenessProbe": {
            **probe,
            "httpGet": {**probe["httpGet"], "path": "/health/live"},
        },
        "resources": {
            "requests": {"cpu": "500m", "memory": "1Gi"},
            "limits": {"memory": "2Gi"},
        },
    }
    if volume_mounts:
        container["volumeMounts"] = volume_mounts
    pod_spec: dict[str, Any] = {"containers": [container]}
    if volumes:
        pod_spec["volumes"] = volumes
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {
            "name": "keycloak",
            "namespace": cfg.namespace,
            "labels": _labels("keycloak"),
        },
        "spec": {
            "replicas": cfg.replicas,
            "selector": {"matchLabels": {"app": "keycloak"}},
            "template": {"metadata": {"labels": _labels("keycloak")}, "spec": pod_spec},
        },
    }


def admin_env(cfg: ManifestConfig) -> dict[str, str]:
    return {
        "KC_BOOTSTRAP_ADMIN_USERNAME": cfg.admin_username,
        "KC_BOOTSTRAP_ADMIN_PASSWORD": cfg.admin_password,
        "KC_HEALTH_ENABLED": "true",
    }


def start_dev_manifest(cfg: ManifestConfig) -> list[Manifest]:
    env = _env({**admin_env(cfg), "KC_PROXY_HEADERS": "xforwarded"})
    return [
        keycloak_service(cfg, "http", KEYCLOAK_HTTP_PORT, service_type="LoadBalancer"),
        keycloak_deployment(
            cfg,
            args=["start-dev"],
            env=env,
            port_name="http",
            port=KEYCLOAK_HTTP_PORT,
            scheme="HTTP",
        ),
    ]


def start_dev_https_manifest(cfg: ManifestConfig) -> list[Manifest]:
    settings = {
        **admin_env(cfg),
        "KC_HTTP_ENABLED": "false",
        "KC_HTTPS_PORT": str(KEYCLOAK_HTTPS_PORT),
        "KC_HTTPS_CERTIFICATE_FILE": f"{TLS_MOUNT_PATH}/tls.crt",
        "KC_HTTPS_CERTIFICATE_KEY_FILE": f"{TLS_MOUNT_PATH}/tls.key",
    }
    if cfg.hostname:
        settings["KC_HOSTNAME"] = cfg.hostname
    return [
        keycloak_service(
            cfg, "https", KEYCLOAK_HTTPS_PORT, service_type="LoadBalancer"
        ),
        keycloak_deployment(
            cfg,
            args=["start-dev"],
            env=_env(settings),
            port_name="https",
            port=KEYCLOAK_HTTPS_PORT,
            scheme="HTTPS",
            volumes=[{"name": "tls", "secret": {"secretName": cfg.secret_name}}],
            volume_mounts=[
                {"name": "tls", "mountPath": TLS_MOUNT_PATH, "readOnly": True}
            ],
        ),
    ]


def postgres_manifest(cfg: ManifestConfig) -> list[Manifest]:
    credentials = {
        "apiVersion": "v1",
        "kind": "Secret",
        "type": "Opaque",
        "metadata": {"name": "keycloak-db", "namespace": cfg.namespace},
        "stringData": {
            "database": cfg.postgres_database,
            "username": cfg.postgres_username,
            "password": cfg.postgres_password,
        },
    }
    postgres_service = {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": "postgres",
            "namespace": cfg.namespace,
            "labels": _labels("postgres"),
        },
        "spec": {
            "clusterIP": "None",
            "selector": {"app": "postgres"},
            "ports": [{"name": "postgres", "port": DEFAULT_POSTGRES_PORT}],
        },
    }
    postgres = {
        "apiVersion": "apps/v1",
        "kind": "StatefulSet",
        "metadata": {
            "name": "postgres",
            "namespace": cfg.namespace,
            "labels": _labels("postgres"),
        },
        "spec": {
            "serviceName": "postgres",
            "replicas": 1,
            "selector": {"matchLabels": {"app": "postgres"}},
            "template": {
                "metadata": {"labels": _labels("postgres")},
                "spec": {
                    "containers": [
                        {
                            "name": "postgres",
                            "image": cfg.postgres_image,
                            "ports": [
                                {
                                    "name": "postgres",
                                    "containerPort": DEFAULT_POSTGRES_PORT,
                                }
                            ],
                            "env": [
                                _secret_env("POSTGRES_DB", "keycloak-db", "database"),
                                _secret_env("POSTGRES_USER", "keycloak-db", "username"),
                                _secret_env(
                                    "POSTGRES_PASSWORD", "keycloak-db", "password"
                                ),
                                {
                                    "name": "PGDATA",
                                    "value": "/var/lib/postgresql/data/pgdata",
                                },
                            ],
                            "volumeMounts": [
                                {
                                    "name": "data",
                                    "mountPath": "/var/lib/postgresql/data",
                                }
                            ],
                        }
                    ]
                },
            },
            "volumeClaimTemplates": [
                {
                    "metadata": {"name": "data"},
                    "spec": {
                        "accessModes": ["ReadWriteOnce"],
                        "resources": {"requests": {"storage": cfg.postgres_storage}},
                    },
                }
            ],
        },
    }
    env = [
        *_env(admin_env(cfg)),
        *_env(
            {
                "KC_DB": "postgres",
                "KC_DB_URL": (
                    f"jdbc:postgresql://postgres:{DEFAULT_POSTGRES_PORT}/"
                    f"{cfg.postgres_database}"
                ),
                "KC_HTTP_ENABLED": "true",
                "KC_PROXY_HEADERS": "xforwarded",
            }
        ),
        _secret_env("KC_DB_USERNAME", "keycloak-db", "username"),
        _secret_env("KC_DB_PASSWORD", "keycloak-db", "password"),
    ]
    return [
        credentials,
        postgres_service,
        postgres,
        keycloak_service(cfg, "http", KEYCLOAK_HTTP_PORT),
        keycloak_deployment(
            cfg,
            args=["start-dev"],
            env=env,
            port_name="http",
            port=KEYCLOAK_HTTP_PORT,
            scheme="HTTP",
        ),
    ]


def helm_values(cfg: ManifestConfig) -> dict[str, Any]:
    """Values for the Bitnami Keycloak chart using the pre-created TLS secret."""
    values: dict[str, Any] = {
        "replicaCount": cfg.replicas,
        "production": True,
        "proxyHeaders": "xforwarded",
        "auth": {
            "adminUser": cfg.admin_username,
            "adminPassword": cfg.admin_password,
        },
        "tls": {
            "enabled": True,
            "autoGenerated": False,
            "existingSecret": cfg.secret_name,
            "usePem": True,
        },
        "service": {
            "type": "LoadBalancer",
            "ports": {"https": KEYCLOAK_HTTPS_PORT},
        },
        "postgresql": {
            "enabled": True,
            "auth": {
                "username": cfg.postgres_username,
                "password": cfg.postgres_password,
                "database": cfg.postgres_database,
            },
        },
    }
    if cfg.hostname:
        values["extraEnvVars"] = [{"name": "KC_HOSTNAME", "value": cfg.hostname}]
    return values


def render_documents(documents: Iterable[Manifest]) -> str:
    return yaml.safe_dump_all(list(documents), sort_keys=False)


def render_all(cfg: ManifestConfig) -> dict[str, str]:
    """Map of file name to YAML text for every manifest plus the Helm values."""
    return {
        START_DEV_MANIFEST: render_documents(start_dev_manifest(cfg)),
        START_DEV_HTTPS_MANIFEST: render_documents(start_dev_https_manifest(cfg)),
        POSTGRES_MANIFEST: render_documents(postgres_manifest(cfg)),
        HELM_VALUES: yaml.safe_dump(helm_values(cfg), sort_keys=False),
    }


def write_manifests(cfg: ManifestConfig, output_directory: Path) -> list[Path]:
    output_directory.mkdir(parents=True, exist_ok=True)
    written = []
    for file_name, content in render_all(cfg).items():
        destination = output_directory.joinpath(file_name)
        destination.write_text(content)
        written.append(destination)
    return written
