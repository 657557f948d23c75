"""Tests for the rendered Kubernetes manifests and Helm values."""

import pytest
import yaml

from keycloak_deploy.k8s.manifests import (
    HELM_VALUES,
    POSTGRES_MANIFEST,
    START_DEV_HTTPS_MANIFEST,
    START_DEV_MANIFEST,
    ManifestConfig,
    helm_values,
    postgres_manifest,
    render_all,
    start_dev_https_manifest,
    write_manifests,
)
from keycloak_deploy.lib.versions import KEYCLOAK_VERSION, OFFICIAL_KEYCLOAK_IMAGE


def env_names(deployment):
    container = deployment["spec"]["template"]["spec"]["containers"][0]
    return {variable["name"]: variable for variable in container["env"]}


@pytest.fixture
def cfg():
    return ManifestConfig(hostname="https://auth.example.com")


class TestManifests:
    """Test the individual manifests."""

    def test_https_mounts_tls_secret(self, cfg):
        """The HTTPS deployment reads its certificate from the TLS secret."""
        service, deployment = start_dev_https_manifest(cfg)
        pod = deployment["spec"]["template"]["spec"]
        env = env_names(deployment)

        assert service["spec"]["ports"][0]["port"] == 8443
        assert pod["volumes"] == [
            {"name": "tls", "secret": {"secretName": "keycloak-tls"}}
        ]
        assert pod["containers"][0]["volumeMounts"][0]["mountPath"] == (
            "/etc/x509/https"
        )
        assert env["KC_HTTPS_CERTIFICATE_FILE"]["value"] == "/etc/x509/https/tls.crt"
        assert env["KC_HTTP_ENABLED"]["value"] == "false"
        assert env["KC_HOSTNAME"]["value"] == "https://auth.example.com"

    def test_postgres_credentials_from_secret(self, cfg):
        """Keycloak and Postgres read database credentials from the same secret."""
        kinds = [document["kind"] for document in postgres_manifest(cfg)]
        secret, _, statefulset, _, deployment = postgres_manifest(cfg)
        env = env_names(deployment)

        assert kinds == ["Secret", "Service", "StatefulSet", "Service", "Deployment"]
        assert secret["metadata"]["name"] == "keycloak-db"
        assert statefulset["spec"]["template"]["spec"]["containers"][0]["image"] == (
            "postgres:17"
        )
        assert env["KC_DB"]["value"] == "postgres"
        assert env["KC_DB_URL"]["value"] == "jdbc:postgresql://postgres:5432/keycloak"
        assert env["KC_DB_PASSWORD"]["valueFrom"]["secretKeyRef"] == {
            "name": "keycloak-db",
            "key": "password",
        }

    def test_helm_values(self, cfg):
        """Helm values reuse the pre-created TLS secret."""
        values = helm_values(cfg)

        assert values["tls"] == {
            "enabled": True,
            "autoGenerated": False,
            "existingSecret": "keycloak-tls",
            "usePem": True,
        }
        assert values["extraEnvVars"] == [
            {"name": "KC_HOSTNAME", "value": "https://auth.example.com"}
        ]

    def test_no_hostname(self):
        """KC_HOSTNAME is only set when a hostname is configured."""
        _, deployment = start_dev_https_manifest(ManifestConfig())

        assert "KC_HOSTNAME" not in env_names(deployment)
        assert "extraEnvVars" not in helm_values(ManifestConfig())


class TestRendering:
    """Test YAML output."""

    def test_render_all(self, cfg):
        """Every manifest is valid multi document YAML in the configured namespace."""
        rendered = render_all(cfg)

        assert list(rendered) == [
            START_DEV_MANIFEST,
            START_DEV_HTTPS_MANIFEST,
            POSTGRES_MANIFEST,
            HELM_VALUES,
        ]
        for name in (START_DEV_MANIFEST, START_DEV_HTTPS_MANIFEST, POSTGRES_MANIFEST):
            documents = list(yaml.safe_load_all(rendered[name]))
            assert all(doc["metadata"]["namespace"] == "keycloak" for doc in documents)
        assert yaml.safe_load(rendered[HELM_VALUES])["replicaCount"] == 1

    def test_environment_settings(self, monkeypatch):
        """Namespace comes from NAMESPACE and the image from KEYCLOAK_K8S_IMAGE."""
        monkeypatch.setenv("NAMESPACE", "identity")
        monkeypatch.setenv("KEYCLOAK_K8S_IMAGE", "registry.example.com/keycloak:26.4.7")

        documents = list(
            yaml.safe_load_all(render_all(ManifestConfig())[START_DEV_MANIFEST])
        )

        assert documents[0]["metadata"]["namespace"] == "identity"
        container = documents[1]["spec"]["template"]["spec"]["containers"][0]
        assert container["image"] == "registry.example.com/keycloak:26.4.7"

    def test_write_manifests(self, cfg, tmp_path):
        """One file is written per manifest."""
        written = write_manifests(cfg, tmp_path / "k8s")

        assert sorted(path.name for path in written) == sorted(
            [
                START_DEV_MANIFEST,
                START_DEV_HTTPS_MANIFEST,
                POSTGRES_MANIFEST,
                HELM_VALUES,
            ]
        )
        assert all(path.read_text() for path in written)

    def test_generic_variables_ignored(self, monkeypatch):
        """IMAGE, REPLICAS and HOSTNAME set for other tools are not picked up."""
        monkeypatch.setenv("IMAGE", "example/other:latest")
        monkeypatch.setenv("REPLICAS", "7")
        monkeypatch.setenv("HOSTNAME", "build-host")
        monkeypatch.setenv("ADMIN_PASSWORD", "leaked")

        cfg = ManifestConfig()

        assert cfg.image == f"{OFFICIAL_KEYCLOAK_IMAGE}:{KEYCLOAK_VERSION}"
        assert cfg.replicas == 1
        assert cfg.hostname is None
        assert cfg.admin_password == "admin"  # noqa: S105
