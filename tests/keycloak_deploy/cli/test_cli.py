"""Tests for the keycloak-deploy command functions."""

import json

import pytest

from keycloak_deploy import cli
from keycloak_deploy.container import run
from keycloak_deploy.container.engine import ContainerEngine, EngineName


@pytest.fixture
def workdir(tmp_path):
    return tmp_path / "work"


class TestCerts:
    """Test the certs command."""

    def test_usage_without_actions(self, capsys):
        """No action flags prints usage and succeeds."""
        cli.certs()

        assert "Usage: keycloak-deploy certs" in capsys.readouterr().out

    def test_all_then_verify(self, workdir, template_directory, capsys):
        """--all creates the CA and keycloak certificate which --verify then lists."""
        cli.certs(all_=True, base_dir=workdir, template_dir=template_directory)
        created = capsys.readouterr().out

        cli.certs(verify=True, base_dir=workdir, template_dir=template_directory)
        verified = capsys.readouterr().out

        assert "certs/ca/servers/keycloak.p12" in created
        assert "Subject: CN=Keycloak Root CA" in verified
        assert "Issued by CA: yes" in verified
        assert (workdir / "certs" / "ca" / "servers" / "keycloak.crt").is_file()

    def test_named_servers(self, workdir, template_directory):
        """--server and positional names each get a certificate."""
        cli.certs(
            "api",
            server=["admin"],
            base_dir=workdir,
            template_dir=template_directory,
        )

        servers = workdir / "certs" / "ca" / "servers"
        assert (servers / "admin.crt").is_file()
        assert (servers / "api.crt").is_file()
        assert not (servers / "keycloak.crt").exists()

    def test_verify_without_ca_exits(self, workdir, template_directory, capsys):
        """Errors are logged and turned into exit status 1."""
        with pytest.raises(SystemExit) as exc_info:
            cli.certs(verify=True, base_dir=workdir, template_dir=template_directory)

        assert exc_info.value.code == 1
        assert "[ERROR] CA not found" in capsys.readouterr().err

    def test_missing_templates_exit(self, workdir, tmp_path):
        """A template directory without templates is rejected up front."""
        with pytest.raises(SystemExit):
            cli.certs(create_ca_=True, base_dir=workdir, template_dir=tmp_path)

        assert not (workdir / "certs").exists()

    def test_invalid_template_exits(self, workdir, template_directory, capsys):
        """A template failing validation is an error line, not a traceback."""
        request = template_directory / "cert-config.json"
        document = json.loads(request.read_text())
        document["key"]["size"] = 1024
        request.write_text(json.dumps(document))

        with pytest.raises(SystemExit) as exc_info:
            cli.certs(all_=True, base_dir=workdir, template_dir=template_directory)

        err = capsys.readouterr().err
        assert exc_info.value.code == 1
        assert f"[ERROR] Invalid certificate template {request}" in err
        assert "Unsupported RSA key size 1024" in err

    def test_missing_signing_profile_exits(self, workdir, template_directory, capsys):
        """A CA configuration without the server profile is reported."""
        signing = template_directory / "ca-config.json"
        document = json.loads(signing.read_text())
        del document["signing"]["profiles"]["server"]
        signing.write_text(json.dumps(document))

        with pytest.raises(SystemExit) as exc_info:
            cli.certs(all_=True, base_dir=workdir, template_dir=template_directory)

        assert exc_info.value.code == 1
        assert "[ERROR] Signing profile 'server' is not defined" in (
            capsys.readouterr().err
        )

    def test_missing_ca_key_exits(self, workdir, template_directory, capsys):
        """An existing CA certificate without its key cannot sign."""
        cli.certs(create_ca_=True, base_dir=workdir, template_dir=template_directory)
        (workdir / "certs" / "ca" / "ca-key.pem").unlink()

        with pytest.raises(SystemExit) as exc_info:
            cli.certs("api", base_dir=workdir, template_dir=template_directory)

        err = capsys.readouterr().err
        assert exc_info.value.code == 1
        assert "[ERROR] CA key not found" in err
        assert "  keycloak-deploy certs --force-ca" in err
        assert not (workdir / "certs" / "ca" / "servers" / "api-config.json").exists()

    def test_repeated_name_issued_once(self, workdir, template_directory, capsys):
        """--all plus an explicit keycloak name issues a single certificate."""
        cli.certs(
            "keycloak",
            all_=True,
            server=["keycloak"],
            base_dir=workdir,
            template_dir=template_directory,
        )

        assert capsys.readouterr().out.count("  Certificate: ") == 1


class TestRenderCommands:
    """Test commands that only render files."""

    def test_k8s_render_stdout(self, capsys):
        """Manifests are printed with a file name header each."""
        cli.k8s_render(namespace="identity")
        out = capsys.readouterr().out

        assert "# keycloak_start_dev_https.yaml" in out
        assert "# values.yaml" in out
        assert "namespace: identity" in out

    def test_k8s_render_options_beat_environment(self, monkeypatch, capsys):
        """Command line values take priority over NAMESPACE."""
        monkeypatch.setenv("NAMESPACE", "from-environment")

        cli.k8s_render(namespace="from-option")
        out = capsys.readouterr().out

        assert "namespace: from-option" in out
        assert "from-environment" not in out

    def test_k8s_render_files(self, tmp_path):
        """--output-dir writes the files instead."""
        cli.k8s_render(output_dir=tmp_path, hostname="https://auth.example.com")

        assert "KC_HOSTNAME" in (tmp_path / "keycloak_start_dev_https.yaml").read_text()

    def test_baremetal_render_requires_hostname(self, capsys):
        """keycloak.conf needs a hostname."""
        with pytest.raises(SystemExit) as exc_info:
            cli.baremetal_render()

        assert exc_info.value.code == 1
        assert "hostname is required" in capsys.readouterr().err

    def test_baremetal_render_files(self, tmp_path, monkeypatch):
        """The hostname can come from KEYCLOAK_HOSTNAME."""
        monkeypatch.setenv("KEYCLOAK_HOSTNAME", "https://auth.example.com")

        cli.baremetal_render(output_dir=tmp_path)

        assert "hostname=https://auth.example.com" in (
            tmp_path / "keycloak.conf"
        ).read_text()
        assert (tmp_path / "keycloak.service").is_file()


class TestImageRun:
    """Test option handling for image run."""

    def test_dry_run(self, tmp_path, template_directory, monkeypatch, capsys):
        """CLI options override settings and the command is printed."""
        cli.certs(
            server=["keycloak"], base_dir=tmp_path, template_dir=template_directory
        )
        capsys.readouterr()
        monkeypatch.setattr(
            run, "detect_engine", lambda: ContainerEngine(EngineName.PODMAN)
        )

        cli.image_run(base_dir=tmp_path, port=443, production=True, dry_run=True)
        out = capsys.readouterr().out

        assert out.startswith("podman run --detach")
        assert "443:8443" in out
        assert out.strip().endswith("keycloak:latest start")


def test_settings_overrides():
    """Unset options are dropped so settings fall back to the environment."""
    assert cli.settings_overrides(namespace=None, replicas=2, production=False) == {
        "replicas": 2,
        "production": False,
    }
