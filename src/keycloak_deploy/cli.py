"""Command line entry point: `keycloak-deploy <certs|image|k8s|baremetal> ...`."""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated, Any

import cyclopts
from cyclopts import Parameter

from keycloak_deploy.baremetal.models import KeycloakServerConfig
from keycloak_deploy.baremetal.service import deploy_service, setup_dev
from keycloak_deploy.certs.authority import (
    DEFAULT_KEYSTORE_PASSWORD,
    DEFAULT_SERVER_NAME,
    CertificateLayout,
    CertificateSummary,
    check_templates,
    create_ca,
    create_server_certificate,
    fix_permissions,
    regenerate_ca,
    verify_certificates,
)
from keycloak_deploy.certs.models import DEFAULT_TEMPLATE_DIRECTORY
from keycloak_deploy.container.analyze import AnalyzeConfig, analyze_image
from keycloak_deploy.container.build import BaseImage, BuildConfig, build_image
from keycloak_deploy.container.run import RunConfig, TLSMode, run_container
from keycloak_deploy.k8s.manifests import ManifestConfig, render_all, write_manifests
from keycloak_deploy.k8s.tls_secret import TLSSecretConfig, create_tls_secret
from keycloak_deploy.lib.exceptions import KeycloakDeployError
from keycloak_deploy.lib.logging_helpers import configure_logging

log = logging.getLogger("keycloak_deploy.cli")

# Boolean options without a generated --no-<flag> counterpart
Flag = Parameter(negative="")

CERTS_USAGE = """\
Usage: keycloak-deploy certs [OPTIONS] [SERVER_NAME...]

Create or update Keycloak certificates.

OPTIONS:
    -c, --create-ca          Create CA only (if it doesn't exist)
    -f, --force-ca           Force regeneration of CA
    -s, --server NAME        Create server certificate (default: keycloak)
    -a, --all                Create CA and default server certificate
    -v, --verify             Verify existing certificates
    -p, --fix-permissions    Fix permissions for container use (readable by UID 1000)

EXAMPLES:
    keycloak-deploy certs --all                 # Create CA and keycloak server cert
    keycloak-deploy certs --create-ca           # Create CA only
    keycloak-deploy certs --server keycloak     # Create keycloak server cert
    keycloak-deploy certs --server new-server   # Create new-server certificate
    keycloak-deploy certs --force-ca            # Regenerate CA
    keycloak-deploy certs --fix-permissions     # Fix permissions for existing certs
"""

app = cyclopts.App(
    name="keycloak-deploy",
    help="Prepare certificates, images and deployments for Keycloak.",
)
certs_app = cyclopts.App(name="certs", help="Create or update Keycloak certificates.")
image_app = cyclopts.App(
    name="image", help="Build, analyze and run the Keycloak image."
)
k8s_app = cyclopts.App(name="k8s", help="Kubernetes TLS secret, manifests and values.")
baremetal_app = cyclopts.App(
    name="baremetal", help="Install Keycloak as a systemd service on this host."
)
for sub_app in (certs_app, image_app, k8s_app, baremetal_app):
    app.command(sub_app)


def settings_overrides(**values: Any) -> dict[str, Any]:
    """Drop unset CLI values so that environment variables and defaults apply."""
    return {key: value for key, value in values.items() if value is not None}


@contextmanager
def operator_errors() -> Iterator[None]:
    try:
        yield
    except KeycloakDeployError as exc:
        log.error("%s", exc.message)  # noqa: TRY400
        for hint in exc.hints:
            print(hint, file=sys.stderr)  # noqa: T201
        sys.exit(exc.exit_code)


def banner(title: str) -> None:
    rule = "=" * 42
    print(f"{rule}\n  {title}\n{rule}\n")  # noqa: T201


def print_summary(summary: CertificateSummary, label: str) -> None:
    log.info("%s", label)
    lines = [
        f"    Subject: {summary.subject}",
        f"    Issuer: {summary.issuer}",
        f"    Not Before: {summary.not_before:%b %d %H:%M:%S %Y} GMT",
        f"    Not After : {summary.not_after:%b %d %H:%M:%S %Y} GMT",
    ]
    if summary.issued_by_ca is not None:
        lines.append(f"    Issued by CA: {'yes' if summary.issued_by_ca else 'NO'}")
    print("\n".join(lines) + "\n")  # noqa: T201
    if summary.expired:
        log.warning("%s has expired", summary.name)


def print_rendered(rendered: dict[str, str]) -> None:
    for file_name, content in rendered.items():
        print(f"# {file_name}")  # noqa: T201
        print(content)  # noqa: T201


@certs_app.default
def certs(  # noqa: PLR0913, C901
    *names: str,
    all_: Annotated[bool, Parameter(name=["--all", "-a"], negative="")] = False,
    create_ca_: Annotated[
        bool, Parameter(name=["--create-ca", "-c"], negative="")
    ] = False,
    force_ca: Annotated[
        bool, Parameter(name=["--force-ca", "-f"], negative="")
    ] = False,
    server: Annotated[list[str] | None, Parameter(name=["--server", "-s"])] = None,
    verify: Annotated[bool, Parameter(name=["--verify", "-v"], negative="")] = False,
    fix_permissions_: Annotated[
        bool, Parameter(name=["--fix-permissions", "-p"], negative="")
    ] = False,
    pause: Annotated[bool, Flag] = False,
    cn: str | None = None,
    host: list[str] | None = None,
    keystore_password: str = DEFAULT_KEYSTORE_PASSWORD,
    template_dir: Path = DEFAULT_TEMPLATE_DIRECTORY,
    base_dir: Path = Path(),
    yes: Annotated[bool, Flag] = False,
    verbose: Annotated[bool, Flag] = False,
) -> None:
    """Create the CA and server certificates, or inspect existing ones.

    Args:
        names: Additional server certificates to create.
        all_: Create the CA and the default `keycloak` server certificate.
        create_ca_: Create the CA only, if it doesn't exist.
        force_ca: Regenerate the CA after confirmation.
        server: Create a server certificate with this name. Repeatable.
        verify: Print subject, issuer and validity of existing certificates.
        fix_permissions_: Make certificates readable by the container user (UID 1000).
        pause: Stop after copying the request template so it can be edited.
        cn: Override the common name of server certificates.
        host: Override the subject alternative names of server certificates.
        keystore_password: Password protecting the PKCS12 keystore.
        template_dir: Directory holding the cfssl templates.
        base_dir: Directory below which `certs/` is created.
        yes: Answer yes to confirmation prompts.
        verbose: Show debug output.
    """
    configure_logging(verbose)
    server_names = [*(server or []), *names]
    if not any((all_, create_ca_, force_ca, verify, fix_permissions_, server_names)):
        print(CERTS_USAGE)  # noqa: T201
        return

    layout = CertificateLayout(base_dir)
    issue_options = {
        "template_directory": template_dir,
        "common_name": cn,
        "hosts": host,
        "keystore_password": keystore_password,
        "pause_for_edit": pause,
    }
    with operator_errors():
        check_templates(template_dir)
        if create_ca_:
            create_ca(layout, template_dir)
        if force_ca:
            regenerate_ca(layout, template_dir, assume_yes=yes)
        if all_:
            create_ca(layout, template_dir)
            server_names.insert(0, DEFAULT_SERVER_NAME)
        # each name is issued once, in the order first given
        for name in dict.fromkeys(server_names):
            paths = create_server_certificate(layout, name, **issue_options)
            print(  # noqa: T201
                f"  Certificate: {paths.certificate}\n"
                f"  Private Key: {paths.key}\n"
                f"  Full Chain:  {paths.chain}\n"
                f"  Keystore:    {paths.keystore}\n"
            )
            log.info(
                "Permissions set to 644 for container compatibility "
                "(keycloak user UID 1000)"
            )
        if fix_permissions_:
            fix_permissions(layout)
        if verify:
            ca_summary, *server_summaries = verify_certificates(layout)
            print_summary(ca_summary, "CA Certificate:")
            for summary in server_summaries:
                print_summary(summary, f"Server Certificate: {summary.name}")


@image_app.command(name="build")
def image_build(  # noqa: PLR0913
    *,
    platform: str | None = None,
    force_debian: Annotated[bool, Flag] = False,
    force_official: Annotated[bool, Flag] = False,
    version: str | None = None,
    image: str | None = None,
    context: Path | None = None,
    verbose: Annotated[bool, Flag] = False,
) -> None:
    """Build the Keycloak image, preferring the official base when it exists.

    Args:
        platform: Target platform (e.g., linux/amd64, linux/arm64).
        force_debian: Force use of Debian base (skip official image check).
        force_official: Force use of official image (skip check, may fail).
        version: Keycloak version (default: KEYCLOAK_VERSION or the pinned version).
        image: Output image name (default: keycloak:latest).
        context: Build context directory holding the Dockerfiles.
        verbose: Show debug output.
    """
    configure_logging(verbose)
    banner("Keycloak Multi-Architecture Build")
    base_image = None
    if force_debian:
        base_image = BaseImage.DEBIAN
    elif force_official:
        base_image = BaseImage.OFFICIAL
    with operator_errors():
        config = BuildConfig(
            **settings_overrides(
                platform=platform,
                keycloak_version=version,
                image_name=image,
                context_directory=context,
                base_image=base_image,
            )
        )
        build_image(config)


@image_app.command(name="analyze")
def image_analyze(
    image: str | None = None,
    /,
    *,
    ci: Annotated[bool, Flag] = False,
    verbose: Annotated[bool, Flag] = False,
) -> None:
    """Analyze image layers with dive.

    Args:
        image: Image to analyze (default: keycloak:latest).
        ci: Run in CI mode (non-interactive).
        verbose: Show debug output.
    """
    configure_logging(verbose)
    banner("Keycloak Image Analysis with Dive")
    with operator_errors():
        config = AnalyzeConfig(
            **settings_overrides(image_name=image, ci_mode=True if ci else None)
        )
        analyze_image(config)


@image_app.command(name="run")
def image_run(  # noqa: PLR0913
    *,
    image: str | None = None,
    name: str | None = None,
    server_name: str | None = None,
    base_dir: Path | None = None,
    port: int | None = None,
    tls_mode: TLSMode | None = None,
    production: Annotated[bool, Flag] = False,
    dry_run: Annotated[bool, Flag] = False,
    verbose: Annotated[bool, Flag] = False,
) -> None:
    """Run Keycloak in a container with HTTPS on port 8443.

    Args:
        image: Image to run.
        name: Container name.
        server_name: Server certificate to mount from certs/ca/servers.
        base_dir: Directory holding `certs/`.
        port: Host port published for HTTPS.
        tls_mode: Configure TLS from the PEM files or from the PKCS12 keystore.
        production: Run `start` instead of `start-dev`.
        dry_run: Print the container command instead of running it.
        verbose: Show debug output.
    """
    configure_logging(verbose)
    with operator_errors():
        config = RunConfig(
            **settings_overrides(
                image_name=image,
                container_name=name,
                server_name=server_name,
                base_directory=base_dir,
                host_port=port,
                tls_mode=tls_mode,
                production=True if production else None,
            )
        )
        run_container(config, dry_run=dry_run)


@k8s_app.command(name="create-tls-secret")
def k8s_create_tls_secret(  # noqa: PLR0913
    *,
    namespace: str | None = None,
    secret_name: str | None = None,
    cert_dir: Path | None = None,
    cert_file: Path | None = None,
    key_file: Path | None = None,
    kubeconfig: str | None = None,
    context: str | None = None,
    yes: Annotated[bool, Flag] = False,
    verbose: Annotated[bool, Flag] = False,
) -> None:
    """Create the Kubernetes TLS secret from the Keycloak server certificate.

    Args:
        namespace: Namespace for the secret (default: keycloak).
        secret_name: Name of the secret (default: keycloak-tls).
        cert_dir: Directory containing keycloak.crt and keycloak.key.
        cert_file: Certificate file (default: <cert_dir>/keycloak.crt).
        key_file: Private key file (default: <cert_dir>/keycloak.key).
        kubeconfig: Path to kubeconfig file (default: ~/.kube/config).
        context: Kubernetes context to use.
        yes: Replace an existing secret without asking.
        verbose: Show debug output.
    """
    configure_logging(verbose)
    with operator_errors():
        config = TLSSecretConfig(
            **settings_overrides(
                namespace=namespace,
                secret_name=secret_name,
                cert_dir=cert_dir,
                cert_file=cert_file,
                key_file=key_file,
                kubeconfig=kubeconfig,
                kube_context=context,
            )
        )
        create_tls_secret(config, assume_yes=yes)


@k8s_app.command(name="render")
def k8s_render(  # noqa: PLR0913
    *,
    output_dir: Path | None = None,
    namespace: str | None = None,
    secret_name: str | None = None,
    image: str | None = None,
    hostname: str | None = None,
    replicas: int | None = None,
    verbose: Annotated[bool, Flag] = False,
) -> None:
    """Render the Kubernetes manifests and Helm values.

    Args:
        output_dir: Write one file per manifest here instead of printing them.
        namespace: Namespace of the rendered resources.
        secret_name: TLS secret mounted by the HTTPS manifest.
        image: Keycloak image reference.
        hostname: Public hostname for Keycloak.
        replicas: Number of Keycloak replicas.
        verbose: Show debug output.
    """
    configure_logging(verbose)
    config = ManifestConfig(
        **settings_overrides(
            namespace=namespace,
            secret_name=secret_name,
            image=image,
            hostname=hostname,
            replicas=replicas,
        )
    )
    if output_dir is None:
        print_rendered(render_all(config))
        return
    for path in write_manifests(config, output_dir):
        log.info("Wrote %s", path)


@baremetal_app.command(name="render")
def baremetal_render(
    *,
    hostname: str | None = None,
    output_dir: Path | None = None,
    verbose: Annotated[bool, Flag] = False,
) -> None:
    """Render keycloak.conf and the systemd unit.

    Args:
        hostname: Public hostname (e.g., https://auth.example.com).
        output_dir: Write keycloak.conf and the unit file here instead of printing.
        verbose: Show debug output.
    """
    configure_logging(verbose)
    with operator_errors():
        try:
            config = KeycloakServerConfig(**settings_overrides(hostname=hostname))
            rendered = {
                "keycloak.conf": config.render_keycloak_conf(),
                f"{config.service_name}.service": config.render_systemd_unit(),
            }
        except ValueError as exc:
            raise KeycloakDeployError(str(exc)) from exc
    if output_dir is None:
        print_rendered(rendered)
        return
    output_dir.mkdir(parents=True, exist_ok=True)
    for file_name, content in rendered.items():
        output_dir.joinpath(file_name).write_text(content)
        log.info("Wrote %s", output_dir.joinpath(file_name))


@baremetal_app.command(name="setup-dev")
def baremetal_setup_dev(
    *,
    hostname: str | None = None,
    yes: Annotated[bool, Flag] = False,
    verbose: Annotated[bool, Flag] = False,
) -> None:
    """Configure this host to run Keycloak start-dev on port 443.

    Args:
        hostname: Public hostname (e.g., https://auth.example.com). Prompted if unset.
        yes: Continue without TLS files instead of asking.
        verbose: Show debug output.
    """
    configure_logging(verbose)
    banner("Keycloak Start-Dev Setup")
    with operator_errors():
        setup_dev(
            KeycloakServerConfig(**settings_overrides(hostname=hostname)),
            assume_yes=yes,
        )


@baremetal_app.command(name="deploy-service")
def baremetal_deploy_service(
    *,
    service_file: Path | None = None,
    start: bool | None = None,
    verbose: Annotated[bool, Flag] = False,
) -> None:
    """Install, enable and optionally start the Keycloak systemd unit.

    Args:
        service_file: Unit file to install; rendered from the settings when omitted.
        start: Start the service (--start) or leave it stopped (--no-start).
            Asked interactively when neither is given.
        verbose: Show debug output.
    """
    configure_logging(verbose)
    banner("Keycloak Service Deployment")
    with operator_errors():
        deploy_service(KeycloakServerConfig(), service_file, start=start)


if __name__ == "__main__":
    app()
