"""Shared pytest fixtures for keycloak-deploy tests.

Settings classes read their values from the environment, so every test runs with the
deployment variables removed to keep results independent of the machine running them.
"""

import json
import logging
import os
import shutil

import pytest

from keycloak_deploy.certs.authority import CertificateLayout
from keycloak_deploy.certs.models import (
    CA_REQUEST_TEMPLATE,
    DEFAULT_TEMPLATE_DIRECTORY,
)

DEPLOYMENT_VARIABLES = (
    "CERT_DIR",
    "CERT_FILE",
    "CI_MODE",
    "DOCKERFILE",
    "IMAGE_NAME",
    "KEY_FILE",
    "NAMESPACE",
    "PLATFORM",
    "SECRET_NAME",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Drop deployment related environment variables for the duration of a test."""
    for name in list(os.environ):
        if name in DEPLOYMENT_VARIABLES or name.upper().startswith("KEYCLOAK_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def template_directory(tmp_path):
    """Copy of the bundled cfssl templates using a 2048 bit CA key for speed."""
    directory = tmp_path / "templates"
    shutil.copytree(DEFAULT_TEMPLATE_DIRECTORY, directory)
    ca_request = directory / CA_REQUEST_TEMPLATE
    document = json.loads(ca_request.read_text())
    document["key"]["size"] = 2048
    ca_request.write_text(json.dumps(document))
    return directory


@pytest.fixture
def layout(tmp_path):
    """An empty certificate layout rooted in the test's temporary directory."""
    return CertificateLayout(tmp_path / "work")


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo configure_logging so caplog sees records in later tests."""
    yield
    logger = logging.getLogger("keycloak_deploy")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
