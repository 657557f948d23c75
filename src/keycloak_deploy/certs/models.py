"""Models for cfssl formatted certificate request and signing templates.

The JSON documents read here are the ones understood by `cfssl gencert`, so existing
templates keep working and can still be fed to cfssl directly.
"""

import ipaddress
from datetime import timedelta
from pathlib import Path
from typing import Literal, TypeVar

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from keycloak_deploy.lib.exceptions import InvalidTemplateError
from keycloak_deploy.lib.model_helpers import duration_to_timedelta

CA_REQUEST_TEMPLATE = "ca-cert-config.json"
SERVER_REQUEST_TEMPLATE = "cert-config.json"
SIGNING_CONFIG_TEMPLATE = "ca-config.json"
TEMPLATE_FILES = (CA_REQUEST_TEMPLATE, SERVER_REQUEST_TEMPLATE, SIGNING_CONFIG_TEMPLATE)
DEFAULT_TEMPLATE_DIRECTORY = Path(__file__).resolve().parent.joinpath("templates")

RSA_KEY_SIZES = (2048, 3072, 4096)
ECDSA_CURVES: dict[int, type[ec.EllipticCurve]] = {
    256: ec.SECP256R1,
    384: ec.SECP384R1,
    521: ec.SECP521R1,
}

KEY_USAGE_FLAGS = {
    "signing": "digital_signature",
    "digital signature": "digital_signature",
    "content commitment": "content_commitment",
    "key encipherment": "key_encipherment",
    "key agreement": "key_agreement",
    "data encipherment": "data_encipherment",
    "cert sign": "key_cert_sign",
    "crl sign": "crl_sign",
    "encipher only": "encipher_only",
    "decipher only": "decipher_only",
}
EXTENDED_KEY_USAGES = {
    "server auth": ExtendedKeyUsageOID.SERVER_AUTH,
    "client auth": ExtendedKeyUsageOID.CLIENT_AUTH,
    "code signing": ExtendedKeyUsageOID.CODE_SIGNING,
    "email protection": ExtendedKeyUsageOID.EMAIL_PROTECTION,
    "timestamping": ExtendedKeyUsageOID.TIME_STAMPING,
    "ocsp signing": ExtendedKeyUsageOID.OCSP_SIGNING,
}

PrivateKey = rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey


class CfsslModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


TemplateModel = TypeVar("TemplateModel", bound=CfsslModel)


def check_duration(expiry: str | None) -> str | None:
    if expiry is not None:
        duration_to_timedelta(expiry)
    return expiry


class KeySpec(CfsslModel):
    algo: Literal["rsa", "ecdsa"] = "rsa"
    size: int = 2048

    @model_validator(mode="after")
    def check_size(self) -> "KeySpec":
        if self.algo == "rsa" and self.size not in RSA_KEY_SIZES:
            msg = f"Unsupported RSA key size {self.size}, use one of {RSA_KEY_SIZES}"
            raise ValueError(msg)
        if self.algo == "ecdsa" and self.size not in ECDSA_CURVES:
            msg = (
                f"Unsupported ECDSA key size {self.size}, "
                f"use one of {tuple(ECDSA_CURVES)}"
            )
            raise ValueError(msg)
        return self

    def generate_private_key(self) -> PrivateKey:
        if self.algo == "ecdsa":
            return ec.generate_private_key(ECDSA_CURVES[self.size]())
        return rsa.generate_private_key(public_exponent=65537, key_size=self.size)


class SubjectName(CfsslModel):
    country: str | None = Field(default=None, alias="C")
    state: str | None = Field(default=None, alias="ST")
    locality: str | None = Field(default=None, alias="L")
    organization: str | None = Field(default=None, alias="O")
    organizational_unit: str | None = Field(default=None, alias="OU")

    def attributes(self) -> list[x509.NameAttribute]:
        pairs = (
            (NameOID.COUNTRY_NAME, self.country),
            (NameOID.STATE_OR_PROVINCE_NAME, self.state),
            (NameOID.LOCALITY_NAME, self.locality),
            (NameOID.ORGANIZATION_NAME, self.organization),
            (NameOID.ORGANIZATIONAL_UNIT_NAME, self.organizational_unit),
        )
        return [x509.NameAttribute(oid, value) for oid, value in pairs if value]


class CAConstraints(CfsslModel):
    expiry: str = "87600h"
    pathlen: int | None = None

    @field_validator("expiry")
    @classmethod
    def check_expiry(cls, expiry: str | None) -> str | None:
        return check_duration(expiry)


class CertificateRequest(CfsslModel):
    """A cfssl CSR document (`cfssl gencert` input)."""

    common_name: str = Field(alias="CN")
    hosts: list[str] = Field(default_factory=list)
    key: KeySpec = Field(default_factory=KeySpec)
    names: list[SubjectName] = Field(default_factory=list)
    ca: CAConstraints | None = None

    def subject(self) -> x509.Name:
        attributes: list[x509.NameAttribute] = []
        for name in self.names:
            attributes.extend(name.attributes())
        attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, self.common_name))
        return x509.Name(attributes)

    def subject_alternative_names(self) -> list[x509.GeneralName]:
        sans: list[x509.GeneralName] = []
        for host in self.hosts:
            try:
                sans.append(x509.IPAddress(ipaddress.ip_address(host)))
            except ValueError:
                sans.append(x509.DNSName(host))
        return sans

    def with_overrides(
        self, common_name: str | None = None, hosts: list[str] | None = None
    ) -> "CertificateRequest":
        updates: dict[str, object] = {}
        if common_name:
            updates["common_name"] = common_name
        if hosts:
            updates["hosts"] = list(hosts)
        return self.model_copy(update=updates)


class SigningProfile(CfsslModel):
    usages: list[str] = Field(default_factory=list)
    expiry: str | None = None

    @field_validator("expiry")
    @classmethod
    def check_expiry(cls, expiry: str | None) -> str | None:
        return check_duration(expiry)

    @field_validator("usages")
    @classmethod
    def check_usages(cls, usages: list[str]) -> list[str]:
        unknown = [
            usage
            for usage in usages
            if usage not in KEY_USAGE_FLAGS and usage not in EXTENDED_KEY_USAGES
        ]
        if unknown:
            msg = f"Unsupported certificate usages: {', '.join(unknown)}"
            raise ValueError(msg)
        return usages

    def key_usage(self) -> x509.KeyUsage:
        flags = dict.fromkeys(set(KEY_USAGE_FLAGS.values()), False)
        for usage in self.usages:
            if usage in KEY_USAGE_FLAGS:
                flags[KEY_USAGE_FLAGS[usage]] = True
        if not flags["key_agreement"]:
            flags["encipher_only"] = flags["decipher_only"] = False
        return x509.KeyUsage(**flags)

    def extended_key_usage(self) -> x509.ExtendedKeyUsage | None:
        oids = [
            EXTENDED_KEY_USAGES[usage]
            for usage in self.usages
            if usage in EXTENDED_KEY_USAGES
        ]
        return x509.ExtendedKeyUsage(oids) if oids else None


class SigningPolicy(CfsslModel):
    default: SigningProfile = Field(
        default_factory=lambda: SigningProfile(expiry="8760h")
    )
    profiles: dict[str, SigningProfile] = Field(default_factory=dict)


class SigningConfig(CfsslModel):
    """A cfssl signing configuration (`cfssl gencert -config` input)."""

    signing: SigningPolicy = Field(default_factory=SigningPolicy)

    def profile(self, name: str) -> SigningProfile:
        if name not in self.signing.profiles:
            msg = f"Signing profile {name!r} is not defined in the CA configuration"
            raise InvalidTemplateError(
                msg,
                hints=[
                    f"Defined profiles: {', '.join(self.signing.profiles) or 'none'}",
                    f"Add a {name!r} entry under signing.profiles in "
                    f"{SIGNING_CONFIG_TEMPLATE}",
                ],
            )
        return self.signing.profiles[name]

    def validity(self, name: str) -> timedelta:
        expiry = self.profile(name).expiry or self.signing.default.expiry or "8760h"
        return duration_to_timedelta(expiry)


def _load_template(model: type[TemplateModel], path: Path) -> TemplateModel:
    try:
        return model.model_validate_json(path.read_text())
    except ValidationError as exc:
        msg = f"Invalid certificate template {path}"
        raise InvalidTemplateError(
            msg,
            hints=[
                f"  {'.'.join(str(part) for part in error['loc']) or 'document'}: "
                f"{error['msg']}"
                for error in exc.errors()
            ],
        ) from exc


def load_request(path: Path) -> CertificateRequest:
    return _load_template(CertificateRequest, path)


def load_signing_config(path: Path) -> SigningConfig:
    return _load_template(SigningConfig, path)
