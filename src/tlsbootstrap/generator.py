from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum, auto
from ipaddress import IPv4Address, IPv6Address

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.asymmetric.types import (
    CertificatePublicKeyTypes,
    PrivateKeyTypes,
)
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from .exceptions import KeyGenerationFailure, SigningFailure
from .material import public_keys_match

logger: logging.Logger = logging.getLogger(__name__)

#: the curve used for all generated keys
DEFAULT_CURVE: ec.EllipticCurve = ec.SECP521R1()


class KeyUsageFlag(Enum):
    """Enumerates the key usages a generated certificate can be issued with."""

    digital_signature = auto()  #: signing handshake transcripts
    key_encipherment = auto()  #: key transport
    cert_sign = auto()  #: signing other certificates (authorities only)
    crl_sign = auto()  #: signing certificate revocation lists


class ExtendedKeyUsageFlag(Enum):
    """Enumerates the extended key usages a generated certificate can carry."""

    server_auth = ExtendedKeyUsageOID.SERVER_AUTH  #: TLS server authentication
    client_auth = ExtendedKeyUsageOID.CLIENT_AUTH  #: TLS client authentication


@dataclass(frozen=True)
class CertificateTemplate:
    """
    Describes the contents of a certificate to be issued.

    :param serial_number: the certificate serial number (must be positive)
    :param organization: the organization name placed in the subject
    :param not_before: start of the validity window (timezone aware)
    :param not_after: end of the validity window (timezone aware)
    :param common_name: an optional common name placed in the subject
    :param dns_names: DNS names for the subject alternative name extension
    :param ip_addresses: IP addresses for the subject alternative name extension
    :param key_usage: the key usages to allow
    :param extended_key_usage: the extended key usages to allow
    :param is_ca: ``True`` to allow the certificate to sign other certificates
    """

    serial_number: int
    organization: str
    not_before: datetime
    not_after: datetime
    common_name: str | None = None
    dns_names: tuple[str, ...] = ()
    ip_addresses: tuple[IPv4Address | IPv6Address, ...] = ()
    key_usage: frozenset[KeyUsageFlag] = frozenset()
    extended_key_usage: tuple[ExtendedKeyUsageFlag, ...] = ()
    is_ca: bool = False

    @property
    def subject(self) -> x509.Name:
        attributes = [x509.NameAttribute(NameOID.ORGANIZATION_NAME, self.organization)]
        if self.common_name:
            attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, self.common_name))

        return x509.Name(attributes)

    def validate(self) -> None:
        """
        Check the template for structural problems.

        :raises SigningFailure: if the template cannot produce a valid certificate

        """
        if self.serial_number <= 0:
            raise SigningFailure("The serial number must be positive")
        elif self.not_after <= self.not_before:
            raise SigningFailure("The validity window is empty")
        elif self.is_ca and KeyUsageFlag.cert_sign not in self.key_usage:
            raise SigningFailure(
                "A CA certificate requires the cert_sign key usage"
            )
        elif not self.is_ca and KeyUsageFlag.cert_sign in self.key_usage:
            raise SigningFailure(
                "The cert_sign key usage is only allowed on CA certificates"
            )

    def build_extensions(self) -> list[tuple[x509.ExtensionType, bool]]:
        """Return the ``(extension, critical)`` pairs described by this template."""
        extensions: list[tuple[x509.ExtensionType, bool]] = [
            (x509.BasicConstraints(ca=self.is_ca, path_length=None), True)
        ]
        if self.key_usage:
            key_usage = x509.KeyUsage(
                digital_signature=KeyUsageFlag.digital_signature in self.key_usage,
                content_commitment=False,
                key_encipherment=KeyUsageFlag.key_encipherment in self.key_usage,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=KeyUsageFlag.cert_sign in self.key_usage,
                crl_sign=KeyUsageFlag.crl_sign in self.key_usage,
                encipher_only=False,
                decipher_only=False,
            )
            extensions.append((key_usage, True))

        if self.extended_key_usage:
            usages = [flag.value for flag in self.extended_key_usage]
            extensions.append((x509.ExtendedKeyUsage(usages), False))

        if self.dns_names or self.ip_addresses:
            names: list[x509.GeneralName] = [
                x509.DNSName(name) for name in self.dns_names
            ]
            names.extend(x509.IPAddress(address) for address in self.ip_addresses)
            extensions.append((x509.SubjectAlternativeName(names), False))

        return extensions


def generate_key_pair(
    curve: ec.EllipticCurve = DEFAULT_CURVE,
) -> tuple[ec.EllipticCurvePrivateKey, ec.EllipticCurvePublicKey]:
    """
    Generate a new elliptic curve key pair.

    :param curve: the curve to generate the key on
    :return: a tuple of ``(private_key, public_key)``
    :raises KeyGenerationFailure: if the crypto library fails to produce a key

    """
    try:
        private_key = ec.generate_private_key(curve)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise KeyGenerationFailure(
            f"while generating a {curve.name} key pair: {exc}"
        ) from exc

    return private_key, private_key.public_key()


def _signature_hash(issuer_key: PrivateKeyTypes) -> hashes.HashAlgorithm:
    if isinstance(issuer_key, ec.EllipticCurvePrivateKey):
        if issuer_key.curve.key_size > 384:
            return hashes.SHA512()
        elif issuer_key.curve.key_size > 256:
            return hashes.SHA384()
        else:
            return hashes.SHA256()
    elif isinstance(issuer_key, rsa.RSAPrivateKey):
        return hashes.SHA256()

    raise SigningFailure(f"Unsupported issuer key type: {type(issuer_key).__name__}")


def _authority_key_identifier(
    issuer: CertificateTemplate | x509.Certificate, issuer_key: PrivateKeyTypes
) -> x509.AuthorityKeyIdentifier:
    if isinstance(issuer, x509.Certificate):
        try:
            ski = issuer.extensions.get_extension_for_class(x509.SubjectKeyIdentifier)
        except x509.ExtensionNotFound:
            pass
        else:
            return x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(
                ski.value
            )

    return x509.AuthorityKeyIdentifier.from_issuer_public_key(
        issuer_key.public_key()  # type: ignore[arg-type]
    )


def _check_issuer(
    template: CertificateTemplate,
    issuer: CertificateTemplate | x509.Certificate,
    issuer_key: PrivateKeyTypes,
    subject_public_key: CertificatePublicKeyTypes,
) -> None:
    if isinstance(issuer, CertificateTemplate):
        if issuer is not template:
            raise SigningFailure("Only the template itself can act as its own issuer")
        elif not public_keys_match(issuer_key.public_key(), subject_public_key):
            raise SigningFailure(
                "Self-issued certificate: the issuer key does not match the subject "
                "public key"
            )
    else:
        if not public_keys_match(issuer_key.public_key(), issuer.public_key()):
            raise SigningFailure(
                "The issuer key does not match the issuer certificate"
            )

        try:
            constraints = issuer.extensions.get_extension_for_class(
                x509.BasicConstraints
            ).value
        except x509.ExtensionNotFound:
            raise SigningFailure(
                "The issuer certificate has no basic constraints"
            ) from None

        if not constraints.ca:
            raise SigningFailure("The issuer certificate is not a CA certificate")


def issue_certificate(
    template: CertificateTemplate,
    issuer: CertificateTemplate | x509.Certificate,
    issuer_key: PrivateKeyTypes,
    subject_public_key: CertificatePublicKeyTypes,
) -> bytes:
    """
    Issue a certificate from the given template.

    To self-sign a certificate, pass the template as the issuer as well, along with
    the private key matching ``subject_public_key``.

    :param template: describes the certificate to issue
    :param issuer: the certificate of the signing authority, or ``template`` itself
    :param issuer_key: the private key of the issuer
    :param subject_public_key: the public key to bind into the new certificate
    :return: the DER encoded certificate
    :raises SigningFailure: if the template is invalid or the issuer key does not
        belong to the issuer

    """
    template.validate()
    algorithm = _signature_hash(issuer_key)
    _check_issuer(template, issuer, issuer_key, subject_public_key)

    builder = (
        x509.CertificateBuilder()
        .subject_name(template.subject)
        .issuer_name(issuer.subject)
        .public_key(subject_public_key)
        .serial_number(template.serial_number)
        .not_valid_before(template.not_before)
        .not_valid_after(template.not_after)
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(subject_public_key), False
        )
        .add_extension(_authority_key_identifier(issuer, issuer_key), False)
    )
    for extension, critical in template.build_extensions():
        builder = builder.add_extension(extension, critical)

    logger.debug(
        "Signing certificate for %s (serial %#x)",
        template.subject.rfc4514_string(),
        template.serial_number,
    )
    try:
        certificate = builder.sign(issuer_key, algorithm)  # type: ignore[arg-type]
    except (ValueError, TypeError) as exc:
        raise SigningFailure(f"while signing certificate: {exc}") from exc

    return certificate.public_bytes(Encoding.DER)
