from __future__ import annotations

import logging
import ssl
from datetime import datetime, timedelta, timezone
from enum import Enum, auto
from ipaddress import IPv4Address, IPv6Address, ip_address

from cryptography import x509
from cryptography.exceptions import InvalidSignature

from ._utils import add_years, stage
from .exceptions import InvalidSuppliedMaterial, MissingSigningAuthority, NoTrustAnchors
from .generator import (
    CertificateTemplate,
    ExtendedKeyUsageFlag,
    KeyUsageFlag,
    generate_key_pair,
    issue_certificate,
)
from .material import Authority, CertificateMaterial, TrustPool

logger: logging.Logger = logging.getLogger(__name__)

ORGANIZATION = "tlsbootstrap"
AUTHORITY_COMMON_NAME = "tlsbootstrap CA"
AUTHORITY_SERIAL = 2319
AUTHORITY_VALIDITY_YEARS = 10
SERVER_SERIAL = 0xC0FFEE
SERVER_VALIDITY = timedelta(days=365)
SERVER_DNS_NAMES: tuple[str, ...] = ("localhost",)
SERVER_IP_ADDRESSES: tuple[IPv4Address | IPv6Address, ...] = (
    ip_address("127.0.0.1"),
)


class ClientAuthMode(Enum):
    """
    Enumerates the client authentication policies of the server side configuration.

    The :mod:`ssl` module always verifies a certificate the client presents, so the
    modes that nominally skip verification behave like their verifying counterparts.
    """

    none = auto()  #: do not ask the client for a certificate
    request = auto()  #: ask for a certificate but accept clients without one
    require_any = auto()  #: require a certificate
    verify_if_given = auto()  #: verify the certificate if the client sends one
    require_and_verify = auto()  #: require a certificate and verify it

    @property
    def enabled(self) -> bool:
        """``True`` if the server asks clients for certificates in this mode."""
        return self is not ClientAuthMode.none

    @property
    def verify_mode(self) -> ssl.VerifyMode:
        """The :class:`ssl.VerifyMode` a server context uses in this mode."""
        if self is ClientAuthMode.none:
            return ssl.CERT_NONE
        elif self in (ClientAuthMode.request, ClientAuthMode.verify_if_given):
            return ssl.CERT_OPTIONAL
        else:
            return ssl.CERT_REQUIRED


def _require_ca(certificate: x509.Certificate) -> None:
    try:
        constraints = certificate.extensions.get_extension_for_class(
            x509.BasicConstraints
        ).value
    except x509.ExtensionNotFound:
        raise InvalidSuppliedMaterial(
            "The supplied CA certificate has no basic constraints"
        ) from None

    if not constraints.ca:
        raise InvalidSuppliedMaterial(
            "The supplied certificate is not a CA certificate"
        )

    try:
        key_usage = certificate.extensions.get_extension_for_class(x509.KeyUsage).value
    except x509.ExtensionNotFound:
        return

    if not key_usage.key_cert_sign:
        raise InvalidSuppliedMaterial(
            "The supplied CA certificate does not allow certificate signing"
        )


def build_authority(existing: CertificateMaterial | None = None) -> Authority:
    """
    Return the certificate authority for this build, generating one if necessary.

    Supplied material is reused verbatim. Otherwise a new key pair is generated and a
    CA certificate, valid for 10 years, is self-signed with it.

    :param existing: caller supplied CA certificate and key
    :raises InvalidSuppliedMaterial: if ``existing`` is not a CA certificate
    :raises KeyGenerationFailure: if generating the key pair fails
    :raises SigningFailure: if self-signing the certificate fails

    """
    if existing is not None:
        _require_ca(existing.certificate)
        logger.debug(
            "Reusing the supplied CA certificate (%s)",
            existing.certificate.subject.rfc4514_string(),
        )
        return Authority(existing, generated=False)

    logger.info("Generating CA certificate....")
    private_key, public_key = generate_key_pair()
    now = datetime.now(timezone.utc)
    template = CertificateTemplate(
        serial_number=AUTHORITY_SERIAL,
        organization=ORGANIZATION,
        common_name=AUTHORITY_COMMON_NAME,
        not_before=now,
        not_after=add_years(now, AUTHORITY_VALIDITY_YEARS),
        key_usage=frozenset({KeyUsageFlag.digital_signature, KeyUsageFlag.cert_sign}),
        extended_key_usage=(
            ExtendedKeyUsageFlag.client_auth,
            ExtendedKeyUsageFlag.server_auth,
        ),
        is_ca=True,
    )
    with stage("self signing the CA certificate"):
        cert_der = issue_certificate(template, template, private_key, public_key)

    return Authority(
        CertificateMaterial.from_generated(cert_der, private_key), generated=True
    )


def build_server_certificate(
    authority: Authority | None, existing: CertificateMaterial | None = None
) -> CertificateMaterial:
    """
    Return the server certificate for this build, generating one if necessary.

    A generated certificate is signed by ``authority``, valid for one year, bound to
    ``localhost`` and ``127.0.0.1`` and usable for both server and client
    authentication.

    :param authority: the authority signing the certificate
    :param existing: caller supplied server certificate and key, reused verbatim
    :raises MissingSigningAuthority: if ``authority`` is ``None``
    :raises KeyGenerationFailure: if generating the key pair fails
    :raises SigningFailure: if signing the certificate fails

    """
    if authority is None:
        raise MissingSigningAuthority(
            "Unable to generate a server certificate without a signing CA"
        )

    if existing is not None:
        try:
            existing.certificate.verify_directly_issued_by(authority.certificate)
        except (ValueError, TypeError, InvalidSignature):
            logger.warning(
                "The supplied server certificate was not issued by the CA; clients "
                "trusting only that CA will reject it"
            )

        logger.debug("Reusing the supplied server certificate")
        return existing

    logger.info("Generating server private key and certificate....")
    logger.debug("Certificate DNS names: (%s)", ",".join(SERVER_DNS_NAMES))
    logger.debug(
        "Certificate IPs: (%s)", ",".join(str(ip) for ip in SERVER_IP_ADDRESSES)
    )
    private_key, public_key = generate_key_pair()
    now = datetime.now(timezone.utc)
    template = CertificateTemplate(
        serial_number=SERVER_SERIAL,
        organization=ORGANIZATION,
        common_name=SERVER_DNS_NAMES[0],
        not_before=now,
        not_after=now + SERVER_VALIDITY,
        dns_names=SERVER_DNS_NAMES,
        ip_addresses=SERVER_IP_ADDRESSES,
        key_usage=frozenset(
            {KeyUsageFlag.key_encipherment, KeyUsageFlag.digital_signature}
        ),
        extended_key_usage=(
            ExtendedKeyUsageFlag.client_auth,
            ExtendedKeyUsageFlag.server_auth,
        ),
    )
    with stage("signing the server certificate"):
        cert_der = issue_certificate(
            template, authority.certificate, authority.private_key, public_key
        )

    return CertificateMaterial.from_generated(cert_der, private_key)


def assemble_client_auth(
    mode: ClientAuthMode,
    supplied_ca: TrustPool | None = None,
    fallback_ca: Authority | None = None,
    supplied_identity: CertificateMaterial | None = None,
) -> tuple[TrustPool, CertificateMaterial | None]:
    """
    Assemble the trust pool for verifying clients, and the client identity.

    This is a no-op returning an empty pool when ``mode`` is
    :attr:`ClientAuthMode.none`.

    :param mode: the client authentication mode
    :param supplied_ca: caller supplied CAs for verifying client certificates
    :param fallback_ca: the authority to trust when no CAs were supplied
    :param supplied_identity: caller supplied client certificate and key
    :return: a tuple of ``(trust_pool, client_identity)``, where a ``None`` identity
        means the client should present the server certificate
    :raises NoTrustAnchors: if client authentication is enabled and there are no CA
        certificates to trust

    """
    if not mode.enabled:
        return TrustPool.empty(), None

    if supplied_ca is not None:
        pool = supplied_ca
    elif fallback_ca is not None:
        pool = TrustPool.from_authority(fallback_ca)
    else:
        raise NoTrustAnchors("Client auth enabled, but no CAs provided")

    if not pool:
        raise NoTrustAnchors(
            "Client auth enabled, but the supplied CA bundle contains no certificates"
        )

    if mode in (ClientAuthMode.request, ClientAuthMode.require_any):
        logger.warning(
            "Client auth mode %s cannot skip verification; client certificates "
            "will be verified against the trust pool",
            mode.name,
        )

    return pool, supplied_identity
