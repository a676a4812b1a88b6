from __future__ import annotations

import logging
import os
import ssl
import tempfile
from dataclasses import dataclass

from ._utils import stage
from .builders import (
    ClientAuthMode,
    assemble_client_auth,
    build_authority,
    build_server_certificate,
)
from .exceptions import InvalidSuppliedMaterial
from .material import Authority, CertificateMaterial, TrustPool

logger: logging.Logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfigurationRequest:
    """
    Describes the TLS configuration to build.

    Every PEM field is optional; whatever is missing is generated. Certificates and
    their private keys must be supplied in pairs.

    :param client_auth: the client authentication mode of the server
    :param ca_pem: the CA certificate in PEM format
    :param ca_key_pem: the CA private key in PEM format
    :param cert_pem: the server certificate in PEM format
    :param key_pem: the server private key in PEM format
    :param client_auth_ca_pem: a PEM bundle of the CAs used to verify client
        certificates (defaults to the CA)
    :param client_auth_cert_pem: the client certificate in PEM format (defaults to
        the server certificate)
    :param client_auth_key_pem: the client private key in PEM format
    :param insecure_skip_verify: if ``True``, the client accepts any certificate
        presented by the server and any host name in that certificate
    :param server_name: the server name the client checks when validating the
        server certificate (defaults to the host being connected to)
    :param alpn_protocols: ALPN protocols offered by both sides
    :param minimum_version: the lowest TLS version either side accepts
    :param use_system_roots: if ``True``, the client also trusts the platform's
        default CA certificates
    """

    client_auth: ClientAuthMode = ClientAuthMode.none
    ca_pem: str | bytes | None = None
    ca_key_pem: str | bytes | None = None
    cert_pem: str | bytes | None = None
    key_pem: str | bytes | None = None
    client_auth_ca_pem: str | bytes | None = None
    client_auth_cert_pem: str | bytes | None = None
    client_auth_key_pem: str | bytes | None = None
    insecure_skip_verify: bool = False
    server_name: str | None = None
    alpn_protocols: tuple[str, ...] = ("h2", "http/1.1")
    minimum_version: ssl.TLSVersion = ssl.TLSVersion.TLSv1_2
    use_system_roots: bool = False


@dataclass(frozen=True)
class ServerSideConfig:
    """
    The configuration for the listening side.

    :ivar CertificateMaterial identity: the certificate presented to clients
    :ivar TrustPool client_trust: the CAs client certificates are verified against
        (empty when client authentication is disabled)
    :ivar ClientAuthMode client_auth: the client authentication mode
    :ivar ssl.SSLContext ssl_context: the server SSL context
    """

    identity: CertificateMaterial
    client_trust: TrustPool
    client_auth: ClientAuthMode
    ssl_context: ssl.SSLContext


@dataclass(frozen=True)
class ClientSideConfig:
    """
    The configuration for the connecting side.

    :ivar CertificateMaterial identity: the certificate presented to the server
    :ivar TrustPool trust: the CAs the server certificate is verified against
    :ivar server_name: the name to verify the server certificate against
    :ivar bool insecure_skip_verify: ``True`` if the server certificate is not
        verified at all
    :ivar ssl.SSLContext ssl_context: the client SSL context
    """

    identity: CertificateMaterial
    trust: TrustPool
    server_name: str | None
    insecure_skip_verify: bool
    ssl_context: ssl.SSLContext


@dataclass(frozen=True)
class ResolvedConfiguration:
    """The result of :func:`build_configuration`."""

    authority: Authority  #: the CA that signed the server certificate
    server_certificate: CertificateMaterial  #: the server certificate
    server: ServerSideConfig  #: configuration for the listener
    client: ClientSideConfig  #: configuration for clients of the listener


def _load_supplied(
    cert_pem: str | bytes | None, key_pem: str | bytes | None, description: str
) -> CertificateMaterial | None:
    if cert_pem is None and key_pem is None:
        return None
    elif cert_pem is None:
        raise InvalidSuppliedMaterial(
            f"The {description} private key was supplied without its certificate"
        )
    elif key_pem is None:
        raise InvalidSuppliedMaterial(
            f"The {description} certificate was supplied without its private key"
        )

    return CertificateMaterial.from_pem(cert_pem, key_pem)


def _load_identity(context: ssl.SSLContext, identity: CertificateMaterial) -> None:
    # SSLContext.load_cert_chain() only accepts file paths
    fd, path = tempfile.mkstemp(prefix="tlsbootstrap-", suffix=".pem")
    try:
        with os.fdopen(fd, "w", encoding="ascii") as file:
            file.write(identity.chain_pem())

        context.load_cert_chain(path)
    except ssl.SSLError as exc:
        raise InvalidSuppliedMaterial(
            f"Cannot load the certificate chain: {exc}"
        ) from exc
    finally:
        os.unlink(path)


def _create_server_context(
    request: ConfigurationRequest,
    identity: CertificateMaterial,
    client_trust: TrustPool,
) -> ssl.SSLContext:
    context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    context.minimum_version = request.minimum_version
    _load_identity(context, identity)
    if client_trust:
        context.load_verify_locations(cadata=client_trust.to_pem())

    context.verify_mode = request.client_auth.verify_mode
    if request.alpn_protocols:
        context.set_alpn_protocols(list(request.alpn_protocols))

    return context


def _create_client_context(
    request: ConfigurationRequest, identity: CertificateMaterial, trust: TrustPool
) -> ssl.SSLContext:
    context = ssl.create_default_context(
        ssl.Purpose.SERVER_AUTH, cadata=trust.to_pem()
    )
    if request.use_system_roots:
        context.load_default_certs(ssl.Purpose.SERVER_AUTH)

    context.minimum_version = request.minimum_version
    _load_identity(context, identity)
    if request.insecure_skip_verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    if request.alpn_protocols:
        context.set_alpn_protocols(list(request.alpn_protocols))

    return context


def build_configuration(
    request: ConfigurationRequest | None = None,
) -> ResolvedConfiguration:
    """
    Build matching server and client TLS configurations.

    The CA and the server certificate are taken from ``request`` when supplied, and
    generated otherwise. When client authentication is enabled, the server is set up
    to verify client certificates against the supplied client auth CAs (or the CA),
    and the client presents the supplied client certificate.

    .. warning:: If client authentication is enabled but no client certificate was
        supplied, the client presents the server certificate. This is only
        appropriate for test and benchmark setups.

    .. note:: Apart from loading the certificate chains into the SSL contexts, the
        build works purely in memory. :meth:`ssl.SSLContext.load_cert_chain` only
        accepts file paths, so each identity (including its private key) is written
        to a private temporary file (mode 0600) for the duration of that call and
        deleted right after, even if loading fails.

    Nothing is retained between calls, so this function can be called concurrently.

    :param request: describes the configuration to build (defaults to an empty
        request with client authentication disabled)
    :return: the server and client configurations
    :raises TLSBootstrapError: if any stage of the build fails; the message names
        the stage and the original exception is chained as the cause

    """
    request = request or ConfigurationRequest()
    with stage("building the certificate authority"):
        supplied_ca = _load_supplied(request.ca_pem, request.ca_key_pem, "CA")
        authority = build_authority(supplied_ca)

    with stage("building the server certificate"):
        supplied_cert = _load_supplied(request.cert_pem, request.key_pem, "server")
        server_certificate = build_server_certificate(authority, supplied_cert)

    root_pool = TrustPool.from_authority(authority)
    client_trust = TrustPool.empty()
    client_identity: CertificateMaterial | None = None
    if request.client_auth.enabled:
        with stage("assembling client authentication"):
            supplied_client_ca = (
                TrustPool.from_pem(request.client_auth_ca_pem)
                if request.client_auth_ca_pem is not None
                else None
            )
            supplied_identity = _load_supplied(
                request.client_auth_cert_pem, request.client_auth_key_pem, "client"
            )
            client_trust, client_identity = assemble_client_auth(
                request.client_auth, supplied_client_ca, authority, supplied_identity
            )

        if client_identity is None:
            logger.warning(
                "No client certificate supplied; the client will present the server "
                "certificate"
            )

    with stage("creating the server SSL context"):
        server_context = _create_server_context(
            request, server_certificate, client_trust
        )

    identity = client_identity or server_certificate
    with stage("creating the client SSL context"):
        client_context = _create_client_context(request, identity, root_pool)

    return ResolvedConfiguration(
        authority=authority,
        server_certificate=server_certificate,
        server=ServerSideConfig(
            identity=server_certificate,
            client_trust=client_trust,
            client_auth=request.client_auth,
            ssl_context=server_context,
        ),
        client=ClientSideConfig(
            identity=identity,
            trust=root_pool,
            server_name=request.server_name or None,
            insecure_skip_verify=request.insecure_skip_verify,
            ssl_context=client_context,
        ),
    )
