from .builders import (
    ClientAuthMode,
    assemble_client_auth,
    build_authority,
    build_server_certificate,
)
from .config import (
    ClientSideConfig,
    ConfigurationRequest,
    ResolvedConfiguration,
    ServerSideConfig,
    build_configuration,
)
from .exceptions import (
    InvalidSuppliedMaterial,
    KeyGenerationFailure,
    MalformedPEM,
    MissingSigningAuthority,
    NoTrustAnchors,
    SigningFailure,
    TLSBootstrapError,
)
from .material import Authority, CertificateMaterial, TrustPool
from .pem import PEMKind, decode_pem, encode_pem

__all__ = (
    "Authority",
    "CertificateMaterial",
    "ClientAuthMode",
    "ClientSideConfig",
    "ConfigurationRequest",
    "InvalidSuppliedMaterial",
    "KeyGenerationFailure",
    "MalformedPEM",
    "MissingSigningAuthority",
    "NoTrustAnchors",
    "PEMKind",
    "ResolvedConfiguration",
    "ServerSideConfig",
    "SigningFailure",
    "TLSBootstrapError",
    "TrustPool",
    "assemble_client_auth",
    "build_authority",
    "build_configuration",
    "build_server_certificate",
    "decode_pem",
    "encode_pem",
)
