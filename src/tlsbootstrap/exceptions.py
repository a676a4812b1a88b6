from __future__ import annotations


class TLSBootstrapError(Exception):
    """Base class for all errors raised while building a TLS configuration."""


class KeyGenerationFailure(TLSBootstrapError):
    """Raised when the crypto library fails to produce a key pair."""


class SigningFailure(TLSBootstrapError):
    """
    Raised when a certificate cannot be issued.

    This happens when the issuer key does not belong to the issuer certificate, or
    when the certificate template is structurally invalid.
    """


class InvalidSuppliedMaterial(TLSBootstrapError):
    """
    Raised when caller supplied certificate material is malformed, incomplete or
    internally inconsistent.
    """


class MissingSigningAuthority(TLSBootstrapError):
    """Raised when issuing a leaf certificate without a certificate authority."""


class NoTrustAnchors(TLSBootstrapError):
    """Raised when client authentication is enabled but no CA is available to trust."""


class MalformedPEM(TLSBootstrapError):
    """Raised when decoding text that is not valid PEM armor."""
