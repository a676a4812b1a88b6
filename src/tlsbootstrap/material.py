from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.types import (
    PrivateKeyTypes,
    PublicKeyTypes,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    load_der_private_key,
)

from .exceptions import InvalidSuppliedMaterial, MalformedPEM
from .pem import PEMKind, as_text, encode_pem, iter_pem_blocks


def public_keys_match(first: PublicKeyTypes, second: PublicKeyTypes) -> bool:
    """Return ``True`` if both public keys serialize to the same key info."""
    fmt = PublicFormat.SubjectPublicKeyInfo
    return first.public_bytes(Encoding.DER, fmt) == second.public_bytes(
        Encoding.DER, fmt
    )


def _single_block(text: str, description: str) -> tuple[PEMKind, bytes]:
    blocks = list(iter_pem_blocks(text))
    if not blocks:
        raise MalformedPEM(f"No PEM block found in the {description}")
    elif len(blocks) > 1:
        raise InvalidSuppliedMaterial(
            f"Expected a single PEM block in the {description}, got {len(blocks)}"
        )

    return blocks[0]


@dataclass(frozen=True)
class CertificateMaterial:
    """
    A certificate and its private key, both in raw (DER) and armored (PEM) form.

    Use :meth:`from_generated` or :meth:`from_pem` to construct instances; both
    guarantee that the two forms agree and that the key belongs to the certificate.
    """

    cert_der: bytes
    cert_pem: str
    key_der: bytes
    key_pem: str
    key_kind: PEMKind
    certificate: x509.Certificate = field(repr=False, compare=False)
    private_key: PrivateKeyTypes = field(repr=False, compare=False)

    @classmethod
    def from_generated(
        cls, cert_der: bytes, private_key: ec.EllipticCurvePrivateKey
    ) -> CertificateMaterial:
        """
        Wrap a freshly issued certificate and the elliptic curve key it was issued for.

        :param cert_der: the DER encoded certificate
        :param private_key: the private key matching the certificate's public key

        """
        key_der = private_key.private_bytes(
            Encoding.DER, PrivateFormat.TraditionalOpenSSL, NoEncryption()
        )
        return cls(
            cert_der=cert_der,
            cert_pem=encode_pem(PEMKind.certificate, cert_der),
            key_der=key_der,
            key_pem=encode_pem(PEMKind.ec_private_key, key_der),
            key_kind=PEMKind.ec_private_key,
            certificate=x509.load_der_x509_certificate(cert_der),
            private_key=private_key,
        )

    @classmethod
    def from_pem(
        cls, cert_pem: str | bytes, key_pem: str | bytes
    ) -> CertificateMaterial:
        """
        Load caller supplied material.

        The armored text is retained verbatim, so each input must hold exactly one PEM
        block. Text outside of the block is allowed.

        :param cert_pem: a PEM encoded certificate
        :param key_pem: the PEM encoded private key of the certificate (either
            ``EC PRIVATE KEY`` or unencrypted PKCS #8 ``PRIVATE KEY``)
        :raises InvalidSuppliedMaterial: if either input is malformed, holds more
            than one PEM block, is of the wrong type, or if the key does not match
            the certificate

        """
        try:
            cert_text = as_text(cert_pem)
            key_text = as_text(key_pem)
            cert_kind, cert_der = _single_block(cert_text, "certificate")
            key_kind, key_der = _single_block(key_text, "private key")
        except MalformedPEM as exc:
            raise InvalidSuppliedMaterial(f"Malformed PEM data: {exc}") from exc

        if cert_kind is not PEMKind.certificate:
            raise InvalidSuppliedMaterial(
                f"Expected a CERTIFICATE block, got {cert_kind.label}"
            )
        elif key_kind is PEMKind.certificate:
            raise InvalidSuppliedMaterial(
                "Expected a private key block, got CERTIFICATE"
            )

        try:
            certificate = x509.load_der_x509_certificate(cert_der)
        except ValueError as exc:
            raise InvalidSuppliedMaterial(f"Cannot parse certificate: {exc}") from exc

        try:
            private_key = load_der_private_key(key_der, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise InvalidSuppliedMaterial(f"Cannot parse private key: {exc}") from exc

        if not public_keys_match(certificate.public_key(), private_key.public_key()):
            raise InvalidSuppliedMaterial(
                "The private key does not match the certificate"
            )

        return cls(
            cert_der=cert_der,
            cert_pem=cert_text,
            key_der=key_der,
            key_pem=key_text,
            key_kind=key_kind,
            certificate=certificate,
            private_key=private_key,
        )

    @property
    def public_key(self) -> PublicKeyTypes:
        """The public key of the certificate."""
        return self.certificate.public_key()

    def chain_pem(self) -> str:
        """Return the private key followed by the certificate, as one PEM document."""
        key_pem = self.key_pem if self.key_pem.endswith("\n") else self.key_pem + "\n"
        return key_pem + self.cert_pem


@dataclass(frozen=True)
class Authority:
    """
    A certificate authority: certificate material allowed to sign other certificates.

    :ivar CertificateMaterial material: the CA certificate and its key
    :ivar bool generated: ``True`` if the authority was created during the current
        build, ``False`` if it was supplied by the caller
    """

    material: CertificateMaterial
    generated: bool = False

    @property
    def certificate(self) -> x509.Certificate:
        return self.material.certificate

    @property
    def private_key(self) -> PrivateKeyTypes:
        return self.material.private_key


@dataclass(frozen=True)
class TrustPool:
    """A set of authority certificates used to verify the certificate chain of peers."""

    certificates: tuple[x509.Certificate, ...] = ()

    @classmethod
    def empty(cls) -> TrustPool:
        return cls()

    @classmethod
    def from_authority(cls, authority: Authority) -> TrustPool:
        return cls((authority.certificate,))

    @classmethod
    def from_pem(cls, data: str | bytes) -> TrustPool:
        """
        Build a pool from every ``CERTIFICATE`` block in a PEM bundle.

        Blocks of other types are skipped.

        :raises InvalidSuppliedMaterial: if the bundle is malformed or contains a
            certificate that cannot be parsed

        """
        certificates: list[x509.Certificate] = []
        try:
            for kind, der in iter_pem_blocks(data):
                if kind is PEMKind.certificate:
                    certificates.append(x509.load_der_x509_certificate(der))
        except MalformedPEM as exc:
            raise InvalidSuppliedMaterial(f"Malformed CA bundle: {exc}") from exc
        except ValueError as exc:
            raise InvalidSuppliedMaterial(
                f"Cannot parse certificate in CA bundle: {exc}"
            ) from exc

        return cls(tuple(certificates))

    def __len__(self) -> int:
        return len(self.certificates)

    def __iter__(self) -> Iterator[x509.Certificate]:
        return iter(self.certificates)

    def __contains__(self, certificate: object) -> bool:
        return certificate in self.certificates

    @property
    def subjects(self) -> list[x509.Name]:
        """The subject names of the certificates in the pool."""
        return [certificate.subject for certificate in self.certificates]

    def to_pem(self) -> str:
        """Render the pool as a PEM bundle (suitable for the ``cadata`` argument)."""
        return "".join(
            encode_pem(PEMKind.certificate, certificate.public_bytes(Encoding.DER))
            for certificate in self.certificates
        )
