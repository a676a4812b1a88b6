from __future__ import annotations

from datetime import datetime, timedelta, timezone
from ipaddress import ip_address

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec
from tlsbootstrap.exceptions import KeyGenerationFailure, SigningFailure
from tlsbootstrap.generator import (
    CertificateTemplate,
    ExtendedKeyUsageFlag,
    KeyUsageFlag,
    generate_key_pair,
    issue_certificate,
)
from tlsbootstrap.material import public_keys_match

NOW = datetime.now(timezone.utc)


def make_ca_template(**kwargs) -> CertificateTemplate:
    kwargs.setdefault("serial_number", 1)
    kwargs.setdefault("organization", "test")
    kwargs.setdefault("not_before", NOW)
    kwargs.setdefault("not_after", NOW + timedelta(days=1))
    kwargs.setdefault(
        "key_usage", frozenset({KeyUsageFlag.digital_signature, KeyUsageFlag.cert_sign})
    )
    kwargs.setdefault("is_ca", True)
    return CertificateTemplate(**kwargs)


def make_leaf_template(**kwargs) -> CertificateTemplate:
    kwargs.setdefault("serial_number", 2)
    kwargs.setdefault("organization", "test")
    kwargs.setdefault("common_name", "leaf")
    kwargs.setdefault("not_before", NOW)
    kwargs.setdefault("not_after", NOW + timedelta(days=1))
    kwargs.setdefault("dns_names", ("localhost",))
    kwargs.setdefault("ip_addresses", (ip_address("127.0.0.1"),))
    kwargs.setdefault("key_usage", frozenset({KeyUsageFlag.digital_signature}))
    kwargs.setdefault("extended_key_usage", (ExtendedKeyUsageFlag.server_auth,))
    return CertificateTemplate(**kwargs)


def self_signed(template: CertificateTemplate, curve: ec.EllipticCurve | None = None):
    private_key, public_key = (
        generate_key_pair(curve) if curve else generate_key_pair()
    )
    der = issue_certificate(template, template, private_key, public_key)
    return x509.load_der_x509_certificate(der), private_key


def test_generate_key_pair() -> None:
    private_key, public_key = generate_key_pair()
    assert isinstance(private_key.curve, ec.SECP521R1)
    assert public_keys_match(private_key.public_key(), public_key)


def test_generate_key_pair_fresh() -> None:
    first, _ = generate_key_pair()
    second, _ = generate_key_pair()
    assert not public_keys_match(first.public_key(), second.public_key())


class UnknownCurve(ec.EllipticCurve):
    name = "unknowncurve"
    key_size = 256
    group_order = 1


def test_generate_key_pair_unsupported_curve() -> None:
    with pytest.raises(KeyGenerationFailure, match="unknowncurve key pair"):
        generate_key_pair(UnknownCurve())


class TestSelfSigned:
    def test_ca_certificate(self) -> None:
        template = make_ca_template(common_name="Test CA")
        certificate, _ = self_signed(template)
        assert certificate.subject == certificate.issuer == template.subject
        assert certificate.serial_number == 1
        certificate.verify_directly_issued_by(certificate)

        constraints = certificate.extensions.get_extension_for_class(
            x509.BasicConstraints
        )
        assert constraints.critical
        assert constraints.value.ca

        key_usage = certificate.extensions.get_extension_for_class(x509.KeyUsage)
        assert key_usage.critical
        assert key_usage.value.key_cert_sign
        assert key_usage.value.digital_signature
        assert not key_usage.value.key_encipherment

    def test_key_identifiers(self) -> None:
        certificate, _ = self_signed(make_ca_template())
        ski = certificate.extensions.get_extension_for_class(x509.SubjectKeyIdentifier)
        aki = certificate.extensions.get_extension_for_class(
            x509.AuthorityKeyIdentifier
        )
        assert aki.value.key_identifier == ski.value.digest

    @pytest.mark.parametrize(
        "curve, hash_name",
        [
            pytest.param(ec.SECP256R1(), "sha256", id="p256"),
            pytest.param(ec.SECP384R1(), "sha384", id="p384"),
            pytest.param(ec.SECP521R1(), "sha512", id="p521"),
        ],
    )
    def test_signature_hash(self, curve: ec.EllipticCurve, hash_name: str) -> None:
        certificate, _ = self_signed(make_ca_template(), curve)
        assert certificate.signature_hash_algorithm
        assert certificate.signature_hash_algorithm.name == hash_name

    def test_wrong_key(self) -> None:
        template = make_ca_template()
        private_key, _ = generate_key_pair()
        _, other_public_key = generate_key_pair()
        with pytest.raises(SigningFailure, match="does not match the subject"):
            issue_certificate(template, template, private_key, other_public_key)

    def test_foreign_template_as_issuer(self) -> None:
        private_key, public_key = generate_key_pair()
        with pytest.raises(SigningFailure, match="its own issuer"):
            issue_certificate(
                make_leaf_template(), make_ca_template(), private_key, public_key
            )


class TestSignedByIssuer:
    @pytest.fixture(scope="class")
    def ca(self) -> tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
        return self_signed(make_ca_template(common_name="Test CA"))

    def test_leaf_certificate(self, ca) -> None:
        ca_certificate, ca_key = ca
        private_key, public_key = generate_key_pair()
        template = make_leaf_template(
            extended_key_usage=(
                ExtendedKeyUsageFlag.client_auth,
                ExtendedKeyUsageFlag.server_auth,
            )
        )
        der = issue_certificate(template, ca_certificate, ca_key, public_key)
        certificate = x509.load_der_x509_certificate(der)

        certificate.verify_directly_issued_by(ca_certificate)
        assert certificate.issuer == ca_certificate.subject
        assert public_keys_match(certificate.public_key(), public_key)

        san = certificate.extensions.get_extension_for_class(
            x509.SubjectAlternativeName
        ).value
        assert san.get_values_for_type(x509.DNSName) == ["localhost"]
        assert san.get_values_for_type(x509.IPAddress) == [ip_address("127.0.0.1")]

        eku = certificate.extensions.get_extension_for_class(
            x509.ExtendedKeyUsage
        ).value
        assert list(eku) == [
            ExtendedKeyUsageFlag.client_auth.value,
            ExtendedKeyUsageFlag.server_auth.value,
        ]

        constraints = certificate.extensions.get_extension_for_class(
            x509.BasicConstraints
        ).value
        assert not constraints.ca

        ca_ski = ca_certificate.extensions.get_extension_for_class(
            x509.SubjectKeyIdentifier
        ).value
        aki = certificate.extensions.get_extension_for_class(
            x509.AuthorityKeyIdentifier
        ).value
        assert aki.key_identifier == ca_ski.digest

    def test_mismatched_issuer_key(self, ca) -> None:
        ca_certificate, _ = ca
        other_key, public_key = generate_key_pair()
        with pytest.raises(SigningFailure, match="does not match the issuer"):
            issue_certificate(
                make_leaf_template(), ca_certificate, other_key, public_key
            )

    def test_issuer_not_a_ca(self, ca) -> None:
        ca_certificate, ca_key = ca
        leaf_key, leaf_public_key = generate_key_pair()
        leaf_der = issue_certificate(
            make_leaf_template(), ca_certificate, ca_key, leaf_public_key
        )
        leaf = x509.load_der_x509_certificate(leaf_der)
        _, public_key = generate_key_pair()
        with pytest.raises(SigningFailure, match="not a CA certificate"):
            issue_certificate(make_leaf_template(), leaf, leaf_key, public_key)


class TestInvalidTemplate:
    @pytest.mark.parametrize(
        "template, message",
        [
            pytest.param(
                make_ca_template(key_usage=frozenset({KeyUsageFlag.digital_signature})),
                "requires the cert_sign key usage",
                id="ca_without_cert_sign",
            ),
            pytest.param(
                make_leaf_template(key_usage=frozenset({KeyUsageFlag.cert_sign})),
                "only allowed on CA certificates",
                id="leaf_with_cert_sign",
            ),
            pytest.param(
                make_ca_template(not_after=NOW - timedelta(days=1)),
                "validity window is empty",
                id="inverted_validity",
            ),
            pytest.param(
                make_ca_template(serial_number=0),
                "must be positive",
                id="zero_serial",
            ),
        ],
    )
    def test_rejected(self, template: CertificateTemplate, message: str) -> None:
        private_key, public_key = generate_key_pair()
        with pytest.raises(SigningFailure, match=message):
            issue_certificate(template, template, private_key, public_key)

    def test_no_extended_key_usage_or_san(self) -> None:
        certificate, _ = self_signed(make_ca_template())
        with pytest.raises(x509.ExtensionNotFound):
            certificate.extensions.get_extension_for_class(x509.ExtendedKeyUsage)

        with pytest.raises(x509.ExtensionNotFound):
            certificate.extensions.get_extension_for_class(x509.SubjectAlternativeName)
