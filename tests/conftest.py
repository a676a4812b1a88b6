from __future__ import annotations

import pytest
import trustme

from tlsbootstrap.builders import build_authority, build_server_certificate
from tlsbootstrap.material import Authority, CertificateMaterial


@pytest.fixture(scope="session")
def foreign_ca() -> trustme.CA:
    return trustme.CA(key_type=trustme.KeyType.ECDSA)


@pytest.fixture(scope="session")
def foreign_leaf(foreign_ca: trustme.CA) -> trustme.LeafCert:
    return foreign_ca.issue_cert("client.example.org")


@pytest.fixture(scope="session")
def authority() -> Authority:
    return build_authority()


@pytest.fixture(scope="session")
def server_certificate(authority: Authority) -> CertificateMaterial:
    return build_server_certificate(authority)
