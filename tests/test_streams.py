from __future__ import annotations

import ssl
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any

import pytest
import trustme
from anyio import BrokenResourceError, EndOfStream, create_task_group
from anyio.streams.tls import TLSAttribute, TLSStream
from tlsbootstrap.builders import ClientAuthMode
from tlsbootstrap.config import (
    ClientSideConfig,
    ConfigurationRequest,
    ResolvedConfiguration,
    ServerSideConfig,
    build_configuration,
)
from tlsbootstrap.streams import connect_tls, create_tls_listener, listener_port

pytestmark = pytest.mark.anyio

HANDSHAKE_ERRORS = (ssl.SSLError, EndOfStream, BrokenResourceError)


class EchoHandler:
    def __init__(self) -> None:
        self.peer_certificates: list[dict[str, Any] | None] = []

    async def __call__(self, stream: TLSStream) -> None:
        async with stream:
            self.peer_certificates.append(stream.extra(TLSAttribute.peer_certificate))
            try:
                while True:
                    await stream.send(await stream.receive())
            except (EndOfStream, BrokenResourceError):
                pass


@asynccontextmanager
async def start_server(
    config: ServerSideConfig, handler: EchoHandler
) -> AsyncGenerator[int, Any]:
    async with await create_tls_listener(config) as listener:
        async with create_task_group() as tg:
            tg.start_soon(listener.serve, handler)
            yield listener_port(listener)
            tg.cancel_scope.cancel()


async def talk(client: ClientSideConfig, port: int) -> dict[str, Any] | None:
    async with await connect_tls(client, "127.0.0.1", port) as stream:
        await stream.send(b"hello")
        assert await stream.receive() == b"hello"
        return stream.extra(TLSAttribute.peer_certificate)


def subject_alt_names(certificate: dict[str, Any] | None) -> set[tuple[str, str]]:
    assert certificate
    return set(certificate["subjectAltName"])


def without_identity(client: ClientSideConfig) -> ClientSideConfig:
    context = ssl.create_default_context(cadata=client.trust.to_pem())
    return replace(client, ssl_context=context)


class TestNoClientAuth:
    @pytest.fixture(scope="class")
    def config(self) -> ResolvedConfiguration:
        return build_configuration()

    async def test_handshake(self, config: ResolvedConfiguration) -> None:
        handler = EchoHandler()
        async with start_server(config.server, handler) as port:
            server_certificate = await talk(config.client, port)

        assert subject_alt_names(server_certificate) == {
            ("DNS", "localhost"),
            ("IP Address", "127.0.0.1"),
        }
        assert handler.peer_certificates == [None]

    async def test_server_name_override(self) -> None:
        config = build_configuration(ConfigurationRequest(server_name="localhost"))
        async with start_server(config.server, EchoHandler()) as port:
            server_certificate = await talk(config.client, port)

        assert ("DNS", "localhost") in subject_alt_names(server_certificate)

    async def test_wrong_server_name(self) -> None:
        config = build_configuration(ConfigurationRequest(server_name="example.org"))
        async with start_server(config.server, EchoHandler()) as port:
            with pytest.raises(ssl.SSLCertVerificationError):
                await talk(config.client, port)

    async def test_insecure_skip_verify(self) -> None:
        config = build_configuration(
            ConfigurationRequest(server_name="example.org", insecure_skip_verify=True)
        )
        async with start_server(config.server, EchoHandler()) as port:
            assert await talk(config.client, port) == {}

    async def test_untrusted_authority(self, config: ResolvedConfiguration) -> None:
        other = build_configuration()
        async with start_server(config.server, EchoHandler()) as port:
            with pytest.raises(ssl.SSLCertVerificationError):
                await talk(other.client, port)


class TestMutualAuth:
    @pytest.fixture(scope="class")
    def config(self) -> ResolvedConfiguration:
        return build_configuration(
            ConfigurationRequest(client_auth=ClientAuthMode.require_and_verify)
        )

    async def test_derived_identity(self, config: ResolvedConfiguration) -> None:
        handler = EchoHandler()
        async with start_server(config.server, handler) as port:
            await talk(config.client, port)

        assert len(handler.peer_certificates) == 1
        assert ("DNS", "localhost") in subject_alt_names(handler.peer_certificates[0])

    async def test_no_client_certificate(self, config: ResolvedConfiguration) -> None:
        handler = EchoHandler()
        async with start_server(config.server, handler) as port:
            with pytest.raises(HANDSHAKE_ERRORS):
                await talk(without_identity(config.client), port)

        assert handler.peer_certificates == []

    async def test_optional_client_certificate(self) -> None:
        config = build_configuration(
            ConfigurationRequest(client_auth=ClientAuthMode.verify_if_given)
        )
        handler = EchoHandler()
        async with start_server(config.server, handler) as port:
            await talk(without_identity(config.client), port)

        assert handler.peer_certificates == [None]

    async def test_supplied_client_identity(
        self, foreign_ca: trustme.CA, foreign_leaf: trustme.LeafCert
    ) -> None:
        config = build_configuration(
            ConfigurationRequest(
                client_auth=ClientAuthMode.require_and_verify,
                client_auth_ca_pem=foreign_ca.cert_pem.bytes(),
                client_auth_cert_pem=foreign_leaf.cert_chain_pems[0].bytes(),
                client_auth_key_pem=foreign_leaf.private_key_pem.bytes(),
            )
        )
        handler = EchoHandler()
        async with start_server(config.server, handler) as port:
            await talk(config.client, port)

        assert ("DNS", "client.example.org") in subject_alt_names(
            handler.peer_certificates[0]
        )

    async def test_client_rejected_by_foreign_ca(self, foreign_ca: trustme.CA) -> None:
        config = build_configuration(
            ConfigurationRequest(
                client_auth=ClientAuthMode.require_and_verify,
                client_auth_ca_pem=foreign_ca.cert_pem.bytes(),
            )
        )
        handler = EchoHandler()
        async with start_server(config.server, handler) as port:
            with pytest.raises(HANDSHAKE_ERRORS):
                await talk(config.client, port)

        assert handler.peer_certificates == []
