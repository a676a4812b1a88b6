import logging

import anyio
from anyio import EndOfStream, create_task_group
from anyio.streams.tls import TLSAttribute, TLSStream

from tlsbootstrap.builders import ClientAuthMode
from tlsbootstrap.config import ConfigurationRequest, build_configuration
from tlsbootstrap.streams import connect_tls, create_tls_listener, listener_port


async def echo(stream: TLSStream) -> None:
    async with stream:
        try:
            while True:
                await stream.send(await stream.receive())
        except EndOfStream:
            pass


async def main() -> None:
    async with await create_tls_listener(config.server) as listener:
        async with create_task_group() as tg:
            tg.start_soon(listener.serve, echo)
            port = listener_port(listener)
            async with await connect_tls(config.client, "127.0.0.1", port) as stream:
                await stream.send(b"Hello, mutual TLS")
                print("Received:", (await stream.receive()).decode())
                print("ALPN protocol:", stream.extra(TLSAttribute.alpn_protocol))

            tg.cancel_scope.cancel()


logging.basicConfig(level=logging.DEBUG)

# Generates a CA, a server certificate signed by it, and requires the client to
# present a certificate (the server certificate doubles as the client's)
config = build_configuration(
    ConfigurationRequest(client_auth=ClientAuthMode.require_and_verify)
)

# Actually runs the server and the client by running main()
anyio.run(main)
