"""AnyIO helpers for using a resolved configuration on actual connections."""

from __future__ import annotations

import logging

from anyio import aclose_forcefully, connect_tcp, create_tcp_listener, fail_after
from anyio.abc import SocketAttribute
from anyio.streams.tls import TLSListener, TLSStream

from .config import ClientSideConfig, ServerSideConfig

logger: logging.Logger = logging.getLogger(__name__)


async def create_tls_listener(
    config: ServerSideConfig,
    local_host: str = "127.0.0.1",
    local_port: int = 0,
    *,
    handshake_timeout: float = 30,
) -> TLSListener:
    """
    Create a TCP listener that performs the TLS handshake on accepted connections.

    :param config: the server side configuration
    :param local_host: the interface to bind to
    :param local_port: the port to bind to (0 picks a free port)
    :param handshake_timeout: time limit for the TLS handshake (in seconds)
    :return: a TLS listener; use :func:`listener_port` to find out the bound port

    """
    listener = await create_tcp_listener(local_host=local_host, local_port=local_port)
    logger.debug(
        "Listening on %s:%d (client auth: %s)",
        local_host,
        listener.extra(SocketAttribute.local_port),
        config.client_auth.name,
    )
    return TLSListener(
        listener,
        config.ssl_context,
        standard_compatible=False,
        handshake_timeout=handshake_timeout,
    )


def listener_port(listener: TLSListener) -> int:
    """Return the local port a listener from :func:`create_tls_listener` is bound to."""
    return listener.listener.extra(SocketAttribute.local_port)


async def connect_tls(
    config: ClientSideConfig, host: str, port: int, *, connect_timeout: float = 30
) -> TLSStream:
    """
    Connect to a TLS server and perform the handshake.

    The server certificate is checked against ``config.server_name`` if set, or
    ``host`` otherwise.

    :param config: the client side configuration
    :param host: host name or IP address of the server
    :param port: port on the server to connect to
    :param connect_timeout: time limit for connecting and the TLS handshake (in
        seconds)
    :return: the TLS stream

    """
    hostname = config.server_name or host
    with fail_after(connect_timeout):
        stream = await connect_tcp(host, port)
        try:
            return await TLSStream.wrap(
                stream,
                hostname=hostname,
                ssl_context=config.ssl_context,
                standard_compatible=False,
            )
        except BaseException:
            await aclose_forcefully(stream)
            raise
