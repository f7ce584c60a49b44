"""Non-blocking byte streams to a provider, plain TCP or TLS."""

import asyncio
import socket
import ssl
import time
from typing import Protocol

from meow.config import ProviderConfig
from meow.exceptions import FatalTransportError, TransientTransportError
from meow.logging import get_logger

log = get_logger(__name__)

HANDSHAKE_POLL_SECONDS = 0.01


class ByteStream(Protocol):
    """Minimal non-blocking stream.

    `recv` returns b"" at end of stream and raises BlockingIOError when no
    data is available yet. `send` returns the number of bytes accepted and
    raises BlockingIOError when the socket cannot accept any.
    """

    def send(self, data: bytes) -> int: ...

    def recv(self, max_bytes: int) -> bytes: ...

    def close(self) -> None: ...


class SocketStream:
    """ByteStream over a non-blocking socket, optionally TLS-wrapped."""

    def __init__(self, sock: socket.socket):
        self._sock = sock

    def send(self, data: bytes) -> int:
        try:
            return self._sock.send(data)
        except (ssl.SSLWantReadError, ssl.SSLWantWriteError) as e:
            raise BlockingIOError(str(e)) from e

    def recv(self, max_bytes: int) -> bytes:
        try:
            return self._sock.recv(max_bytes)
        except (ssl.SSLWantReadError, ssl.SSLWantWriteError) as e:
            raise BlockingIOError(str(e)) from e
        except ssl.SSLZeroReturnError:
            return b""

    def close(self) -> None:
        try:
            self._sock.close()
        except OSError as e:
            log.debug("Socket close failed", error=str(e))


async def _connect_socket(host: str, port: int, timeout: float) -> socket.socket:
    loop = asyncio.get_running_loop()
    try:
        infos = await asyncio.wait_for(
            loop.getaddrinfo(host, port, type=socket.SOCK_STREAM),
            timeout=timeout,
        )
    except (OSError, asyncio.TimeoutError) as e:
        raise TransientTransportError(f"DNS resolution failed for: {host}") from e

    last_error: Exception | None = None
    for family, sock_type, proto, _, address in infos:
        sock = socket.socket(family, sock_type, proto)
        sock.setblocking(False)
        try:
            await asyncio.wait_for(loop.sock_connect(sock, address), timeout=timeout)
        except (OSError, asyncio.TimeoutError) as e:
            sock.close()
            last_error = e
            continue
        return sock

    raise TransientTransportError(f"Connection failed to: {host}:{port} ({last_error})")


async def _tls_handshake(sock: ssl.SSLSocket, timeout: float) -> None:
    deadline = time.monotonic() + timeout
    while True:
        try:
            sock.do_handshake()
            return
        except (ssl.SSLWantReadError, ssl.SSLWantWriteError):
            if time.monotonic() > deadline:
                raise TransientTransportError("TLS handshake timed out")
            await asyncio.sleep(HANDSHAKE_POLL_SECONDS)
        except ssl.SSLCertVerificationError as e:
            raise FatalTransportError(f"TLS certificate verification failed: {e}") from e
        except (ssl.SSLError, OSError) as e:
            raise TransientTransportError(f"TLS handshake failed: {e}") from e


async def open_connection(provider: ProviderConfig, timeout: float = 15.0) -> SocketStream:
    """Connect to a provider and return a non-blocking byte stream."""
    host, port = provider.host_port()
    sock = await _connect_socket(host, port, timeout)

    if provider.is_https():
        context = ssl.create_default_context()
        tls_sock = context.wrap_socket(sock, server_hostname=host, do_handshake_on_connect=False)
        try:
            await _tls_handshake(tls_sock, timeout)
        except Exception:
            tls_sock.close()
            raise
        log.debug("TLS connection established", host=host, port=port)
        return SocketStream(tls_sock)

    log.debug("Connection established", host=host, port=port)
    return SocketStream(sock)
