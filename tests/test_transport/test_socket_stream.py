import asyncio
import socket

import pytest

from meow.config import ProviderConfig
from meow.exceptions import TransientTransportError
from meow.llm.connection import SocketStream, open_connection


def test_socket_stream_would_block_then_data_then_eof():
    left, right = socket.socketpair()
    left.setblocking(False)
    stream = SocketStream(left)
    try:
        with pytest.raises(BlockingIOError):
            stream.recv(1024)

        right.sendall(b"hello")
        assert stream.recv(1024) == b"hello"

        right.close()
        assert stream.recv(1024) == b""
    finally:
        stream.close()


@pytest.mark.asyncio
async def test_open_connection_to_local_server():
    received = asyncio.Queue()

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        await received.put(await reader.readexactly(4))
        writer.write(b"pong")
        await writer.drain()
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        stream = await open_connection(ProviderConfig(base_url=f"http://127.0.0.1:{port}"), timeout=5.0)
        assert stream.send(b"ping") == 4
        assert await asyncio.wait_for(received.get(), timeout=5.0) == b"ping"

        data = b""
        while data != b"pong":
            try:
                chunk = stream.recv(16)
            except BlockingIOError:
                await asyncio.sleep(0.01)
                continue
            assert chunk
            data += chunk
        stream.close()
    finally:
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
async def test_refused_connection_is_transient():
    spare = socket.socket()
    spare.bind(("127.0.0.1", 0))
    port = spare.getsockname()[1]
    spare.close()

    with pytest.raises(TransientTransportError):
        await open_connection(ProviderConfig(base_url=f"http://127.0.0.1:{port}"), timeout=2.0)
