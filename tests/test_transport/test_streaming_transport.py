import json
from collections import deque

import pytest

from meow.config import Config, ProviderConfig
from meow.exceptions import RequestCancelledError
from meow.transport import FailureKind, OutcomeStatus, StreamingTransport

OK_HEAD = b"HTTP/1.1 200 OK\r\nContent-Type: application/x-ndjson\r\n\r\n"


class FakeStream:
    def __init__(self, *chunks, block_when_empty: bool = False):
        self.chunks = deque(chunks)
        self.block_when_empty = block_when_empty
        self.sent = bytearray()
        self.closed = False
        self.recv_calls = 0

    def send(self, data) -> int:
        self.sent.extend(bytes(data))
        return len(data)

    def recv(self, max_bytes: int) -> bytes:
        self.recv_calls += 1
        if not self.chunks:
            if self.block_when_empty:
                raise BlockingIOError()
            return b""
        item = self.chunks.popleft()
        if isinstance(item, BaseException):
            raise item
        return item

    def close(self) -> None:
        self.closed = True


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def ollama_line(content: str, done: bool = False) -> bytes:
    return (json.dumps({"message": {"role": "assistant", "content": content}, "done": done}) + "\n").encode()


def make_config(**transport) -> Config:
    cfg = Config()
    cfg.providers = [ProviderConfig(name="local", base_url="http://127.0.0.1:11434", api_type="ollama")]
    cfg.model.provider = "local"
    cfg.model.model = "test-model"
    cfg.model.max_tokens = 256
    cfg.transport.backoff_base = 0.05
    cfg.transport.backoff_max = 0.2
    cfg.transport.stall_timeout = 1.0
    for key, value in transport.items():
        setattr(cfg.transport, key, value)
    return cfg


def make_transport(cfg: Config, *streams: FakeStream):
    clock = FakeClock()
    pending = deque(streams)
    connects: list[str] = []

    async def connect(provider: ProviderConfig, timeout: float):
        connects.append(provider.name)
        return pending.popleft()

    async def poll() -> None:
        clock.now += 0.01

    return StreamingTransport(cfg, connect=connect, clock=clock), poll, connects


@pytest.mark.asyncio
async def test_complete_stream_split_into_single_bytes_keeps_multibyte_text():
    body = ollama_line("Hé") + ollama_line(" 🐱") + ollama_line("", done=True)
    payload = OK_HEAD + body
    stream = FakeStream(*[payload[i:i + 1] for i in range(len(payload))])
    transport, poll, _ = make_transport(make_config(), stream)
    deltas: list[str] = []

    outcome = await transport.stream([{"role": "user", "content": "hi"}], poll, on_delta=deltas.append)

    assert outcome.status is OutcomeStatus.COMPLETE
    assert outcome.text == "Hé 🐱"
    assert deltas == ["Hé", " 🐱"]
    assert stream.closed is True


@pytest.mark.asyncio
async def test_final_record_without_trailing_newline_completes():
    last = json.dumps({"message": {"content": "!"}, "done": True}).encode()
    stream = FakeStream(OK_HEAD + ollama_line("Hi"), last)
    transport, poll, _ = make_transport(make_config(), stream)

    outcome = await transport.stream([], poll)

    assert outcome.is_complete
    assert outcome.text == "Hi!"


@pytest.mark.asyncio
async def test_eof_before_done_is_partial_with_leftover_folded_in():
    leftover = json.dumps({"message": {"content": " world"}, "done": False}).encode()
    stream = FakeStream(OK_HEAD + ollama_line("Hello"), leftover)
    transport, poll, _ = make_transport(make_config(), stream)

    outcome = await transport.stream([], poll)

    assert outcome.status is OutcomeStatus.PARTIAL
    assert outcome.text == "Hello world"


@pytest.mark.asyncio
async def test_malformed_line_is_skipped():
    stream = FakeStream(OK_HEAD + b"{not json\n" + ollama_line("ok") + ollama_line("", done=True))
    transport, poll, _ = make_transport(make_config(), stream)

    outcome = await transport.stream([], poll)

    assert outcome.is_complete
    assert outcome.text == "ok"


@pytest.mark.asyncio
async def test_connection_closed_before_any_byte_is_retried():
    empty = FakeStream()
    good = FakeStream(OK_HEAD + ollama_line("fine") + ollama_line("", done=True))
    transport, poll, connects = make_transport(make_config(), empty, good)
    statuses: list[str] = []

    outcome = await transport.stream([], poll, on_status=statuses.append)

    assert outcome.is_complete
    assert outcome.text == "fine"
    assert len(connects) == 2
    assert "connecting retry 1" in statuses
    assert empty.closed and good.closed


@pytest.mark.asyncio
async def test_would_block_reads_do_not_consume_retries():
    stream = FakeStream(
        BlockingIOError(),
        BlockingIOError(),
        OK_HEAD,
        BlockingIOError(),
        ollama_line("x", done=True),
    )
    transport, poll, connects = make_transport(make_config(max_retries=1), stream)

    outcome = await transport.stream([], poll)

    assert outcome.is_complete
    assert connects == ["local"]


@pytest.mark.asyncio
async def test_server_error_is_transient_and_client_error_is_fatal():
    busy = FakeStream(b"HTTP/1.1 503 Service Unavailable\r\n\r\nbusy")
    good = FakeStream(OK_HEAD + ollama_line("done", done=True))
    transport, poll, connects = make_transport(make_config(), busy, good)
    assert (await transport.stream([], poll)).text == "done"
    assert len(connects) == 2

    bad = FakeStream(b"HTTP/1.1 404 Not Found\r\n\r\nmodel not found")
    transport, poll, connects = make_transport(make_config(), bad)
    outcome = await transport.stream([], poll)

    assert outcome.status is OutcomeStatus.FAILED
    assert outcome.failure is FailureKind.FATAL
    assert "404" in outcome.reason
    assert "model not found" in outcome.reason
    assert len(connects) == 1


@pytest.mark.asyncio
async def test_stall_after_data_fails_with_surfaced_text():
    stream = FakeStream(OK_HEAD + ollama_line("partial answer"), block_when_empty=True)
    transport, poll, connects = make_transport(make_config(stall_timeout=0.5), stream)

    outcome = await transport.stream([], poll)

    assert outcome.failure is FailureKind.STALLED
    assert outcome.text == "partial answer"
    assert len(connects) == 1


@pytest.mark.asyncio
async def test_silent_connections_exhaust_retry_budget():
    streams = [FakeStream(block_when_empty=True) for _ in range(3)]
    transport, poll, connects = make_transport(make_config(stall_timeout=0.2, max_retries=3), *streams)

    outcome = await transport.stream([], poll)

    assert outcome.failure is FailureKind.RETRIES_EXHAUSTED
    assert "3 attempts" in outcome.reason
    assert len(connects) == 3
    assert all(s.closed for s in streams)


@pytest.mark.asyncio
async def test_cancellation_at_yield_point_propagates_and_closes_stream():
    stream = FakeStream(OK_HEAD + ollama_line("so far"), block_when_empty=True)
    cfg = make_config()
    calls = {"n": 0}

    async def connect(provider, timeout):
        return stream

    async def poll() -> None:
        calls["n"] += 1
        if calls["n"] >= 3:
            raise RequestCancelledError()

    transport = StreamingTransport(cfg, connect=connect, clock=FakeClock())
    deltas: list[str] = []

    with pytest.raises(RequestCancelledError):
        await transport.stream([], poll, on_delta=deltas.append)

    assert deltas == ["so far"]
    assert stream.closed is True


@pytest.mark.asyncio
async def test_request_is_http10_post_with_stream_and_token_bound():
    stream = FakeStream(OK_HEAD + ollama_line("", done=True))
    transport, poll, _ = make_transport(make_config(), stream)

    await transport.stream([{"role": "user", "content": "hello"}], poll)

    head, _, body = bytes(stream.sent).partition(b"\r\n\r\n")
    assert head.startswith(b"POST /api/chat HTTP/1.0\r\n")
    assert b"Connection: close" in head
    payload = json.loads(body)
    assert payload["stream"] is True
    assert payload["model"] == "test-model"
    assert payload["options"]["num_predict"] == 256
    assert payload["messages"] == [{"role": "user", "content": "hello"}]


@pytest.mark.asyncio
async def test_openai_event_stream_completes_on_done_sentinel():
    cfg = make_config()
    cfg.providers = [ProviderConfig(name="oa", base_url="https://api.example.com/v1", api_type="openai", api_key="k")]
    cfg.model.provider = "oa"
    events = (
        b'data: {"choices":[{"delta":{"role":"assistant"}}]}\n\n'
        b'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\n'
        b": keep-alive\n\n"
        b'data: {"choices":[{"delta":{"content":" there"}}]}\n\n'
        b"data: [DONE]\n\n"
    )
    stream = FakeStream(b"HTTP/1.1 200 OK\r\nContent-Type: text/event-stream\r\n\r\n" + events)
    transport, poll, _ = make_transport(cfg, stream)

    outcome = await transport.stream([], poll)

    assert outcome.is_complete
    assert outcome.text == "Hi there"
    head = bytes(stream.sent).split(b"\r\n\r\n", 1)[0]
    assert head.startswith(b"POST /v1/chat/completions HTTP/1.0")
    assert b"Authorization: Bearer k" in head
    assert json.loads(bytes(stream.sent).split(b"\r\n\r\n", 1)[1])["max_tokens"] == 256
