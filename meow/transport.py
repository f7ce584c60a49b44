"""Streaming transport: byte stream in, content deltas and a terminal outcome out."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from meow.config import Config, ProviderConfig
from meow.exceptions import (
    ConfigurationError,
    FatalTransportError,
    TransientTransportError,
)
from meow.llm import (
    build_chat_body,
    build_http_request,
    chat_path,
    parse_stream_record,
)
from meow.llm.connection import ByteStream, open_connection
from meow.logging import get_logger

log = get_logger(__name__)

HEADER_TERMINATOR = b"\r\n\r\n"
MAX_HEADER_BYTES = 64 * 1024
ERROR_BODY_EXCERPT = 300

PollFn = Callable[[], Awaitable[None]]
DeltaFn = Callable[[str], None]
StatusFn = Callable[[str], None]
ConnectFactory = Callable[[ProviderConfig, float], Awaitable[ByteStream]]


class OutcomeStatus(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"


class FailureKind(str, Enum):
    RETRIES_EXHAUSTED = "retries_exhausted"
    STALLED = "stalled"
    FATAL = "fatal"
    PROVIDER_ERROR = "provider_error"


@dataclass
class StreamStats:
    """Timing and size of one streamed response."""

    ttft: float = 0.0
    stream_seconds: float = 0.0
    total_bytes: int = 0

    @property
    def tokens_per_second(self) -> float:
        if self.stream_seconds <= 0:
            return 0.0
        return ((self.total_bytes + 3) // 4) / self.stream_seconds


@dataclass
class StreamOutcome:
    """Terminal result of a streamed completion."""

    status: OutcomeStatus
    text: str = ""
    failure: FailureKind | None = None
    reason: str = ""
    stats: StreamStats = field(default_factory=StreamStats)

    @classmethod
    def complete(cls, text: str, stats: StreamStats | None = None) -> "StreamOutcome":
        return cls(OutcomeStatus.COMPLETE, text=text, stats=stats or StreamStats())

    @classmethod
    def partial(cls, text: str, stats: StreamStats | None = None) -> "StreamOutcome":
        return cls(OutcomeStatus.PARTIAL, text=text, stats=stats or StreamStats())

    @classmethod
    def failed(
        cls,
        kind: FailureKind,
        reason: str,
        text: str = "",
        stats: StreamStats | None = None,
    ) -> "StreamOutcome":
        return cls(OutcomeStatus.FAILED, text=text, failure=kind, reason=reason, stats=stats or StreamStats())

    @property
    def is_complete(self) -> bool:
        return self.status is OutcomeStatus.COMPLETE

    @property
    def is_partial(self) -> bool:
        return self.status is OutcomeStatus.PARTIAL

    @property
    def is_failed(self) -> bool:
        return self.status is OutcomeStatus.FAILED


@dataclass
class RetryState:
    """Attempt counter, backoff schedule and stall deadline for one transport call."""

    max_attempts: int
    base_delay: float
    max_delay: float
    attempt: int = 0
    next_delay: float = 0.0
    deadline: float = 0.0

    def __post_init__(self) -> None:
        if not self.next_delay:
            self.next_delay = self.base_delay

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    def next_backoff(self) -> float:
        """Return the current delay and double the next one, up to the cap."""
        delay = self.next_delay
        self.next_delay = min(self.next_delay * 2, self.max_delay)
        return delay

    def arm(self, now: float, ceiling: float) -> None:
        self.deadline = now + ceiling

    def expired(self, now: float) -> bool:
        return now > self.deadline


class LineFramer:
    """Split a byte stream into complete text lines.

    Bytes are decoded one complete line at a time so a multi-byte character
    split across reads is never corrupted. Trailing partial bytes stay
    buffered until a newline arrives or `flush` is called.
    """

    def __init__(self) -> None:
        self._pending = bytearray()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def feed(self, data: bytes) -> list[str]:
        self._pending.extend(data)
        lines: list[str] = []
        while True:
            index = self._pending.find(b"\n")
            if index < 0:
                break
            raw = bytes(self._pending[:index])
            del self._pending[: index + 1]
            lines.append(raw.decode("utf-8", errors="replace").rstrip("\r"))
        return lines

    def flush(self) -> str:
        raw = bytes(self._pending)
        self._pending.clear()
        return raw.decode("utf-8", errors="replace").rstrip("\r")


def parse_status_code(head: bytes) -> int:
    """Extract the status code from an HTTP response head."""
    status_line = head.split(b"\r\n", 1)[0].decode("latin-1", errors="replace")
    parts = status_line.split(" ", 2)
    if len(parts) < 2 or not parts[0].startswith("HTTP/") or not parts[1].isdigit():
        raise FatalTransportError(f"Malformed response status line: {status_line!r}")
    return int(parts[1])


def check_status(status_code: int, body_excerpt: bytes = b"") -> None:
    """Raise for non-200 statuses: 429 and 5xx are transient, the rest fatal."""
    if status_code == 200:
        return
    detail = body_excerpt[:ERROR_BODY_EXCERPT].decode("utf-8", errors="replace").strip()
    message = f"Server returned HTTP {status_code}"
    if detail:
        message = f"{message}: {detail}"
    if status_code == 429 or status_code >= 500:
        raise TransientTransportError(message, status_code=status_code)
    raise FatalTransportError(message, status_code=status_code)


class _ResponseReader:
    """State of one response read: head, framing, accumulated text and timing."""

    def __init__(self, api_type: str, on_delta: DeltaFn | None, started: float, clock: Callable[[], float]):
        self.api_type = api_type
        self.on_delta = on_delta
        self.started = started
        self.clock = clock
        self.head = bytearray()
        self.head_done = False
        self.received_any = False
        self.framer = LineFramer()
        self.parts: list[str] = []
        self.first_delta_at: float | None = None
        self.done = False
        self.error = ""

    @property
    def text(self) -> str:
        return "".join(self.parts)

    def stats(self) -> StreamStats:
        now = self.clock()
        if self.first_delta_at is None:
            return StreamStats(total_bytes=len(self.text.encode("utf-8")))
        return StreamStats(
            ttft=self.first_delta_at - self.started,
            stream_seconds=now - self.first_delta_at,
            total_bytes=len(self.text.encode("utf-8")),
        )

    def feed(self, chunk: bytes) -> None:
        self.received_any = True
        if not self.head_done:
            self.head.extend(chunk)
            index = self.head.find(HEADER_TERMINATOR)
            if index < 0:
                if len(self.head) > MAX_HEADER_BYTES:
                    raise FatalTransportError("Response header too large")
                return
            body = bytes(self.head[index + len(HEADER_TERMINATOR):])
            check_status(parse_status_code(bytes(self.head[:index])), body)
            self.head_done = True
            chunk = body
        for line in self.framer.feed(chunk):
            self._handle_line(line)
            if self.done or self.error:
                return

    def finish(self) -> None:
        """Fold leftover bytes without a trailing newline into the result."""
        leftover = self.framer.flush()
        for line in leftover.splitlines():
            self._handle_line(line)
            if self.done or self.error:
                return

    def _handle_line(self, line: str) -> None:
        record = parse_stream_record(line, self.api_type)
        if record is None:
            return
        if record.error:
            self.error = record.error
            return
        if record.content:
            if self.first_delta_at is None:
                self.first_delta_at = self.clock()
            self.parts.append(record.content)
            if self.on_delta is not None:
                self.on_delta(record.content)
        if record.done:
            self.done = True


class StreamingTransport:
    """Send a chat request over a byte stream and read the streamed reply.

    Every wait goes through the caller's `poll` yield point, which is also
    where cancellation surfaces (as RequestCancelledError).
    """

    def __init__(
        self,
        config: Config,
        connect: ConnectFactory = open_connection,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self._connect = connect
        self._clock = clock

    def build_request(self, messages: list[dict[str, Any]]) -> tuple[ProviderConfig, bytes]:
        provider = self.config.current_provider()
        body = build_chat_body(
            model=self.config.model.model,
            messages=messages,
            api_type=provider.api_type,
            max_tokens=self.config.model.max_tokens,
        )
        return provider, build_http_request(provider, chat_path(provider), body)

    async def stream(
        self,
        messages: list[dict[str, Any]],
        poll: PollFn,
        on_delta: DeltaFn | None = None,
        on_status: StatusFn | None = None,
        continuation: bool = False,
    ) -> StreamOutcome:
        """Stream one completion with retry on transient failures."""
        settings = self.config.transport
        try:
            provider, request = self.build_request(messages)
        except ConfigurationError as e:
            return StreamOutcome.failed(FailureKind.FATAL, str(e))

        retry = RetryState(
            max_attempts=max(1, settings.max_retries),
            base_delay=settings.backoff_base,
            max_delay=settings.backoff_max,
        )
        prefix = "continuing" if continuation else "connecting"
        started = self._clock()

        while True:
            retry.attempt += 1
            if on_status is not None:
                on_status(prefix if retry.attempt == 1 else f"{prefix} retry {retry.attempt - 1}")
            try:
                return await self._attempt(provider, request, retry, poll, on_delta, on_status, started)
            except TransientTransportError as e:
                log.warning(
                    "Transient transport error",
                    attempt=retry.attempt,
                    max_attempts=retry.max_attempts,
                    error=str(e),
                )
                if retry.exhausted:
                    return StreamOutcome.failed(
                        FailureKind.RETRIES_EXHAUSTED,
                        f"Gave up after {retry.attempt} attempts: {e}",
                    )
                await self._backoff(retry.next_backoff(), poll)
            except FatalTransportError as e:
                log.error("Fatal transport error", error=str(e))
                return StreamOutcome.failed(FailureKind.FATAL, str(e))

    async def _backoff(self, delay: float, poll: PollFn) -> None:
        until = self._clock() + delay
        while self._clock() < until:
            await poll()

    async def _attempt(
        self,
        provider: ProviderConfig,
        request: bytes,
        retry: RetryState,
        poll: PollFn,
        on_delta: DeltaFn | None,
        on_status: StatusFn | None,
        started: float,
    ) -> StreamOutcome:
        try:
            stream = await self._connect(provider, self.config.transport.connect_timeout)
        except OSError as e:
            raise TransientTransportError(f"Connection failed: {e}") from e
        try:
            await self.write_all(stream, request, poll)
            if on_status is not None:
                on_status("waiting")
            return await self.read_response(stream, provider.api_type, retry, poll, on_delta, started)
        finally:
            stream.close()

    async def write_all(self, stream: ByteStream, data: bytes, poll: PollFn) -> None:
        """Write the whole request, yielding while the socket is full."""
        view = memoryview(data)
        deadline = self._clock() + self.config.transport.write_timeout
        while view:
            try:
                sent = stream.send(view)
            except BlockingIOError:
                if self._clock() > deadline:
                    raise TransientTransportError("Write still blocked after write timeout")
                await poll()
                continue
            except ConnectionError as e:
                raise TransientTransportError(f"Write failed: {e}") from e
            except OSError as e:
                raise FatalTransportError(f"Write failed: {e}") from e
            view = view[sent:]

    async def read_response(
        self,
        stream: ByteStream,
        api_type: str,
        retry: RetryState,
        poll: PollFn,
        on_delta: DeltaFn | None,
        started: float,
    ) -> StreamOutcome:
        """Read and frame a streamed response until done, end of stream or stall."""
        settings = self.config.transport
        reader = _ResponseReader(api_type, on_delta, started, self._clock)
        retry.arm(self._clock(), settings.stall_timeout)

        while True:
            try:
                chunk = stream.recv(settings.read_chunk_size)
            except BlockingIOError:
                if retry.expired(self._clock()):
                    if not reader.received_any:
                        raise TransientTransportError(
                            f"No response within {settings.stall_timeout:.0f}s"
                        )
                    log.warning("Stream stalled", received=len(reader.text))
                    return StreamOutcome.failed(
                        FailureKind.STALLED,
                        f"No data received for {settings.stall_timeout:.0f}s",
                        text=reader.text,
                        stats=reader.stats(),
                    )
                await poll()
                continue
            except ConnectionError as e:
                if not reader.head_done:
                    raise TransientTransportError(f"Connection lost: {e}") from e
                log.warning("Connection lost mid-stream", error=str(e))
                chunk = b""
            except OSError as e:
                raise FatalTransportError(f"Read failed: {e}") from e

            if not chunk:
                if not reader.head_done:
                    raise TransientTransportError("Connection closed by server")
                reader.finish()
                if reader.error:
                    return StreamOutcome.failed(FailureKind.PROVIDER_ERROR, reader.error, reader.text, reader.stats())
                if reader.done:
                    return StreamOutcome.complete(reader.text, reader.stats())
                log.info("Stream ended without completion marker", received=len(reader.text))
                return StreamOutcome.partial(reader.text, reader.stats())

            retry.arm(self._clock(), settings.stall_timeout)
            reader.feed(chunk)
            if reader.error:
                return StreamOutcome.failed(FailureKind.PROVIDER_ERROR, reader.error, reader.text, reader.stats())
            if reader.done:
                return StreamOutcome.complete(reader.text, reader.stats())
