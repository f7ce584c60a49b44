"""Session scheduler: the cooperative turn loop.

One user turn runs as an explicit state machine on a single event loop:

    Idle -> AwaitingFirstByte -> Streaming -> {ToolIteration | GuardrailIteration}
         -> Done | Cancelled | Failed

Every wait (would-block reads, backoff sleeps, write stalls) goes through
`SessionScheduler.poll`, which drains pending user input, checks the cancel
signal, emits a status tick and sleeps a short adaptive interval.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Protocol

from meow.config import Config
from meow.exceptions import RequestCancelledError
from meow.execution_queue import InputQueue, QueueSettings
from meow.guard import GuardrailMonitor, GuardrailStats, NOTICE_PREFIX, contains_fake_result
from meow.history import HistoryStore, Role
from meow.logging import get_logger
from meow.tools.dispatcher import ToolDispatcher, find_first_tool_call
from meow.transport import StreamOutcome, StreamingTransport

log = get_logger(__name__)

COMPACT_CONTEXT_TOOL = "CompactContext"
CONTINUE_NOTICE = (
    f"{NOTICE_PREFIX} Your response was cut off mid-stream. "
    "Please continue exactly where you left off."
)
# Shortest suffix/prefix overlap treated as a repeated fragment.
MIN_CONTINUATION_OVERLAP = 8


class TurnState(str, Enum):
    IDLE = "idle"
    AWAITING_FIRST_BYTE = "awaiting_first_byte"
    STREAMING = "streaming"
    TOOL_ITERATION = "tool_iteration"
    GUARDRAIL_ITERATION = "guardrail_iteration"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class TurnResult:
    """How a user turn ended."""

    state: TurnState
    text: str = ""
    reason: str = ""
    iterations: int = 0
    stats: GuardrailStats = field(default_factory=GuardrailStats)


class CancelSignal:
    """Externally settable cancel flag, checked at every yield point."""

    def __init__(self) -> None:
        self._set = False

    def set(self) -> None:
        self._set = True

    def clear(self) -> None:
        self._set = False

    @property
    def is_set(self) -> bool:
        return self._set


@dataclass
class SessionContext:
    """Mutable session state owned by the scheduler."""

    history: HistoryStore
    input_queue: InputQueue = field(default_factory=InputQueue)
    cancel: CancelSignal = field(default_factory=CancelSignal)
    guard_stats: GuardrailStats = field(default_factory=GuardrailStats)
    state: TurnState = TurnState.IDLE
    pending_partial: str = ""
    system_prompt: str = ""
    status_text: str = ""
    in_flight: bool = False
    fresh_output: bool = False
    polls: int = 0
    turn_started: float = 0.0

    @classmethod
    def from_config(cls, config: Config, system_prompt: str = "") -> "SessionContext":
        history = HistoryStore(
            max_messages=config.history.max_messages,
            max_tokens=config.history.max_tokens,
        )
        if system_prompt:
            history.append(Role.SYSTEM, system_prompt)
        return cls(
            history=history,
            input_queue=InputQueue(QueueSettings.from_config(config.input_queue)),
            system_prompt=system_prompt,
        )


class Renderer(Protocol):
    """Display collaborator. The scheduler never draws."""

    def status(self, text: str, ticks: int, elapsed: float) -> None: ...

    def delta(self, text: str, final: bool) -> None: ...

    def pull_input(self) -> list[str]: ...

    def notice(self, text: str, level: str = "info") -> None: ...


class NullRenderer:
    """Renderer that draws nothing and never has input."""

    def status(self, text: str, ticks: int, elapsed: float) -> None:
        pass

    def delta(self, text: str, final: bool) -> None:
        pass

    def pull_input(self) -> list[str]:
        return []

    def notice(self, text: str, level: str = "info") -> None:
        pass


def merge_continuation(partial: str, continuation: str) -> str:
    """Join a cut-off response with its continuation, dropping a repeated prefix.

    The continuation may restart from the beginning (it starts with the whole
    partial text) or repeat only the tail of it (a suffix of `partial` of at
    least MIN_CONTINUATION_OVERLAP characters that it starts with).
    """
    if not partial:
        return continuation
    if continuation.startswith(partial):
        return continuation
    longest = min(len(partial), len(continuation))
    for size in range(longest, MIN_CONTINUATION_OVERLAP - 1, -1):
        if partial.endswith(continuation[:size]):
            return partial + continuation[size:]
    return partial + continuation


class ContinuationFilter:
    """Suppress a repeated prefix while a continuation streams in.

    Deltas are held back while the buffered text still occurs somewhere in the
    partial text, since it may yet turn out to be a restart or a repeated tail
    of any length. Once it no longer occurs there (or covers all of it), the
    overlap is decided and only the new part is released.
    """

    def __init__(self, partial: str):
        self.partial = partial
        self._buffer = ""
        self._decided = False

    def feed(self, delta: str) -> str:
        if self._decided:
            return delta
        self._buffer += delta
        if len(self._buffer) >= len(self.partial) or self._buffer not in self.partial:
            return self._decide()
        return ""

    def flush(self) -> str:
        if self._decided:
            return ""
        return self._decide()

    def _decide(self) -> str:
        self._decided = True
        merged = merge_continuation(self.partial, self._buffer)
        self._buffer = ""
        return merged[len(self.partial):]


def format_stream_stats(outcome: StreamOutcome, fakes: int) -> str:
    stats = outcome.stats
    return (
        f"First: {stats.ttft * 1000:.0f}ms | Stream: {stats.stream_seconds * 1000:.0f}ms | "
        f"Size: {stats.total_bytes / 1024:.2f}KB | TPS: {stats.tokens_per_second:.1f} | Fakes: {fakes}"
    )


class SessionScheduler:
    """Drive user turns through the transport, guardrails and tool dispatcher."""

    def __init__(
        self,
        config: Config,
        context: SessionContext,
        transport: StreamingTransport,
        dispatcher: ToolDispatcher,
        renderer: Renderer | None = None,
        guard: GuardrailMonitor | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.context = context
        self.transport = transport
        self.dispatcher = dispatcher
        self.renderer: Renderer = renderer or NullRenderer()
        self.guard = guard or GuardrailMonitor(
            lambda: [*dispatcher.registry.list_tools(), COMPACT_CONTEXT_TOOL]
        )
        self._clock = clock
        self._sleep = sleep

    async def poll(self) -> None:
        """The single yield point: input, cancellation, status tick, adaptive sleep."""
        ctx = self.context
        for text in self.renderer.pull_input():
            ctx.input_queue.enqueue(text)

        if ctx.cancel.is_set:
            raise RequestCancelledError()

        ctx.polls += 1
        settings = self.config.scheduler
        if settings.tick_every > 0 and ctx.polls % settings.tick_every == 0:
            self.renderer.status(ctx.status_text, ctx.polls, self._clock() - ctx.turn_started)

        # Short sleeps only while output is actually arriving.
        streaming = ctx.in_flight and ctx.fresh_output
        ctx.fresh_output = False
        interval = settings.active_poll_interval if streaming else settings.idle_poll_interval
        await self._sleep(interval)

    def _set_status(self, text: str) -> None:
        self.context.status_text = text
        self.renderer.status(text, self.context.polls, self._clock() - self.context.turn_started)

    def pending_prompts(self) -> list[str]:
        """Input queued during the last turn, ready to run as new turns."""
        return self.context.input_queue.drain()

    async def run_turn(self, user_message: str) -> TurnResult:
        """Run one user turn to Done, Cancelled or Failed."""
        ctx = self.context
        ctx.guard_stats.reset()
        ctx.pending_partial = ""
        ctx.polls = 0
        ctx.turn_started = self._clock()
        ctx.state = TurnState.IDLE
        ctx.history.append(Role.USER, user_message)

        try:
            result = await self._turn_loop()
        finally:
            ctx.cancel.clear()
            ctx.in_flight = False
            ctx.pending_partial = ""

        ctx.state = result.state
        result.stats = GuardrailStats(
            intents=list(ctx.guard_stats.intents),
            tools=ctx.guard_stats.tools,
            fakes=ctx.guard_stats.fakes,
        )
        flagged = ctx.guard_stats.intent_mismatch or ctx.guard_stats.fakes > 0
        self.renderer.notice(ctx.guard_stats.summary(), "warning" if flagged else "ok")
        if result.state is TurnState.FAILED:
            self.renderer.notice(result.reason, "error")
        elif result.state is TurnState.CANCELLED:
            self.renderer.notice("Request cancelled", "warning")
        elif ctx.history.token_estimate > self.config.history.compaction_warning_tokens:
            self.renderer.notice(
                "Token count is high - consider asking the assistant to compact context",
                "warning",
            )
        log.info(
            "Turn finished",
            state=result.state.value,
            iterations=result.iterations,
            reason=result.reason,
        )
        return result

    async def _turn_loop(self) -> TurnResult:
        ctx = self.context
        max_iterations = self.config.scheduler.max_iterations

        for iteration in range(1, max_iterations + 1):
            if ctx.cancel.is_set:
                return TurnResult(TurnState.CANCELLED, reason="Request cancelled", iterations=iteration - 1)

            ctx.state = TurnState.AWAITING_FIRST_BYTE
            continuation = ContinuationFilter(ctx.pending_partial) if ctx.pending_partial else None
            emitted: list[str] = []

            def on_delta(delta: str) -> None:
                ctx.fresh_output = True
                if ctx.state is TurnState.AWAITING_FIRST_BYTE:
                    ctx.state = TurnState.STREAMING
                if continuation is not None:
                    delta = continuation.feed(delta)
                if delta:
                    emitted.append(delta)
                    self.renderer.delta(delta, False)

            def flush_continuation() -> None:
                if continuation is not None:
                    tail = continuation.flush()
                    if tail:
                        emitted.append(tail)
                        self.renderer.delta(tail, False)

            ctx.in_flight = True
            ctx.fresh_output = False
            try:
                outcome = await self.transport.stream(
                    ctx.history.to_wire(),
                    self.poll,
                    on_delta=on_delta,
                    on_status=self._set_status,
                    continuation=iteration > 1,
                )
            except RequestCancelledError:
                flush_continuation()
                self.renderer.delta("", True)
                return self._cancelled("".join(emitted), ctx.pending_partial, iteration)
            finally:
                ctx.in_flight = False

            flush_continuation()
            self.renderer.delta("", True)
            new_text = "".join(emitted)
            full_text = ctx.pending_partial + new_text
            fake = contains_fake_result(full_text)
            self.renderer.notice(format_stream_stats(outcome, 1 if fake else 0), "stats")

            if outcome.is_failed:
                if new_text and not fake:
                    ctx.history.append(Role.ASSISTANT, new_text)
                return TurnResult(
                    TurnState.FAILED,
                    text=full_text,
                    reason=outcome.reason,
                    iterations=iteration,
                )

            if fake:
                ctx.pending_partial = ""
                self.guard.check_fake(full_text, ctx.history, ctx.guard_stats)
                self.renderer.notice("Fake Tool Result detected", "warning")
                ctx.state = TurnState.GUARDRAIL_ITERATION
                continue

            if outcome.is_partial:
                if new_text:
                    ctx.history.append(Role.ASSISTANT, new_text)
                    ctx.history.append(Role.USER, CONTINUE_NOTICE)
                    ctx.pending_partial = full_text
                log.info("Resuming partial response", received=len(full_text))
                continue

            ctx.pending_partial = ""
            call, ignored = find_first_tool_call(full_text)

            if call is not None and call.name == COMPACT_CONTEXT_TOOL:
                summary = call.arguments.get("summary")
                if isinstance(summary, str) and summary.strip():
                    before, after = ctx.history.compact(summary.strip(), ctx.system_prompt)
                    self.renderer.notice(
                        f"Context compacted: {before} tokens -> {after} tokens (saved {before - after} tokens)",
                        "ok",
                    )
                    ctx.guard_stats.tools += 1
                    return TurnResult(TurnState.DONE, text=full_text, iterations=iteration)

            if call is not None:
                if new_text:
                    ctx.history.append(Role.ASSISTANT, new_text)
                ctx.guard_stats.tools += 1
                self.guard.check_intents(full_text, ctx.history, ctx.guard_stats, tool_call_found=True)
                ctx.state = TurnState.TOOL_ITERATION
                if call.name == COMPACT_CONTEXT_TOOL:
                    result_message = (
                        "Tool failed: CompactContext requires a non-empty summary\n\n"
                        "Please call CompactContext again with a summary of the conversation."
                    )
                    self.renderer.notice("Tool Status: Failed", "error")
                else:
                    started = self._clock()
                    tool_outcome = await self.dispatcher.dispatch(call)
                    duration = self._clock() - started
                    status = "Success" if tool_outcome.success else "Failed"
                    self.renderer.notice(
                        f"Tool Status: {status} | {call.name} | Duration: {duration * 1000:.0f}ms",
                        "ok" if tool_outcome.success else "error",
                    )
                    result_message = self.dispatcher.format_result(tool_outcome, ignored)
                ctx.history.append(Role.TOOL, result_message)
                continue

            if new_text:
                ctx.history.append(Role.ASSISTANT, new_text)
            if self.guard.check_intents(full_text, ctx.history, ctx.guard_stats, tool_call_found=False):
                self.renderer.notice("Self check: stated intentions without a tool call", "warning")
                ctx.state = TurnState.GUARDRAIL_ITERATION
                continue

            return TurnResult(TurnState.DONE, text=full_text, iterations=iteration)

        return TurnResult(
            TurnState.FAILED,
            reason=f"Maximum tool iterations ({max_iterations}) reached",
            iterations=max_iterations,
        )

    def _cancelled(self, new_text: str, pending_partial: str, iteration: int) -> TurnResult:
        full_text = pending_partial + new_text
        if new_text and not contains_fake_result(full_text):
            self.context.history.append(Role.ASSISTANT, new_text)
        log.info("Turn cancelled", surfaced=len(full_text))
        return TurnResult(
            TurnState.CANCELLED,
            text=full_text,
            reason="Request cancelled",
            iterations=iteration,
        )
