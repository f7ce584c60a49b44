"""Main entry point for Meow."""

import asyncio
import signal
import sys
from collections import deque
from pathlib import Path

import typer

from meow.commands import CommandHandler, CommandResult
from meow.config import Config, get_config, set_config
from meow.exceptions import ConfigurationError
from meow.logging import configure_logging, log
from meow.prompt import build_system_prompt
from meow.renderer import ConsoleRenderer
from meow.scheduler import COMPACT_CONTEXT_TOOL, SessionContext, SessionScheduler
from meow.tools import build_dispatcher
from meow.transport import StreamingTransport

app = typer.Typer(help="Meow - a streaming, tool-using chat agent for the terminal")


class StdinLines:
    """Line reader on the event loop; stdin is never read from a thread."""

    def __init__(self) -> None:
        self._lines: deque[str] = deque()
        self._ready = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self.eof = False

    def attach(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        loop.add_reader(sys.stdin.fileno(), self._on_readable)

    def detach(self) -> None:
        if self._loop is not None and not self.eof:
            self._loop.remove_reader(sys.stdin.fileno())
        self._loop = None

    def _on_readable(self) -> None:
        line = sys.stdin.readline()
        if not line:
            self.eof = True
            if self._loop is not None:
                self._loop.remove_reader(sys.stdin.fileno())
        else:
            self._lines.append(line.rstrip("\r\n"))
        self._ready.set()

    def take_all(self) -> list[str]:
        lines = list(self._lines)
        self._lines.clear()
        self._ready.clear()
        return lines

    async def next_line(self) -> str | None:
        while not self._lines:
            if self.eof:
                return None
            self._ready.clear()
            await self._ready.wait()
        return self._lines.popleft()


def build_scheduler(cfg: Config, renderer: ConsoleRenderer) -> SessionScheduler:
    """Wire transport, tools and history into a scheduler."""
    dispatcher = build_dispatcher(cfg, Path.cwd())
    tool_lines = dispatcher.registry.describe_tools()
    tool_lines.append(f'{COMPACT_CONTEXT_TOOL} {{"summary": string}} - Replace the conversation with a summary.')
    system_prompt = build_system_prompt(tool_lines, cfg.system_prompt)
    context = SessionContext.from_config(cfg, system_prompt)
    return SessionScheduler(cfg, context, StreamingTransport(cfg), dispatcher, renderer)


async def _next_line_or_quit(lines: StdinLines, quit_event: asyncio.Event) -> str | None:
    """Wait for a line of input unless quit is requested first."""
    line_task = asyncio.create_task(lines.next_line())
    quit_task = asyncio.create_task(quit_event.wait())
    try:
        done, _ = await asyncio.wait({line_task, quit_task}, return_when=asyncio.FIRST_COMPLETED)
        if line_task in done:
            return line_task.result()
        return None
    finally:
        for task in (line_task, quit_task):
            if not task.done():
                task.cancel()


async def run_session(first_message: str = "", interactive: bool = True) -> None:
    """Run turns from the command line message and, if interactive, from stdin."""
    cfg = get_config()
    loop = asyncio.get_running_loop()
    lines = StdinLines()
    renderer = ConsoleRenderer(input_source=lines.take_all if interactive else None)
    scheduler = build_scheduler(cfg, renderer)
    commands = CommandHandler(cfg, scheduler, renderer)
    quit_event = asyncio.Event()
    turn_running = False

    def _on_sigint() -> None:
        if turn_running:
            scheduler.context.cancel.set()
        else:
            quit_event.set()

    loop.add_signal_handler(signal.SIGINT, _on_sigint)
    if interactive:
        lines.attach(loop)
        renderer.print_welcome(cfg.model.model, cfg.current_provider().name)

    pending: deque[str] = deque([first_message] if first_message else [])
    try:
        while not quit_event.is_set():
            if not pending:
                if not interactive:
                    break
                renderer.prompt()
                line = await _next_line_or_quit(lines, quit_event)
                if line is None:
                    break
                pending.append(line)

            text = pending.popleft().strip()
            if not text:
                continue
            if text.startswith("/"):
                if await commands.handle(text) is CommandResult.EXIT:
                    break
                continue

            turn_running = True
            try:
                await scheduler.run_turn(text)
            finally:
                turn_running = False
            pending.extend(scheduler.pending_prompts())
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        lines.detach()


def main(
    message: str = "",
    config: str = "",
    model: str = "",
    provider: str = "",
    verbose: bool = False,
) -> None:
    """Start a Meow session."""
    try:
        cfg = Config.from_yaml(Path(config)) if config else Config.load()
    except ConfigurationError as e:
        typer.echo(f"Failed to load config: {e}", err=True)
        raise typer.Exit(code=1)

    if model:
        cfg.model.model = model
    if provider:
        cfg.model.provider = provider
    set_config(cfg)
    configure_logging(cfg, level="DEBUG" if verbose else None)

    interactive = not message and sys.stdin.isatty()
    if not message and not interactive:
        message = sys.stdin.read().strip()

    try:
        asyncio.run(run_session(message, interactive=interactive))
    except KeyboardInterrupt:
        log.info("Shutting down...")
    except ConfigurationError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=1)


@app.command()
def run(
    message: str = typer.Argument("", help="Send one message and exit (interactive when omitted)"),
    config: str = typer.Option("", "-c", "--config", help="Path to config file"),
    model: str = typer.Option("", "-m", "--model", help="Override model"),
    provider: str = typer.Option("", "-p", "--provider", help="Override provider"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    main(message, config, model, provider, verbose)


if __name__ == "__main__":
    app()
