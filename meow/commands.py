"""Slash commands for the interactive session."""

from enum import Enum
from typing import Protocol, Sequence

import httpx

from meow.config import Config
from meow.execution_queue import normalize_queue_drop_policy, normalize_queue_mode
from meow.llm import list_models, query_context_window
from meow.logging import get_logger
from meow.scheduler import SessionScheduler

log = get_logger(__name__)

HELP_TEXT = """\
Commands:
  /help                 - Show this help message
  /clear, /reset        - Clear the conversation (system prompt is kept)
  /model [name|list]    - Show, switch or list models
  /provider [name|list] - Show, switch or list providers
  /tokens               - Show the history token estimate
  /queue [mode] [drop]  - Show or set queued-input mode (followup|collect) and drop policy (old|new|summarize)
  /hotkeys              - Show keyboard shortcuts
  /exit, /quit, /q      - Exit the application

  Just type your message to chat!"""

HOTKEYS_TEXT = """\
Hotkeys:
  Ctrl+C  - Cancel the in-flight request (quits when idle)
  Ctrl+D  - Quit
  Typing while a response streams queues the message for after the turn."""


class CommandResult(str, Enum):
    HANDLED = "handled"
    EXIT = "exit"
    NOT_COMMAND = "not_command"


class CommandOutput(Protocol):
    def info(self, text: str) -> None: ...

    def error(self, text: str) -> None: ...

    def table(self, title: str, columns: Sequence[str], rows: Sequence[Sequence[str]]) -> None: ...


class CommandHandler:
    """Dispatch `/command args` lines against the session and config."""

    def __init__(self, config: Config, scheduler: SessionScheduler, output: CommandOutput):
        self.config = config
        self.scheduler = scheduler
        self.output = output

    async def handle(self, line: str) -> CommandResult:
        line = line.strip()
        if not line.startswith("/"):
            return CommandResult.NOT_COMMAND

        parts = line.split(None, 1)
        command = parts[0].lower()
        args = parts[1].strip() if len(parts) > 1 else ""

        if command in ("/help", "/h", "/?"):
            self.output.info(HELP_TEXT)
        elif command in ("/clear", "/reset"):
            self._clear()
        elif command == "/model":
            await self._model(args)
        elif command == "/provider":
            await self._provider(args)
        elif command == "/tokens":
            self._tokens()
        elif command == "/queue":
            self._queue(args)
        elif command == "/hotkeys":
            self.output.info(HOTKEYS_TEXT)
        elif command in ("/exit", "/quit", "/q"):
            return CommandResult.EXIT
        else:
            self.output.error(f"Unknown command: {command}")
        return CommandResult.HANDLED

    def _clear(self) -> None:
        ctx = self.scheduler.context
        ctx.history.clear(keep_system=True)
        ctx.guard_stats.reset()
        ctx.input_queue.clear()
        self.output.info("Conversation cleared.")

    async def _model(self, args: str) -> None:
        if not args:
            self.output.info(
                f"Model: {self.config.model.model} "
                f"(provider: {self.config.model.provider}, context window: {self.config.model.context_window})"
            )
            return
        provider = self.config.current_provider()
        if args.lower() == "list":
            try:
                models = await list_models(provider, timeout=self.config.transport.connect_timeout)
            except httpx.HTTPError as e:
                log.warning("Model listing failed", provider=provider.name, error=str(e))
                self.output.error(f"Could not list models from {provider.name}: {e}")
                return
            rows = [["*" if name == self.config.model.model else "", name] for name in models]
            self.output.table(f"Models on {provider.name}", ["", "Model"], rows)
            return

        self.config.model.model = args
        try:
            window = await query_context_window(provider, args, timeout=self.config.transport.connect_timeout)
        except httpx.HTTPError as e:
            log.debug("Context window lookup failed", model=args, error=str(e))
            window = None
        if window:
            self.config.model.context_window = window
        self.output.info(f"Switched model to {args} (context window: {self.config.model.context_window})")

    async def _provider(self, args: str) -> None:
        if not args:
            provider = self.config.current_provider()
            self.output.info(f"Provider: {provider.name} ({provider.api_type}) at {provider.base_url}")
            return
        if args.lower() == "list":
            current = self.config.current_provider().name
            rows = [
                ["*" if p.name == current else "", p.name, p.api_type, p.base_url]
                for p in self.config.providers
            ]
            self.output.table("Providers", ["", "Name", "Type", "URL"], rows)
            return
        provider = self.config.get_provider(args)
        if provider is None:
            self.output.error(f"Unknown provider: {args}")
            return
        self.config.model.provider = provider.name
        self.output.info(f"Switched provider to {provider.name} ({provider.base_url})")

    def _tokens(self) -> None:
        history = self.scheduler.context.history
        window = self.config.model.context_window
        percent = (history.token_estimate / window * 100) if window else 0.0
        self.output.info(
            f"History: {len(history)} messages, ~{history.token_estimate} tokens "
            f"({percent:.1f}% of {window} context window)"
        )

    def _queue(self, args: str) -> None:
        settings = self.scheduler.context.input_queue.settings
        for token in args.split():
            mode = normalize_queue_mode(token)
            drop = normalize_queue_drop_policy(token)
            if mode:
                settings.mode = mode
            elif drop:
                settings.drop_policy = drop
            else:
                self.output.error(f"Unknown queue setting: {token}")
                return
        self.output.info(
            f"Queue mode: {settings.mode} | drop policy: {settings.drop_policy} | cap: {settings.cap}"
        )
