"""Pending user input typed while a turn is running."""

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Literal

from meow.config import InputQueueConfig
from meow.logging import get_logger

log = get_logger(__name__)

QueueMode = Literal["followup", "collect"]
QueueDropPolicy = Literal["old", "new", "summarize"]


@dataclass
class QueueSettings:
    """Queue behavior settings."""

    mode: QueueMode = "followup"
    cap: int = 20
    drop_policy: QueueDropPolicy = "summarize"

    @classmethod
    def from_config(cls, config: InputQueueConfig) -> "QueueSettings":
        return cls(mode=config.mode, cap=config.cap, drop_policy=config.drop)


@dataclass
class QueuedInput:
    """A user message waiting for the current turn to end."""

    prompt: str
    enqueued_at: float = field(default_factory=time.monotonic)


class InputQueue:
    """Bounded FIFO of follow-up prompts, drained between turns."""

    def __init__(self, settings: QueueSettings | None = None):
        self.settings = settings or QueueSettings()
        self.items: deque[QueuedInput] = deque()
        self.dropped_count = 0
        self.summary_lines: list[str] = []

    def __len__(self) -> int:
        return len(self.items)

    @property
    def cap(self) -> int:
        return max(1, int(self.settings.cap))

    def _apply_drop_policy(self) -> bool:
        if len(self.items) < self.cap:
            return True
        if self.settings.drop_policy == "new":
            return False
        dropped = self.items.popleft()
        if self.settings.drop_policy == "summarize":
            self.dropped_count += 1
            summary = dropped.prompt.strip().splitlines()[0] if dropped.prompt.strip() else ""
            if summary:
                self.summary_lines.append(summary)
        return True

    def enqueue(self, prompt: str) -> bool:
        """Queue a prompt; returns False when it was rejected by the drop policy."""
        cleaned = prompt.strip()
        if not cleaned:
            return False
        if not self._apply_drop_policy():
            log.info("Queued input dropped", policy=self.settings.drop_policy, depth=len(self.items))
            return False
        self.items.append(QueuedInput(prompt=cleaned))
        return True

    def clear(self) -> int:
        cleared = len(self.items) + self.dropped_count
        self.items.clear()
        self.dropped_count = 0
        self.summary_lines = []
        return cleared

    def _build_summary_prompt(self) -> str:
        if self.dropped_count <= 0 or not self.summary_lines:
            return ""
        lines = [
            "[Queue summary]",
            f"{self.dropped_count} queued follow-ups were summarized due to queue cap.",
        ]
        for idx, item in enumerate(self.summary_lines[-10:], start=1):
            lines.append(f"{idx}. {item}")
        return "\n".join(lines)

    def _build_collect_prompt(self, items: list[QueuedInput]) -> str:
        lines = ["[Queued follow-ups while session was busy]"]
        summary = self._build_summary_prompt()
        if summary:
            lines.append(summary)
        for idx, item in enumerate(items, start=1):
            lines.append(f"---\nQueued #{idx}\n{item.prompt}")
        return "\n".join(lines)

    def drain(self) -> list[str]:
        """Remove everything queued and return the prompts to run, in order.

        `followup` mode yields one prompt per queued message (preceded by a
        summary of dropped messages, if any). `collect` mode batches all of
        them into a single prompt.
        """
        if not self.items and self.dropped_count <= 0:
            return []
        items = list(self.items)
        if self.settings.mode == "collect":
            prompts = [self._build_collect_prompt(items)] if items else []
        else:
            prompts = []
            summary = self._build_summary_prompt()
            if summary:
                prompts.append(summary)
            prompts.extend(item.prompt for item in items)
        self.items.clear()
        self.dropped_count = 0
        self.summary_lines = []
        return prompts


def normalize_queue_mode(raw: str | None) -> QueueMode | None:
    if not raw:
        return None
    cleaned = raw.strip().lower()
    if cleaned in {"followup", "follow-ups", "followups"}:
        return "followup"
    if cleaned in {"collect", "coalesce"}:
        return "collect"
    return None


def normalize_queue_drop_policy(raw: str | None) -> QueueDropPolicy | None:
    if not raw:
        return None
    cleaned = raw.strip().lower()
    if cleaned in {"old", "oldest"}:
        return "old"
    if cleaned in {"new", "newest"}:
        return "new"
    if cleaned in {"summarize", "summary"}:
        return "summarize"
    return None
