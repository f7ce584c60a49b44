"""Conversation history with bounded size and an incremental token estimate."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator

from meow.logging import get_logger

log = get_logger(__name__)

# Tokens charged per message on top of role and content.
MESSAGE_OVERHEAD_TOKENS = 4

COMPACT_SUMMARY_TEMPLATE = (
    "[Previous Conversation Summary]\n{summary}\n[End Summary]\n\n"
    "The conversation above has been compacted. Continue from here."
)
COMPACT_ACKNOWLEDGEMENT = (
    "Understood. I've loaded the conversation summary. "
    "Ready to continue where we left off."
)


class Role(str, Enum):
    """Author of a conversation message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"

    @property
    def wire_role(self) -> str:
        # Providers receive tool results as user turns.
        return "user" if self is Role.TOOL else self.value


@dataclass(frozen=True)
class Message:
    """A message in the conversation."""

    role: Role
    content: str
    sequence: int

    def to_wire(self) -> dict[str, str]:
        return {"role": self.role.wire_role, "content": self.content}


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four bytes, rounded up."""
    return (len(text.encode("utf-8")) + 3) // 4


def message_tokens(role: Role, content: str) -> int:
    return estimate_tokens(content) + estimate_tokens(role.value) + MESSAGE_OVERHEAD_TOKENS


class HistoryStore:
    """Ordered message log bounded by count and estimated tokens.

    Eviction removes the oldest non-system messages first. System messages
    and the newest message are never evicted. The token estimate is updated
    on every append and eviction and recomputed from scratch on compaction.
    """

    def __init__(self, max_messages: int = 40, max_tokens: int = 96000):
        if max_messages < 1:
            raise ValueError("max_messages must be at least 1")
        self.max_messages = max_messages
        self.max_tokens = max_tokens
        self._messages: list[Message] = []
        self._next_sequence = 0
        self._token_estimate = 0

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages)

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def token_estimate(self) -> int:
        return self._token_estimate

    def last(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    def append(self, role: Role | str, content: str) -> Message:
        """Append a message and enforce the size bounds."""
        role = Role(role)
        message = Message(role=role, content=content, sequence=self._next_sequence)
        self._next_sequence += 1
        self._messages.append(message)
        self._token_estimate += message_tokens(role, content)
        self._enforce_bounds()
        return message

    def _over_bounds(self) -> bool:
        return len(self._messages) > self.max_messages or self._token_estimate > self.max_tokens

    def _enforce_bounds(self) -> None:
        evicted = 0
        while self._over_bounds():
            index = self._oldest_evictable_index()
            if index is None:
                break
            victim = self._messages.pop(index)
            self._token_estimate -= message_tokens(victim.role, victim.content)
            evicted += 1
        if evicted:
            log.debug(
                "History trimmed",
                evicted=evicted,
                messages=len(self._messages),
                tokens=self._token_estimate,
            )

    def _oldest_evictable_index(self) -> int | None:
        # The newest message is excluded so a fresh prompt always survives.
        for index, message in enumerate(self._messages[:-1]):
            if message.role is not Role.SYSTEM:
                return index
        return None

    def recompute_tokens(self) -> int:
        self._token_estimate = sum(message_tokens(m.role, m.content) for m in self._messages)
        return self._token_estimate

    def clear(self, keep_system: bool = True) -> None:
        """Drop conversation messages, optionally keeping system prompts."""
        if keep_system:
            self._messages = [m for m in self._messages if m.role is Role.SYSTEM]
        else:
            self._messages = []
        self.recompute_tokens()

    def compact(self, summary: str, system_prompt: str = "") -> tuple[int, int]:
        """Replace the conversation with a summary.

        Returns:
            Token estimate before and after compaction.
        """
        before = self._token_estimate
        self._messages = []
        if system_prompt:
            self._messages.append(self._make(Role.SYSTEM, system_prompt))
        self._messages.append(self._make(Role.USER, COMPACT_SUMMARY_TEMPLATE.format(summary=summary)))
        self._messages.append(self._make(Role.ASSISTANT, COMPACT_ACKNOWLEDGEMENT))
        after = self.recompute_tokens()
        log.info("History compacted", tokens_before=before, tokens_after=after)
        return before, after

    def _make(self, role: Role, content: str) -> Message:
        message = Message(role=role, content=content, sequence=self._next_sequence)
        self._next_sequence += 1
        return message

    def to_wire(self) -> list[dict[str, Any]]:
        """Serialize the stored messages for a provider request."""
        return [message.to_wire() for message in self._messages]
