"""Guardrails: stated-but-unfulfilled intentions and fabricated tool results."""

import re
from dataclasses import dataclass, field
from typing import Callable, Iterable

from meow.history import HistoryStore, Role
from meow.logging import get_logger

log = get_logger(__name__)

NOTICE_PREFIX = "[System Notice]"
FAKE_RESULT_MARKER = "[Tool Result]"

INTENT_STARTERS = (
    "Let me",
    "I'll ",
    "I will ",
    "First, ",
    "Now I'll",
    "Now let me",
    "First I'll",
    "First let me",
)
INTENT_EXCLUSIONS = (
    "let me know",
    "let me explain",
    "let me summarize",
    "let me clarify",
    "i'll help",
    "i'll be happy",
    "i'll wait",
    "i will help",
    "i will be happy",
    "i will wait",
    "if you need",
    "if you want",
    "if you'd like",
)
_SENTENCE_END_RE = re.compile(r"[\n.!?]")
_STARTER_RES = [(starter, re.compile(re.escape(starter), re.IGNORECASE)) for starter in INTENT_STARTERS]


def extract_intent_phrases(text: str) -> list[str]:
    """Return distinct intention phrases in text order.

    A phrase runs from a starter ("Let me", "I'll", ...) to the first sentence
    terminator, inclusive. Polite filler such as "let me know" is excluded.
    """
    # Longer starters first at equal offsets; "Now let me" hides the inner "let me".
    matches = sorted(
        ((match.start(), starter) for starter, pattern in _STARTER_RES for match in pattern.finditer(text)),
        key=lambda item: (item[0], -len(item[1])),
    )
    intents: list[str] = []
    covered_until = -1
    for start, starter in matches:
        if start < covered_until:
            continue
        tail = text[start:]
        end = _SENTENCE_END_RE.search(tail)
        raw = tail[: end.end()] if end else tail
        phrase = raw.strip()
        if len(phrase) <= len(starter):
            continue
        lowered = phrase.lower()
        if any(exclusion in lowered for exclusion in INTENT_EXCLUSIONS):
            continue
        covered_until = start + len(raw)
        if phrase not in intents:
            intents.append(phrase)
    return intents


def contains_fake_result(text: str) -> bool:
    """Whether model-authored text carries the reserved tool-result marker."""
    return FAKE_RESULT_MARKER in text


@dataclass
class GuardrailStats:
    """Per-turn guardrail counters, reset at the start of each user turn."""

    intents: list[str] = field(default_factory=list)
    tools: int = 0
    fakes: int = 0

    def reset(self) -> None:
        self.intents = []
        self.tools = 0
        self.fakes = 0

    def record_intents(self, phrases: Iterable[str]) -> None:
        for phrase in phrases:
            if phrase not in self.intents:
                self.intents.append(phrase)

    @property
    def intent_mismatch(self) -> bool:
        return bool(self.intents) and self.tools == 0

    def summary(self) -> str:
        return f"Intent phrases: {len(self.intents)} | Tools called: {self.tools} | Fakes: {self.fakes}"


def fake_result_notice(intents: list[str], tool_names: list[str]) -> str:
    lines = [
        f"{NOTICE_PREFIX} You outputted a fake '{FAKE_RESULT_MARKER}'. "
        "You must NOT hallucinate tool results.",
        "If you want to perform an action, you MUST use the precise tool for it.",
    ]
    if intents:
        quoted = ", ".join(f'"{intent}"' for intent in intents)
        lines.append("")
        lines.append(f"Based on your stated intent: {quoted}")
        lines.append("Please call the appropriate tool.")
    lines.append("")
    lines.append(f"Available tools: {', '.join(tool_names) if tool_names else '(none)'}")
    return "\n".join(lines)


def unmet_intent_notice(intents: list[str]) -> str:
    listing = "\n".join(f'  {index}. "{intent}"' for index, intent in enumerate(intents, start=1))
    return (
        f"{NOTICE_PREFIX} You stated the following intention(s) but made 0 tool calls:\n"
        f"{listing}\n\n"
        "Did you forget to output the tool call JSON? Please complete the actions you stated."
    )


class GuardrailMonitor:
    """Corrective checks over assistant text.

    The monitor holds no per-turn state; counters live in the caller's
    GuardrailStats and notices are appended to the caller's HistoryStore.
    """

    def __init__(self, tool_names: Callable[[], list[str]]):
        self._tool_names = tool_names

    def check_fake(self, text: str, history: HistoryStore, stats: GuardrailStats) -> bool:
        """Detect a fabricated tool result.

        On detection the text must be discarded by the caller; a notice naming
        the real tools is appended instead.
        """
        if not contains_fake_result(text):
            return False
        stats.fakes += 1
        intents = extract_intent_phrases(text)
        history.append(Role.USER, fake_result_notice(intents, self._tool_names()))
        log.warning("Fake tool result detected", fakes=stats.fakes, intents=len(intents))
        return True

    def check_intents(
        self,
        text: str,
        history: HistoryStore,
        stats: GuardrailStats,
        tool_call_found: bool,
    ) -> bool:
        """Record stated intentions and flag them when no tool has run this turn.

        Returns True when a corrective notice was appended.
        """
        phrases = extract_intent_phrases(text)
        stats.record_intents(phrases)
        if tool_call_found or not phrases or stats.tools > 0:
            return False
        history.append(Role.USER, unmet_intent_notice(phrases))
        log.info("Stated intentions without tool calls", intents=len(phrases))
        return True
