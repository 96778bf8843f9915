"""Built-in keyword rule engine.

The default ruleset flags phrasing that reads as machine-generated filler:
stock buzzwords, stiff connectives and overlong sentences. Rules are plain
regular expressions; each match becomes a :class:`Highlight`.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Iterable, Sequence

from .models import Highlight

LONG_SENTENCE_WORDS = 25
MIN_SENTENCE_CHARS = 15
_SENTENCE_PATTERN = re.compile(r"[^.!?]+[.!?]+")


@dataclass(frozen=True, slots=True)
class Rule:
    rule_id: str
    label: str
    pattern: str
    suggestion: str | None = None
    severity: str = "medium"
    priority: int = 10

    def compile(self) -> re.Pattern[str]:
        return re.compile(self.pattern, re.IGNORECASE)


DEFAULT_RULES: tuple[Rule, ...] = (
    Rule("delve-into", "Overused phrase", r"\bdelv(?:e|es|ed|ing) into\b", "explore", "high", 1),
    Rule("in-order-to", "Wordy phrase", r"\bin order to\b", "to", "medium", 1),
    Rule("leverage", "Buzzword", r"\bleverag(?:e|es|ed|ing)\b", "use", "medium", 2),
    Rule("utilize", "Buzzword", r"\butiliz(?:e|es|ed|ing)\b", "use", "medium", 2),
    Rule("optimize", "Buzzword", r"\boptimiz(?:e|es|ed|ing)\b", "improve", "low", 2),
    Rule("furthermore", "Stiff transition", r"\bfurthermore\b", "also", "medium", 3),
    Rule("moreover", "Stiff transition", r"\bmoreover\b", "also", "medium", 3),
    Rule(
        "formal-connective",
        "Formal connective",
        r"\b(?:thus|hence|therefore|consequently)\b",
        "so",
        "low",
        3,
    ),
    Rule("paradigm", "Buzzword", r"\bparadigms?\b", None, "low", 4),
    Rule("comprehensive", "Filler adjective", r"\bcomprehensive\b", None, "low", 4),
    Rule("robust", "Filler adjective", r"\brobust\b", None, "low", 4),
    Rule("seamless", "Filler adjective", r"\bseamless(?:ly)?\b", "smooth", "low", 4),
)


class KeywordRuleEngine:
    """Regex-driven engine returning non-overlapping highlights."""

    def __init__(
        self,
        rules: Sequence[Rule] | None = None,
        *,
        flag_long_sentences: bool = True,
        latency: float = 0.0,
    ) -> None:
        self.rules = tuple(DEFAULT_RULES if rules is None else rules)
        self.flag_long_sentences = flag_long_sentences
        self.latency = latency
        self._compiled = [(rule, rule.compile()) for rule in self.rules]

    def scan(self, text: str, ruleset_version: str) -> list[Highlight]:
        if self.latency > 0:
            time.sleep(self.latency)
        candidates: list[tuple[int, Highlight]] = []
        for rule, pattern in self._compiled:
            for match in pattern.finditer(text):
                if match.end() <= match.start():
                    continue
                candidates.append(
                    (
                        rule.priority,
                        Highlight(
                            start_offset=match.start(),
                            end_offset=match.end(),
                            rule_id=rule.rule_id,
                            label=rule.label,
                            suggested_rewrite=_match_case(rule.suggestion, match.group(0)),
                            severity=rule.severity,
                        ),
                    )
                )
        if self.flag_long_sentences:
            candidates.extend((100, item) for item in _long_sentences(text))
        return _select_non_overlapping(candidates)


def _long_sentences(text: str) -> Iterable[Highlight]:
    for match in _SENTENCE_PATTERN.finditer(text):
        sentence = match.group(0)
        stripped = sentence.strip()
        if len(stripped) < MIN_SENTENCE_CHARS:
            continue
        if len(stripped.split()) <= LONG_SENTENCE_WORDS:
            continue
        start = match.start() + (len(sentence) - len(sentence.lstrip()))
        yield Highlight(
            start_offset=start,
            end_offset=start + len(stripped),
            rule_id="long-sentence",
            label="Long sentence",
            suggested_rewrite=None,
            severity="low",
        )


def _select_non_overlapping(candidates: list[tuple[int, Highlight]]) -> list[Highlight]:
    # lower priority number wins; ties go to the earlier, then longer, span
    ordered = sorted(
        candidates,
        key=lambda item: (
            item[0],
            item[1].start_offset,
            -(item[1].end_offset - item[1].start_offset),
        ),
    )
    chosen: list[Highlight] = []
    for _, highlight in ordered:
        if any(
            highlight.start_offset < other.end_offset
            and other.start_offset < highlight.end_offset
            for other in chosen
        ):
            continue
        chosen.append(highlight)
    chosen.sort(key=lambda item: item.start_offset)
    return chosen


def _match_case(suggestion: str | None, original: str) -> str | None:
    if not suggestion:
        return None
    if original[:1].isupper():
        return suggestion[:1].upper() + suggestion[1:]
    return suggestion
