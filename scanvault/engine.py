"""Boundary between the cache layer and the rule-matching pipeline."""

from __future__ import annotations

import logging
from typing import Protocol, Sequence, runtime_checkable

from .models import Highlight
from .versioning import VersionCell, VersionSnapshot

logger = logging.getLogger(__name__)


@runtime_checkable
class RuleEngine(Protocol):
    """Anything that can scan text under a given ruleset version."""

    def scan(self, text: str, ruleset_version: str) -> Sequence[Highlight]:
        ...  # pragma: no cover - protocol


class RuleEngineAdapter:
    """Uniform access to the active engine and its ruleset version.

    The version is read per request through :meth:`current_version`; it only
    changes through :meth:`reload`, which swaps version and engine together.
    """

    def __init__(self, engine: RuleEngine, initial_version: str) -> None:
        self._cell: VersionCell[RuleEngine] = VersionCell(initial_version, engine)

    def current_version(self) -> str:
        return self._cell.version

    def snapshot(self) -> VersionSnapshot[RuleEngine]:
        return self._cell.read()

    @property
    def engine(self) -> RuleEngine:
        return self._cell.read().payload

    def scan(
        self,
        text: str,
        ruleset_version: str,
        *,
        engine: RuleEngine | None = None,
    ) -> tuple[Highlight, ...]:
        """Run the engine and return highlights ordered by start offset.

        Pass *engine* to pin the engine captured alongside *ruleset_version*.
        Engine exceptions propagate unchanged; the orchestrator decides how
        they reach callers.
        """

        active = engine if engine is not None else self._cell.read().payload
        raw = active.scan(text, ruleset_version)
        highlights = tuple(sorted(raw, key=lambda item: (item.start_offset, item.end_offset)))
        text_length = len(text)
        for item in highlights:
            if item.end_offset > text_length:
                raise ValueError(
                    f"Highlight {item.rule_id} ends at {item.end_offset} "
                    f"beyond text length {text_length}"
                )
        return highlights

    def reload(
        self,
        new_version: str,
        *,
        engine: RuleEngine | None = None,
        allow_downgrade: bool = False,
    ) -> str:
        """Activate *new_version* (and optionally a new engine); return the old version."""

        payload = engine if engine is not None else self._cell.read().payload
        previous = self._cell.swap(new_version, payload, allow_downgrade=allow_downgrade)
        logger.info(
            "Ruleset reloaded: %s -> %s", previous.version, self._cell.version
        )
        return previous.version
