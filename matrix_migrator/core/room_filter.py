"""
Room selection for the migration.

A rule is either an exact room identifier/name or a glob pattern
(``*``, ``?``, ``[...]``). Rules are matched against the room identifier
and, when known, the room's display name. An exclusion always wins over an
inclusion; with no rules configured every room is included.
"""

from __future__ import annotations

import fnmatch
import logging
from typing import Iterable, Optional

from matrix_migrator.core.config import RoomFilterConfig
from matrix_migrator.types import FilterDecision
from matrix_migrator.utils.logging import log_with_context

_GLOB_CHARS = frozenset("*?[")


def _is_pattern(rule: str) -> bool:
    return any(ch in _GLOB_CHARS for ch in rule)


class _RuleSet:
    """Exact rules in a set, patterns checked one by one."""

    def __init__(self, rules: Iterable[str]) -> None:
        rules = [r.strip() for r in rules if r and r.strip()]
        self.exact = {r for r in rules if not _is_pattern(r)}
        self.patterns = sorted(r for r in rules if _is_pattern(r))

    def __bool__(self) -> bool:
        return bool(self.exact or self.patterns)

    def match(self, candidates: list[str]) -> Optional[str]:
        """Return the first rule matching any candidate, or None."""
        for candidate in candidates:
            if candidate in self.exact:
                return candidate
        for pattern in self.patterns:
            for candidate in candidates:
                if fnmatch.fnmatchcase(candidate, pattern):
                    return pattern
        return None


class RoomFilter:
    """Decides whether a room is in scope for migration."""

    def __init__(self, config: Optional[RoomFilterConfig] = None) -> None:
        config = config or RoomFilterConfig()
        self._include = _RuleSet(config.rooms)
        self._exclude = _RuleSet(config.rooms_excluded)

    @classmethod
    def allow_all(cls) -> RoomFilter:
        return cls(RoomFilterConfig())

    def decide(self, room_id: str, name: Optional[str] = None) -> FilterDecision:
        """Evaluate a room against the configured rules."""
        candidates = [room_id] if not name else [room_id, name]

        excluded_by = self._exclude.match(candidates)
        if excluded_by is not None:
            log_with_context(
                logging.DEBUG,
                f"ROOM CHECK: {room_id} matches exclusion rule '{excluded_by}', skipping",
                room=room_id,
            )
            return FilterDecision.EXCLUDED

        if self._include:
            included_by = self._include.match(candidates)
            if included_by is None:
                log_with_context(
                    logging.DEBUG,
                    f"ROOM CHECK: {room_id} not in inclusion list, skipping",
                    room=room_id,
                )
                return FilterDecision.EXCLUDED

        return FilterDecision.INCLUDED

    def includes(self, room_id: str, name: Optional[str] = None) -> bool:
        return self.decide(room_id, name) is FilterDecision.INCLUDED
