from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

import yaml

from .models import StatLine
from .normalize import (
    FragmentKind,
    content_fragments,
    coerce_float,
    decode_indexed_collection,
    find_fragment,
)

# Yahoo omits the two-point conversion modifiers from league settings inconsistently.
DEFAULT_TWO_POINT_RULES: Dict[int, float] = {
    8: 2.0,  # passing 2pt
    15: 2.0,  # receiving 2pt
    16: 2.0,  # rushing 2pt
}

# Sleeper stat key -> Yahoo stat id. Hand-maintained; keys without an entry never score.
SLEEPER_TO_YAHOO_STAT: Dict[str, int] = {
    "pass_yd": 4,
    "pass_td": 5,
    "pass_int": 6,
    "pass_2pt": 8,
    "rush_yd": 9,
    "rush_td": 10,
    "rec": 11,
    "rec_yd": 12,
    "rec_td": 13,
    "rec_2pt": 15,
    "rush_2pt": 16,
    "fum_lost": 18,
}

STAT_LABELS: Dict[int, str] = {stat_id: key for key, stat_id in SLEEPER_TO_YAHOO_STAT.items()}


def stat_label(stat_id: int) -> str:
    return STAT_LABELS.get(stat_id, f"stat_{stat_id}")


def _stat_id(key: object) -> Optional[int]:
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        return key
    if isinstance(key, str) and key.strip().isdigit():
        return int(key.strip())
    return None


@dataclass(frozen=True)
class ScoringRuleTable:
    """Points-per-unit keyed by primary-provider stat id."""

    rules: Dict[int, float] = field(default_factory=dict)

    def __contains__(self, stat_id: object) -> bool:
        return stat_id in self.rules

    def __len__(self) -> int:
        return len(self.rules)

    def get(self, stat_id: int, default: float = 0.0) -> float:
        return self.rules.get(stat_id, default)

    def with_defaults(self) -> "ScoringRuleTable":
        merged = dict(DEFAULT_TWO_POINT_RULES)
        merged.update(self.rules)
        return ScoringRuleTable(rules=merged)

    @classmethod
    def from_mapping(cls, mapping: Mapping[object, object], apply_defaults: bool = True) -> "ScoringRuleTable":
        rules: Dict[int, float] = {}
        for key, value in mapping.items():
            stat_id = _stat_id(key)
            points = coerce_float(value, default=math.nan)
            if stat_id is None or math.isnan(points):
                continue
            rules[stat_id] = points
        table = cls(rules=rules)
        return table.with_defaults() if apply_defaults else table

    @classmethod
    def from_payload(cls, raw: object) -> Optional["ScoringRuleTable"]:
        """Build the table from a league ``/settings`` payload.

        Returns ``None`` when no stat modifiers can be located.
        """

        fragment = find_fragment(content_fragments(raw, "league"), FragmentKind.SETTINGS)
        if fragment is None:
            return None
        settings = fragment["settings"]
        candidates = [settings] if isinstance(settings, dict) else decode_indexed_collection(settings)
        modifiers = next(
            (
                item["stat_modifiers"]
                for item in candidates
                if isinstance(item, dict) and isinstance(item.get("stat_modifiers"), dict)
            ),
            None,
        )
        if modifiers is None:
            return None

        mapping: Dict[object, object] = {}
        for entry in decode_indexed_collection(modifiers.get("stats")):
            stat = entry.get("stat") if isinstance(entry, dict) else None
            if isinstance(stat, dict):
                mapping[stat.get("stat_id")] = stat.get("value")
        return cls.from_mapping(mapping)

    @classmethod
    def load(cls, path: Path, apply_defaults: bool = True) -> "ScoringRuleTable":
        if not path.exists():
            raise FileNotFoundError(f"Scoring rules not found at {path}")
        try:
            raw = yaml.safe_load(path.read_text()) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid scoring rules YAML at {path}: {exc}") from exc
        rules = raw.get("rules") if isinstance(raw, dict) else None
        if not isinstance(rules, dict):
            raise ValueError(f"Scoring rules file {path} must define a 'rules' mapping")
        return cls.from_mapping(rules, apply_defaults=apply_defaults)

    def to_dict(self) -> dict[str, object]:
        return {"rules": {str(stat_id): points for stat_id, points in sorted(self.rules.items())}}

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "ScoringRuleTable":
        rules = payload.get("rules")
        return cls.from_mapping(rules if isinstance(rules, Mapping) else {}, apply_defaults=False)


@dataclass(frozen=True)
class ScoreResult:
    points: float
    breakdown: Tuple[StatLine, ...] = ()


def _score(entries: Iterator[Tuple[int, str, object]], rules: ScoringRuleTable) -> ScoreResult:
    total = 0.0
    breakdown: List[StatLine] = []
    for stat_id, label, raw_value in entries:
        if stat_id not in rules:
            continue
        value = coerce_float(raw_value)
        points = value * rules.get(stat_id)
        total += points
        # zero stats stay in the total but are left out of the itemized lines
        if value != 0:
            breakdown.append(StatLine(stat=label, value=value, points=points))
    return ScoreResult(points=total, breakdown=tuple(breakdown))


def score_primary(snapshot: Mapping[object, object], rules: ScoringRuleTable) -> ScoreResult:
    """Score a snapshot keyed by Yahoo stat ids (ints or digit strings)."""

    def entries() -> Iterator[Tuple[int, str, object]]:
        for key, value in snapshot.items():
            stat_id = _stat_id(key)
            if stat_id is not None:
                yield stat_id, stat_label(stat_id), value

    return _score(entries(), rules)


def score_secondary(snapshot: Mapping[str, object], rules: ScoringRuleTable) -> ScoreResult:
    """Score a Sleeper snapshot by translating its keys to Yahoo stat ids first."""

    def entries() -> Iterator[Tuple[int, str, object]]:
        for key, value in snapshot.items():
            stat_id = SLEEPER_TO_YAHOO_STAT.get(str(key))
            if stat_id is not None:
                yield stat_id, str(key), value

    return _score(entries(), rules)


def score_weeks(
    weekly: Iterable[Tuple[int, Mapping[object, object]]],
    rules: ScoringRuleTable,
) -> List[Tuple[int, ScoreResult]]:
    return [(week, score_primary(snapshot, rules)) for week, snapshot in weekly]


__all__ = [
    "DEFAULT_TWO_POINT_RULES",
    "SLEEPER_TO_YAHOO_STAT",
    "STAT_LABELS",
    "ScoreResult",
    "ScoringRuleTable",
    "score_primary",
    "score_secondary",
    "score_weeks",
    "stat_label",
]
