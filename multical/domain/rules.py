"""Static scheduling rules and their validation."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class EnrollmentRule:
    confirmation_window_minutes: int
    minimum: int
    maximum: int


@dataclass(frozen=True)
class SchedulingRules:
    occupancy_rules: Mapping[str, int]
    keyword_tree: Mapping[str, str]
    calendar_tree: Mapping[str, str]
    enrollment_rules: Mapping[str, EnrollmentRule]

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> SchedulingRules:
        enrollment_rules: dict[str, EnrollmentRule] = {}
        for title, value in dict(raw.get("enrollment_rules", {})).items():
            if isinstance(value, Mapping):
                rule = EnrollmentRule(
                    confirmation_window_minutes=int(value["confirmation_window_minutes"]),
                    minimum=int(value["minimum"]),
                    maximum=int(value["maximum"]),
                )
            else:
                window, minimum, maximum = value
                rule = EnrollmentRule(int(window), int(minimum), int(maximum))
            enrollment_rules[str(title)] = rule
        return cls(
            occupancy_rules=MappingProxyType(
                {str(key): int(value) for key, value in dict(raw.get("occupancy_rules", {})).items()}
            ),
            keyword_tree=MappingProxyType(
                {str(key): str(value) for key, value in dict(raw.get("keyword_tree", {})).items()}
            ),
            calendar_tree=MappingProxyType(
                {str(key): str(value) for key, value in dict(raw.get("calendar_tree", {})).items()}
            ),
            enrollment_rules=MappingProxyType(enrollment_rules),
        )


DEFAULT_RULES: dict[str, Any] = {
    "occupancy_rules": {
        "KeySpace_1": 3,
        "KeySpace_2": 6,
        "Resource_1": 2,
        "Resource_2": 6,
        "Resource_3": 3,
    },
    "enrollment_rules": {
        "Group Event 1": [1440, 2, 3],
        "Group Event 2": [60, 1, 10],
        "Group Event 3": [2880, 10, 30],
    },
    "keyword_tree": {
        "Resource_1": "KeySpace_1",
        "Resource_2": "KeySpace_2",
        "Resource_3": "KeySpace_2",
        "Resource_4": "KeySpace_2",
        "Resource_5": "KeySpace_3",
    },
    "calendar_tree": {
        "KeySpace_1": "Category_1",
        "KeySpace_2": "Category_1",
        "KeySpace_3": "Category_1",
        "KeySpace_4": "Category_2",
        "KeySpace_5": "Category_3",
        "KeySpace_6": "Category_3",
        # Group events live on public calendars separate from resource tags.
        "Group Event 1": "Category_4",
        "Group Event 2": "Category_4",
        "Group Event 3": "Category_5",
        "Category_1": "c_category_1@group.calendar.google.com",
        "Category_2": "c_category_2@group.calendar.google.com",
        "Category_3": "c_category_3@group.calendar.google.com",
        "Category_4": "c_category_4@group.calendar.google.com",
        "Category_5": "c_category_5@group.calendar.google.com",
    },
}


def _find_cycle(tree: Mapping[str, str]) -> Optional[str]:
    for start in tree:
        seen = {start}
        key = start
        while key in tree:
            key = tree[key]
            if key in seen:
                return start
            seen.add(key)
    return None


def validate_scheduling_rules(rules: SchedulingRules) -> None:
    for base, capacity in rules.occupancy_rules.items():
        if not base.strip():
            raise ValueError("occupancy rule keys must be non-empty")
        if capacity <= 0:
            raise ValueError(f"capacity for {base} must be > 0")
    for title, rule in rules.enrollment_rules.items():
        if rule.confirmation_window_minutes < 0:
            raise ValueError(f"confirmation window for {title} must be >= 0")
        if rule.minimum <= 0:
            raise ValueError(f"minimum enrollment for {title} must be > 0")
        if rule.maximum < rule.minimum:
            raise ValueError(f"maximum enrollment for {title} must be >= minimum")
    for name, tree in (
        ("keyword_tree", rules.keyword_tree),
        ("calendar_tree", rules.calendar_tree),
    ):
        cycle_start = _find_cycle(tree)
        if cycle_start is not None:
            raise ValueError(f"{name} contains a cycle starting at {cycle_start}")


def load_scheduling_rules(path: Optional[Path] = None) -> SchedulingRules:
    """Load rules from a JSON file, falling back to the built-in defaults."""
    if path is None:
        raw: Mapping[str, Any] = DEFAULT_RULES
    else:
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ValueError(f"Unable to load scheduling rules from {path}: {exc}") from exc
    rules = SchedulingRules.from_mapping(raw)
    validate_scheduling_rules(rules)
    return rules
