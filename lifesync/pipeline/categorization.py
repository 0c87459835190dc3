"""Structural categorization as an ordered, first-match-wins rule table."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Sequence, Tuple

from lifesync.pipeline.validation import is_number
from lifesync.schemas.records import Categorization

FINANCIAL_KEYS = frozenset({"amount", "transaction", "balance", "account"})
HEALTH_KEYS = frozenset({"steps", "heartrate", "sleep", "weight", "calories"})
CALENDAR_KEYS = frozenset({"event", "meeting", "appointment", "calendar"})


def _keys(payload: Mapping[str, Any]) -> frozenset:
    return frozenset(str(k).lower() for k in payload)


def _has_any(keys: frozenset) -> Callable[[Mapping[str, Any]], bool]:
    return lambda payload: bool(_keys(payload) & keys)


def _is_expense(payload: Mapping[str, Any]) -> bool:
    amount = payload.get("amount")
    return _has_any(FINANCIAL_KEYS)(payload) and is_number(amount) and amount < 0


@dataclass(frozen=True)
class CategoryRule:
    name: str
    matches: Callable[[Mapping[str, Any]], bool]
    primary: str
    secondary: Optional[str]
    confidence: float
    tags: Tuple[str, ...] = field(default_factory=tuple)


DEFAULT_CATEGORY_RULES: Tuple[CategoryRule, ...] = (
    CategoryRule("calendar", _has_any(CALENDAR_KEYS), "calendar", "event", 0.8, ("schedule", "event")),
    CategoryRule(
        "health-activity",
        lambda p: "steps" in _keys(p),
        "health",
        "activity",
        0.85,
        ("fitness", "activity"),
    ),
    CategoryRule("health-sleep", lambda p: "sleep" in _keys(p), "health", "sleep", 0.85, ("sleep", "recovery")),
    CategoryRule("health", _has_any(HEALTH_KEYS), "health", None, 0.85),
    CategoryRule("financial-expense", _is_expense, "financial", "expense", 0.9, ("expense",)),
    CategoryRule("financial-income", _has_any(FINANCIAL_KEYS), "financial", "income", 0.9, ("income",)),
)

FALLBACK = Categorization(primary="general", confidence=0.5)


def categorize(payload: Mapping[str, Any], rules: Sequence[CategoryRule] = DEFAULT_CATEGORY_RULES) -> Categorization:
    for rule in rules:
        if rule.matches(payload):
            return Categorization(
                primary=rule.primary,
                secondary=rule.secondary,
                confidence=rule.confidence,
                suggested_tags=list(rule.tags),
            )
    return FALLBACK.model_copy(deep=True)
