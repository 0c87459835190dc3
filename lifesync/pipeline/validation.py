"""Record validation: required fields plus a per-domain rule table."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from numbers import Real
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional, Tuple

from lifesync.schemas.records import LifeDomain, RawRecord, ValidationResult

RuleKind = Literal["required", "type", "range", "format", "custom"]

MAX_RECORD_AGE = timedelta(days=7)
STALE_WARNING = "Data is older than 7 days"

HEALTH_METRICS = ("steps", "heartrate", "sleep", "weight", "calories", "value")


def is_number(value: Any) -> bool:
    """Real numbers only; booleans are not amounts."""
    return isinstance(value, Real) and not isinstance(value, bool)


@dataclass(frozen=True)
class ValidationRule:
    field: str
    kind: RuleKind
    message: str
    constraint: Any = None

    def check(self, payload: Mapping[str, Any]) -> Optional[str]:
        value = payload.get(self.field)
        if self.kind == "required":
            return self.message if value is None else None
        if self.kind == "type":
            return self.message if value is not None and not self.constraint(value) else None
        if self.kind == "range":
            low, high = self.constraint
            if is_number(value) and not (low <= value <= high):
                return self.message
            return None
        if self.kind == "format":
            if isinstance(value, str) and not re.fullmatch(self.constraint, value):
                return self.message
            return None
        if self.kind == "custom":
            # custom predicates see the whole payload
            return None if self.constraint(payload) else self.message
        raise ValueError(f"Unknown validation rule kind: {self.kind}")


def _has_health_metric(payload: Mapping[str, Any]) -> bool:
    return any(payload.get(metric) is not None for metric in HEALTH_METRICS)


DEFAULT_RULES: Dict[LifeDomain, Tuple[ValidationRule, ...]] = {
    LifeDomain.FINANCIAL: (
        ValidationRule("amount", "required", "Amount is required for financial data"),
        ValidationRule("amount", "type", "Amount must be a number", is_number),
        ValidationRule("currency", "format", "Currency must be a 3-letter ISO code", r"[A-Z]{3}"),
    ),
    LifeDomain.HEALTH: (
        ValidationRule("steps", "custom", "At least one health metric is required", _has_health_metric),
        ValidationRule("heartrate", "range", "Heart rate must be between 0 and 300", (0, 300)),
    ),
}


class RecordValidator:
    def __init__(
        self,
        rules: Optional[Dict[LifeDomain, Tuple[ValidationRule, ...]]] = None,
        max_age: timedelta = MAX_RECORD_AGE,
    ):
        self.rules = DEFAULT_RULES if rules is None else rules
        self.max_age = max_age

    def validate(self, raw: RawRecord, now: datetime) -> ValidationResult:
        errors: List[str] = []
        warnings: List[str] = []

        required: List[Tuple[str, Callable[[RawRecord], Any]]] = [
            ("Owner ID is required", lambda r: r.owner_id),
            ("Source ID is required", lambda r: r.source_id),
            ("Domain is required", lambda r: r.domain),
            ("Timestamp is required", lambda r: r.timestamp),
            ("Payload is required", lambda r: r.payload is not None),
        ]
        errors.extend(message for message, present in required if not present(raw))

        if raw.domain is not None and raw.payload is not None:
            for rule in self.rules.get(raw.domain, ()):
                problem = rule.check(raw.payload)
                if problem:
                    errors.append(problem)

        if raw.timestamp is not None and now - raw.timestamp > self.max_age:
            warnings.append(STALE_WARNING)

        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)
