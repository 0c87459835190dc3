"""Idempotent unit transforms applied to a record payload.

Each transform pairs an applicability predicate with a pure function over
a payload dict. A transform whose predicate fails is skipped, so running
the same transform twice leaves the payload unchanged the second time.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from lifesync.core.logging import get_logger
from lifesync.pipeline.validation import is_number
from lifesync.schemas.records import LifeDomain

log = get_logger("pipeline.transforms")

Payload = Dict[str, Any]

# USD per unit of currency
EXCHANGE_RATES: Dict[str, float] = {
    "USD": 1.0,
    "EUR": 1.1,
    "GBP": 1.27,
    "CAD": 0.74,
    "AUD": 0.66,
    "CHF": 1.13,
    "JPY": 0.0067,
}

LBS_TO_KG = 0.453592


@dataclass(frozen=True)
class Transform:
    name: str
    applies: Callable[[Mapping[str, Any]], bool]
    apply: Callable[[Payload], Payload]


def currency_transform(base_currency: str = "USD", rates: Optional[Mapping[str, float]] = None) -> Transform:
    rates = dict(EXCHANGE_RATES if rates is None else rates)
    base = base_currency.upper()

    def applies(payload: Mapping[str, Any]) -> bool:
        currency = payload.get("currency")
        return (
            is_number(payload.get("amount"))
            and isinstance(currency, str)
            and currency != base
            and currency in rates
            and base in rates
        )

    def apply(payload: Payload) -> Payload:
        rate = rates[payload["currency"]] / rates[base]
        out = dict(payload)
        out["originalAmount"] = payload["amount"]
        out["originalCurrency"] = payload["currency"]
        out["exchangeRate"] = round(rate, 6)
        out["amount"] = round(payload["amount"] * rate, 2)
        out["currency"] = base
        return out

    return Transform("normalize-currency", applies, apply)


def _units_applies(payload: Mapping[str, Any]) -> bool:
    return is_number(payload.get("weight")) and str(payload.get("unit", "")).lower() in ("lbs", "lb")


def _units_apply(payload: Payload) -> Payload:
    out = dict(payload)
    out["originalWeight"] = payload["weight"]
    out["originalUnit"] = payload["unit"]
    out["weight"] = round(payload["weight"] * LBS_TO_KG, 3)
    out["unit"] = "kg"
    return out


def _to_utc_iso(value: str) -> str:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _needs_utc(value: Any) -> bool:
    if not isinstance(value, str) or not value:
        return False
    try:
        return _to_utc_iso(value) != value
    except ValueError:
        return False


def _timezone_applies(payload: Mapping[str, Any]) -> bool:
    return _needs_utc(payload.get("startTime")) or _needs_utc(payload.get("endTime"))


def _timezone_apply(payload: Payload) -> Payload:
    out = dict(payload)
    for key, original_key in (("startTime", "originalStartTime"), ("endTime", "originalEndTime")):
        if _needs_utc(payload.get(key)):
            out[original_key] = payload[key]
            out[key] = _to_utc_iso(payload[key])
    return out


UNITS_TRANSFORM = Transform("normalize-units", _units_applies, _units_apply)
TIMEZONE_TRANSFORM = Transform("normalize-timezone", _timezone_applies, _timezone_apply)


def default_transforms(base_currency: str = "USD") -> Dict[LifeDomain, Tuple[Transform, ...]]:
    return {
        LifeDomain.FINANCIAL: (currency_transform(base_currency),),
        LifeDomain.HEALTH: (UNITS_TRANSFORM,),
        LifeDomain.CALENDAR: (TIMEZONE_TRANSFORM,),
        LifeDomain.PERSONAL: (TIMEZONE_TRANSFORM,),
    }


def apply_transforms(payload: Mapping[str, Any], transforms: Tuple[Transform, ...]) -> Tuple[Payload, List[str]]:
    """Run transforms in order. Returns the new payload and the names applied."""
    current: Payload = dict(payload)
    applied: List[str] = []
    for transform in transforms:
        try:
            if not transform.applies(current):
                continue
            current = transform.apply(current)
            applied.append(transform.name)
        except (ArithmeticError, KeyError, TypeError, ValueError) as exc:
            log.warning(f"Transformation {transform.name} failed: {exc}")
    return current, applied
