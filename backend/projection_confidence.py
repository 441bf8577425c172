from __future__ import annotations

from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from backend.cash_flow_models import RecurringDefinition

CONFIDENCE_PENDING = Decimal("0.95")
CONFIDENCE_AUTO_RECURRING = Decimal("0.85")
CONFIDENCE_MANUAL_RECURRING = Decimal("0.70")
CONFIDENCE_NEW_RECURRING = Decimal("0.50")
CONFIDENCE_SCENARIO = Decimal("1.0")

CONFIDENCE_DECAY_PER_DAY = Decimal("0.002")
CONFIDENCE_FLOOR = Decimal("0.30")
CONFIDENCE_CEILING = Decimal("1.00")
ESTABLISHED_OCCURRENCE_COUNT = 3

_TWO_PLACES = Decimal("0.01")


def base_confidence(definition: RecurringDefinition) -> Decimal:
    """Starting confidence for a recurring definition before any decay.

    A stored confidence score overrides the provenance-based default.
    """
    if definition.confidence_score is not None:
        return _coerce_decimal(definition.confidence_score)
    if definition.manual:
        return CONFIDENCE_MANUAL_RECURRING
    if definition.occurrence_count >= ESTABLISHED_OCCURRENCE_COUNT:
        return CONFIDENCE_AUTO_RECURRING
    return CONFIDENCE_NEW_RECURRING


def recurring_event_confidence(
    definition: RecurringDefinition, on_date: date, today: date
) -> Decimal:
    days_out = (on_date - today).days
    return _decay(base_confidence(definition), days_out)


def decay_day_confidence(mean_confidence: Decimal, day_offset: int) -> Decimal:
    if day_offset < 0:
        raise ValueError("day_offset must not be negative.")
    return _decay(_coerce_decimal(mean_confidence), day_offset)


def _decay(confidence: Decimal, days: int) -> Decimal:
    decayed = confidence * (Decimal(1) - Decimal(days) * CONFIDENCE_DECAY_PER_DAY)
    bounded = min(max(decayed, CONFIDENCE_FLOOR), CONFIDENCE_CEILING)
    return bounded.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


def _coerce_decimal(value: Decimal) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))
