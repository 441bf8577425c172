from __future__ import annotations

from calendar import monthrange
from datetime import MAXYEAR, date
from typing import List, Optional

from backend.cash_flow_models import RecurringDefinition

MIN_ANCHOR_DAY = 1
MAX_ANCHOR_DAY = 31


def expected_occurrence_dates(
    definition: RecurringDefinition,
    range_start: date,
    range_end: date,
) -> List[date]:
    """Monthly occurrence dates of ``definition`` inside the inclusive range.

    Starts from the stored next expected date when there is one, otherwise
    from the anchor day in ``range_start``'s month. Days that do not exist in
    a month are clamped to the month's last day.
    """
    if range_start > range_end:
        raise ValueError("range_start must be on or before range_end.")
    anchor_day = _resolve_anchor_day(definition)
    if anchor_day is None:
        return []

    current_date = definition.next_expected_date or _first_monthly_on_or_after(
        range_start, anchor_day
    )
    occurrences: List[date] = []
    while current_date is not None and current_date <= range_end:
        if current_date >= range_start:
            occurrences.append(current_date)
        current_date = _add_months(current_date, 1, anchor_day)
    return occurrences


def is_paused(definition: RecurringDefinition, today: date) -> bool:
    if definition.paused:
        return True
    return definition.paused_until is not None and definition.paused_until >= today


def is_projectable(definition: RecurringDefinition, today: date) -> bool:
    return definition.active and not is_paused(definition, today)


def _resolve_anchor_day(definition: RecurringDefinition) -> Optional[int]:
    anchor_day = definition.expected_day_of_month
    if anchor_day is None:
        if definition.next_expected_date is None:
            return None
        return definition.next_expected_date.day
    if not MIN_ANCHOR_DAY <= anchor_day <= MAX_ANCHOR_DAY:
        raise ValueError("expected_day_of_month must be between 1 and 31.")
    return anchor_day


def _first_monthly_on_or_after(minimum_date: date, anchor_day: int) -> Optional[date]:
    candidate = _add_months(minimum_date, 0, anchor_day)
    if candidate < minimum_date:
        candidate = _add_months(minimum_date, 1, anchor_day)
    return candidate


def _add_months(start_date: date, months: int, anchor_day: int) -> Optional[date]:
    total_month = start_date.month - 1 + months
    year = start_date.year + total_month // 12
    if year > MAXYEAR:
        return None
    month = total_month % 12 + 1
    last_day = monthrange(year, month)[1]
    day = min(anchor_day, last_day)
    return date(year, month, day)
