from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from backend.cash_flow_models import (
    Alert,
    AlertKind,
    AlertSeverity,
    BalancePoint,
    EventKind,
    ProjectedEvent,
    ProjectionSummary,
    ScenarioComparison,
    ScenarioPoint,
)
from backend.projection_confidence import decay_day_confidence

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
EMPTY_DAY_CONFIDENCE = Decimal("1.0")
DEFAULT_LOW_BALANCE_THRESHOLD = Decimal("500")


def group_events_by_date(
    events: Iterable[ProjectedEvent],
) -> Dict[date, List[ProjectedEvent]]:
    grouped: Dict[date, List[ProjectedEvent]] = {}
    for event in events:
        grouped.setdefault(event.date, []).append(event)
    return grouped


def build_balance_curve(
    events: Iterable[ProjectedEvent],
    starting_balance: Decimal,
    start_date: date,
    end_date: date,
) -> List[BalancePoint]:
    """Fold events into one running-balance point per day of the window.

    Day confidence is the mean of that day's event confidences (1.0 on
    empty days), decayed by its offset from ``start_date``.
    """
    curve: List[BalancePoint] = []
    for day_offset, (day, day_events, net_change, balance) in enumerate(
        _fold_days(events, starting_balance, start_date, end_date)
    ):
        if day_events:
            mean_confidence = sum(
                (event.confidence for event in day_events), ZERO
            ) / len(day_events)
        else:
            mean_confidence = EMPTY_DAY_CONFIDENCE
        curve.append(
            BalancePoint(
                date=day,
                balance=balance,
                confidence=decay_day_confidence(mean_confidence, day_offset),
                net_change=net_change,
                event_count=len(day_events),
            )
        )
    return curve


def build_scenario_curve(
    events: Iterable[ProjectedEvent],
    starting_balance: Decimal,
    start_date: date,
    end_date: date,
) -> List[ScenarioPoint]:
    return [
        ScenarioPoint(
            date=day,
            balance=balance,
            net_change=net_change,
            event_count=len(day_events),
        )
        for day, day_events, net_change, balance in _fold_days(
            events, starting_balance, start_date, end_date
        )
    ]


def summarize_projection(
    events: Sequence[ProjectedEvent],
    curve: Sequence[BalancePoint],
    starting_balance: Decimal,
    start_date: date,
    end_date: date,
) -> ProjectionSummary:
    total_income = _sum_kind(events, EventKind.INCOME)
    total_expenses = _sum_kind(events, EventKind.EXPENSE)
    ending_balance = curve[-1].balance if curve else starting_balance
    return ProjectionSummary(
        total_projected_income=total_income,
        total_projected_expenses=total_expenses,
        net_projected_cash_flow=total_income - total_expenses,
        projection_count=len(events),
        starting_balance=starting_balance,
        ending_balance=ending_balance,
        start_date=start_date,
        end_date=end_date,
    )


def detect_balance_alerts(
    curve: Sequence[BalancePoint],
    today: date,
    threshold: Decimal = DEFAULT_LOW_BALANCE_THRESHOLD,
) -> List[Alert]:
    """Earliest low-balance and overdraft alerts for ``curve``, by date.

    The overdraft alert is dropped when it falls on the same day as the
    low-balance alert.
    """
    alerts: List[Alert] = []
    first_low = _first_point(curve, lambda balance: balance < threshold)
    if first_low is not None:
        alerts.append(
            Alert(
                kind=AlertKind.LOW_BALANCE,
                date=first_low.date,
                projected_balance=first_low.balance,
                severity=(
                    AlertSeverity.CRITICAL
                    if first_low.balance < ZERO
                    else AlertSeverity.WARNING
                ),
                days_until=(first_low.date - today).days,
                threshold=threshold,
            )
        )

    first_negative = _first_point(curve, lambda balance: balance < ZERO)
    if first_negative is not None and not any(
        alert.date == first_negative.date for alert in alerts
    ):
        alerts.append(
            Alert(
                kind=AlertKind.OVERDRAFT,
                date=first_negative.date,
                projected_balance=first_negative.balance,
                severity=AlertSeverity.CRITICAL,
                days_until=(first_negative.date - today).days,
            )
        )

    if alerts:
        logger.info(
            "Detected %d balance alert(s), earliest on %s",
            len(alerts),
            min(alert.date for alert in alerts).isoformat(),
        )
    return sorted(alerts, key=lambda alert: alert.date)


def compare_scenario(
    original: Sequence[ScenarioPoint | BalancePoint],
    scenario: Sequence[ScenarioPoint | BalancePoint],
) -> Optional[ScenarioComparison]:
    if not original or not scenario:
        return None
    original_end = original[-1].balance
    scenario_end = scenario[-1].balance
    difference = scenario_end - original_end
    if difference > ZERO:
        impact = "positive"
    elif difference < ZERO:
        impact = "negative"
    else:
        impact = "none"
    return ScenarioComparison(
        original_ending_balance=original_end,
        scenario_ending_balance=scenario_end,
        difference=difference,
        impact=impact,
    )


def _fold_days(
    events: Iterable[ProjectedEvent],
    starting_balance: Decimal,
    start_date: date,
    end_date: date,
):
    events_by_date = group_events_by_date(events)
    running_balance = starting_balance
    for day_offset in range((end_date - start_date).days + 1):
        current_date = start_date + timedelta(days=day_offset)
        day_events = events_by_date.get(current_date, [])
        net_change = sum((event.signed_amount for event in day_events), ZERO)
        running_balance += net_change
        yield current_date, day_events, net_change, running_balance


def _first_point(curve, predicate):
    for point in curve:
        if predicate(point.balance):
            return point
    return None


def _sum_kind(events: Iterable[ProjectedEvent], kind: EventKind) -> Decimal:
    return sum((event.amount for event in events if event.kind is kind), ZERO)
