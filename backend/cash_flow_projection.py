from __future__ import annotations

import logging
from calendar import monthrange
from datetime import date, timedelta
from decimal import Decimal
from functools import cached_property
from typing import List, Tuple

from backend.balance_curve import (
    DEFAULT_LOW_BALANCE_THRESHOLD,
    ZERO,
    build_balance_curve,
    build_scenario_curve,
    detect_balance_alerts,
    summarize_projection,
)
from backend.cash_flow_models import (
    Alert,
    BalancePoint,
    EntrySnapshot,
    EventKind,
    EventOrigin,
    ProjectedEvent,
    ProjectionRequest,
    ProjectionResult,
    ProjectionSummary,
    RecurringDefinition,
    ScenarioPoint,
)
from backend.cash_flow_store import ProjectionDataSource
from backend.projection_confidence import (
    CONFIDENCE_PENDING,
    CONFIDENCE_SCENARIO,
    recurring_event_confidence,
)
from backend.recurring_projection import expected_occurrence_dates, is_projectable

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 90
DEFAULT_UPCOMING_LIMIT = 10
ASSET_CLASSIFICATION = "asset"
LIABILITY_CLASSIFICATION = "liability"
INCOME_CLASSIFICATION = "income"


def default_window(today: date, days: int = DEFAULT_WINDOW_DAYS) -> Tuple[date, date]:
    return today, today + timedelta(days=days)


def window_for_view(start_date: date, view: str | None) -> Tuple[date, date]:
    """Date range shown by a calendar view starting at ``start_date``."""
    normalized = (view or "").strip().lower()
    if normalized == "day":
        return start_date, start_date
    if normalized == "week":
        return start_date, start_date + timedelta(days=6)
    if normalized == "month":
        last_day = monthrange(start_date.year, start_date.month)[1]
        return start_date, start_date.replace(day=last_day)
    return start_date, start_date + timedelta(days=30)


def sort_events(events: List[ProjectedEvent]) -> List[ProjectedEvent]:
    return sorted(
        events,
        key=lambda event: (event.date, 0 if event.kind is EventKind.INCOME else 1),
    )


class CashFlowProjectionService:
    """Projects a household's balance over ``request``'s window.

    The starting balance and the materialized event list are computed once
    per instance; reuse one instance for every output of a single view.
    """

    def __init__(
        self,
        source: ProjectionDataSource,
        request: ProjectionRequest,
        low_balance_threshold: Decimal = DEFAULT_LOW_BALANCE_THRESHOLD,
    ) -> None:
        self.source = source
        self.request = request
        self.low_balance_threshold = low_balance_threshold

    @cached_property
    def starting_balance(self) -> Decimal:
        assets = ZERO
        liabilities = ZERO
        for account in self.source.fetch_accounts(self.request.household_id):
            if not account.active or not self.request.includes_account(account.id):
                continue
            classification = account.classification.strip().lower()
            if classification == ASSET_CLASSIFICATION:
                assets += account.balance
            elif classification == LIABILITY_CLASSIFICATION:
                liabilities += account.balance
        return assets - abs(liabilities)

    @cached_property
    def _events(self) -> List[ProjectedEvent]:
        pending = self._pending_projections()
        recurring = self._recurring_projections()
        logger.debug(
            "Materialized %d pending and %d recurring events for household %s",
            len(pending),
            len(recurring),
            self.request.household_id,
        )
        return sort_events(pending + recurring)

    def generate_projection(self) -> ProjectionResult:
        return ProjectionResult(
            projections=self.daily_projections(),
            balance_curve=self.balance_curve(),
            summary=self.summary(),
            alerts=self.low_balance_alerts(),
        )

    def daily_projections(self) -> List[ProjectedEvent]:
        return list(self._events)

    def balance_curve(self) -> List[BalancePoint]:
        return build_balance_curve(
            self._events,
            self.starting_balance,
            self.request.start_date,
            self.request.end_date,
        )

    def summary(self) -> ProjectionSummary:
        return summarize_projection(
            self._events,
            self.balance_curve(),
            self.starting_balance,
            self.request.start_date,
            self.request.end_date,
        )

    def low_balance_alerts(self) -> List[Alert]:
        return detect_balance_alerts(
            self.balance_curve(),
            self.request.today,
            threshold=self.low_balance_threshold,
        )

    def projections_for_date(self, on_date: date) -> List[ProjectedEvent]:
        return [event for event in self._events if event.date == on_date]

    def upcoming(self, limit: int = DEFAULT_UPCOMING_LIMIT) -> List[ProjectedEvent]:
        return self._events[:limit]

    def scenario_with_transaction(
        self,
        amount: Decimal,
        on_date: date,
        kind: EventKind | str = EventKind.EXPENSE,
        description: str = "Hypothetical transaction",
    ) -> List[ScenarioPoint]:
        hypothetical = ProjectedEvent(
            date=on_date,
            kind=EventKind.validate(kind),
            amount=abs(_coerce_decimal(amount)),
            description=description,
            confidence=CONFIDENCE_SCENARIO,
            origin=EventOrigin.SCENARIO,
        )
        events = sorted(self._events + [hypothetical], key=lambda event: event.date)
        return self._scenario_curve(events)

    def scenario_without_recurring(self, recurring_id: int) -> List[ScenarioPoint]:
        events = [
            event
            for event in self._events
            if not (
                event.origin is EventOrigin.RECURRING and event.origin_id == recurring_id
            )
        ]
        return self._scenario_curve(events)

    def baseline_scenario_curve(self) -> List[ScenarioPoint]:
        return self._scenario_curve(self._events)

    def _scenario_curve(self, events: List[ProjectedEvent]) -> List[ScenarioPoint]:
        return build_scenario_curve(
            events,
            self.starting_balance,
            self.request.start_date,
            self.request.end_date,
        )

    def _pending_projections(self) -> List[ProjectedEvent]:
        entries = self.source.fetch_entries(
            self.request.household_id,
            self.request.start_date,
            self.request.end_date,
            self.request.account_ids,
        )
        return [
            _pending_event(entry)
            for entry in entries
            if entry.pending
            and self.request.start_date <= entry.date <= self.request.end_date
            and self.request.includes_account(entry.account_id)
        ]

    def _recurring_projections(self) -> List[ProjectedEvent]:
        projections: List[ProjectedEvent] = []
        definitions = self.source.fetch_recurring_definitions(self.request.household_id)
        for definition in definitions:
            if not is_projectable(definition, self.request.today):
                continue
            for occurrence in expected_occurrence_dates(
                definition, self.request.start_date, self.request.end_date
            ):
                projections.append(
                    _recurring_event(definition, occurrence, self.request.today)
                )
        return projections


def _pending_event(entry: EntrySnapshot) -> ProjectedEvent:
    is_income = entry.classification.strip().lower() == INCOME_CLASSIFICATION
    return ProjectedEvent(
        date=entry.date,
        kind=EventKind.INCOME if is_income else EventKind.EXPENSE,
        amount=abs(_coerce_decimal(entry.amount)),
        description=entry.name,
        confidence=CONFIDENCE_PENDING,
        origin=EventOrigin.PENDING,
        origin_id=entry.id,
    )


def _recurring_event(
    definition: RecurringDefinition, occurrence: date, today: date
) -> ProjectedEvent:
    if definition.manual and definition.expected_amount_avg is not None:
        amount = _coerce_decimal(definition.expected_amount_avg)
    else:
        amount = _coerce_decimal(definition.amount)
    return ProjectedEvent(
        date=occurrence,
        kind=EventKind.INCOME if amount < ZERO else EventKind.EXPENSE,
        amount=abs(amount),
        description=definition.display_name,
        confidence=recurring_event_confidence(definition, occurrence, today),
        origin=EventOrigin.RECURRING,
        origin_id=definition.id,
        recurring_ref=definition,
        amount_min=definition.expected_amount_min,
        amount_max=definition.expected_amount_max,
    )


def _coerce_decimal(amount) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
