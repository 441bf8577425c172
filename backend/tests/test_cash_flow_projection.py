import unittest
from datetime import date, datetime
from decimal import Decimal

from backend.cash_flow_models import (
    AccountSnapshot,
    AlertKind,
    AlertSeverity,
    EntrySnapshot,
    EventKind,
    EventOrigin,
    ProjectionRequest,
    RecurringDefinition,
)
from backend.cash_flow_projection import (
    CashFlowProjectionService,
    default_window,
    window_for_view,
)
from backend.cash_flow_store import InMemoryProjectionSource

TODAY = date(2024, 6, 1)


def build_source() -> InMemoryProjectionSource:
    return InMemoryProjectionSource(
        accounts=[
            AccountSnapshot(id=1, classification="asset", balance=Decimal("2000")),
            AccountSnapshot(id=2, classification="asset", balance=Decimal("500")),
            AccountSnapshot(id=3, classification="liability", balance=Decimal("-300")),
            AccountSnapshot(
                id=4, classification="asset", balance=Decimal("10000"), active=False
            ),
        ],
        entries=[
            EntrySnapshot(
                id=10,
                date=date(2024, 6, 3),
                classification="expense",
                amount=Decimal("-120"),
                account_id=1,
                pending=True,
                name="Groceries",
            ),
            EntrySnapshot(
                id=11,
                date=date(2024, 6, 3),
                classification="income",
                amount=Decimal("250"),
                account_id=2,
                pending=True,
                name="Refund",
            ),
            EntrySnapshot(
                id=12,
                date=date(2024, 6, 4),
                classification="expense",
                amount=Decimal("80"),
                account_id=1,
                pending=False,
                name="Cleared purchase",
            ),
            EntrySnapshot(
                id=13,
                date=date(2024, 7, 5),
                classification="expense",
                amount=Decimal("60"),
                account_id=1,
                pending=True,
                name="Next month",
            ),
        ],
        recurring=[
            RecurringDefinition(
                id=20,
                name="Paycheck",
                amount=Decimal("-3000"),
                expected_day_of_month=15,
                occurrence_count=6,
            ),
            RecurringDefinition(
                id=21,
                name="Rent",
                amount=Decimal("1800"),
                expected_day_of_month=1,
                manual=True,
            ),
            RecurringDefinition(
                id=22,
                name="Gym",
                amount=Decimal("40"),
                expected_day_of_month=3,
                manual=True,
                expected_amount_avg=Decimal("45"),
                expected_amount_min=Decimal("40"),
                expected_amount_max=Decimal("50"),
                merchant_name="Iron Gym",
            ),
            RecurringDefinition(
                id=23,
                name="Streaming",
                amount=Decimal("15"),
                expected_day_of_month=10,
                paused=True,
            ),
            RecurringDefinition(
                id=24,
                name="Old loan",
                amount=Decimal("250"),
                expected_day_of_month=20,
                active=False,
            ),
        ],
    )


def build_service(source=None, **request_overrides) -> CashFlowProjectionService:
    values = {
        "household_id": 1,
        "start_date": TODAY,
        "end_date": date(2024, 6, 30),
        "today": TODAY,
    }
    values.update(request_overrides)
    return CashFlowProjectionService(source or build_source(), ProjectionRequest(**values))


class CountingSource(InMemoryProjectionSource):
    def __init__(self, delegate: InMemoryProjectionSource) -> None:
        super().__init__(delegate.accounts, delegate.entries, delegate.recurring)
        self.calls = {"accounts": 0, "entries": 0, "recurring": 0}

    def fetch_accounts(self, household_id):
        self.calls["accounts"] += 1
        return super().fetch_accounts(household_id)

    def fetch_entries(self, household_id, start_date, end_date, account_ids=None):
        self.calls["entries"] += 1
        return super().fetch_entries(household_id, start_date, end_date, account_ids)

    def fetch_recurring_definitions(self, household_id):
        self.calls["recurring"] += 1
        return super().fetch_recurring_definitions(household_id)


class ProjectionRequestTests(unittest.TestCase):
    def test_rejects_inverted_range(self) -> None:
        with self.assertRaises(ValueError):
            ProjectionRequest(
                household_id=1,
                start_date=date(2024, 6, 2),
                end_date=date(2024, 6, 1),
            )

    def test_rejects_datetime_values(self) -> None:
        with self.assertRaises(ValueError):
            ProjectionRequest(
                household_id=1,
                start_date=datetime(2024, 6, 1, 9, 30),
                end_date=date(2024, 6, 30),
            )

    def test_empty_account_filter_means_all_accounts(self) -> None:
        request = ProjectionRequest(
            household_id=1,
            start_date=TODAY,
            end_date=TODAY,
            account_ids=[],
        )

        self.assertIsNone(request.account_ids)
        self.assertTrue(request.includes_account(99))

    def test_default_window_spans_ninety_days(self) -> None:
        self.assertEqual(default_window(TODAY), (TODAY, date(2024, 8, 30)))

    def test_window_for_views(self) -> None:
        start = date(2024, 2, 10)

        self.assertEqual(window_for_view(start, "day"), (start, start))
        self.assertEqual(window_for_view(start, "week"), (start, date(2024, 2, 16)))
        self.assertEqual(window_for_view(start, "month"), (start, date(2024, 2, 29)))
        self.assertEqual(window_for_view(start, None), (start, date(2024, 3, 11)))


class CashFlowProjectionServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.service = build_service()

    def test_starting_balance_nets_liabilities_and_skips_inactive(self) -> None:
        self.assertEqual(self.service.starting_balance, Decimal("2200"))

    def test_starting_balance_respects_account_filter(self) -> None:
        self.assertEqual(build_service(account_ids=(1,)).starting_balance, Decimal("2000"))
        self.assertEqual(build_service(account_ids=(1, 3)).starting_balance, Decimal("1700"))

    def test_projections_sorted_with_income_first_each_day(self) -> None:
        projections = self.service.daily_projections()

        self.assertEqual(
            [(event.date, event.description) for event in projections],
            [
                (date(2024, 6, 1), "Rent"),
                (date(2024, 6, 3), "Refund"),
                (date(2024, 6, 3), "Groceries"),
                (date(2024, 6, 3), "Iron Gym"),
                (date(2024, 6, 15), "Paycheck"),
            ],
        )

    def test_pending_events_use_absolute_amounts(self) -> None:
        groceries = self.service.projections_for_date(date(2024, 6, 3))[1]

        self.assertEqual(groceries.kind, EventKind.EXPENSE)
        self.assertEqual(groceries.amount, Decimal("120"))
        self.assertEqual(groceries.confidence, Decimal("0.95"))
        self.assertEqual(groceries.origin, EventOrigin.PENDING)
        self.assertEqual(groceries.origin_id, 10)

    def test_recurring_events_carry_sign_convention_and_confidence(self) -> None:
        paycheck = self.service.projections_for_date(date(2024, 6, 15))[0]

        self.assertEqual(paycheck.kind, EventKind.INCOME)
        self.assertEqual(paycheck.amount, Decimal("3000"))
        self.assertEqual(paycheck.origin, EventOrigin.RECURRING)
        self.assertEqual(paycheck.origin_id, 20)
        # 0.85 * (1 - 14 * 0.002)
        self.assertEqual(paycheck.confidence, Decimal("0.83"))

    def test_manual_recurring_uses_average_amount(self) -> None:
        gym = self.service.projections_for_date(date(2024, 6, 3))[2]

        self.assertEqual(gym.amount, Decimal("45"))
        self.assertEqual(gym.kind, EventKind.EXPENSE)
        self.assertEqual((gym.amount_min, gym.amount_max), (Decimal("40"), Decimal("50")))
        self.assertEqual(gym.recurring_ref.id, 22)

    def test_projections_for_date_without_events_is_empty(self) -> None:
        self.assertEqual(self.service.projections_for_date(date(2024, 6, 2)), [])
        self.assertEqual(self.service.projections_for_date(date(2025, 1, 1)), [])

    def test_account_filter_limits_pending_entries(self) -> None:
        service = build_service(account_ids=(1,))

        pending = [
            event.description
            for event in service.daily_projections()
            if event.origin is EventOrigin.PENDING
        ]

        self.assertEqual(pending, ["Groceries"])

    def test_balance_curve(self) -> None:
        curve = self.service.balance_curve()

        self.assertEqual(len(curve), 30)
        self.assertEqual(curve[0].balance, Decimal("400"))
        self.assertEqual(curve[1].balance, Decimal("400"))
        self.assertEqual(curve[2].net_change, Decimal("85"))
        self.assertEqual(curve[2].balance, Decimal("485"))
        self.assertEqual(curve[2].event_count, 3)
        # mean(0.95, 0.95, 0.70) decayed two days
        self.assertEqual(curve[2].confidence, Decimal("0.86"))
        self.assertEqual(curve[-1].balance, Decimal("3485"))

    def test_generate_projection(self) -> None:
        projection = self.service.generate_projection()

        self.assertEqual(len(projection.projections), 5)
        self.assertEqual(len(projection.balance_curve), 30)
        self.assertEqual(projection.summary.total_projected_income, Decimal("3250"))
        self.assertEqual(projection.summary.total_projected_expenses, Decimal("1965"))
        self.assertEqual(projection.summary.net_projected_cash_flow, Decimal("1285"))
        self.assertEqual(projection.summary.ending_balance, Decimal("3485"))
        self.assertEqual(len(projection.alerts), 1)
        alert = projection.alerts[0]
        self.assertEqual(alert.kind, AlertKind.LOW_BALANCE)
        self.assertEqual(alert.severity, AlertSeverity.WARNING)
        self.assertEqual(alert.date, TODAY)
        self.assertEqual(alert.days_until, 0)

    def test_custom_low_balance_threshold(self) -> None:
        service = CashFlowProjectionService(
            build_source(),
            ProjectionRequest(
                household_id=1,
                start_date=TODAY,
                end_date=date(2024, 6, 30),
                today=TODAY,
            ),
            low_balance_threshold=Decimal("100"),
        )

        self.assertEqual(service.low_balance_alerts(), [])

    def test_upcoming_returns_first_events(self) -> None:
        upcoming = self.service.upcoming(2)

        self.assertEqual([event.description for event in upcoming], ["Rent", "Refund"])

    def test_sources_are_fetched_once_per_service(self) -> None:
        source = CountingSource(build_source())
        service = build_service(source)

        service.generate_projection()
        service.balance_curve()
        service.scenario_without_recurring(21)

        self.assertEqual(source.calls, {"accounts": 1, "entries": 1, "recurring": 1})


class ScenarioTests(unittest.TestCase):
    def setUp(self) -> None:
        self.service = build_service()

    def test_added_transaction_changes_only_later_days(self) -> None:
        baseline = self.service.baseline_scenario_curve()
        scenario = self.service.scenario_with_transaction(
            Decimal("1000"), date(2024, 6, 10), kind=EventKind.EXPENSE
        )

        self.assertEqual(len(scenario), len(self.service.balance_curve()))
        for original, changed in zip(baseline, scenario):
            if changed.date < date(2024, 6, 10):
                self.assertEqual(changed.balance, original.balance)
            else:
                self.assertEqual(changed.balance, original.balance - Decimal("1000"))
        self.assertEqual(scenario[9].event_count, baseline[9].event_count + 1)

    def test_added_income_uses_absolute_amount(self) -> None:
        scenario = self.service.scenario_with_transaction(
            Decimal("-250"), date(2024, 6, 2), kind="income"
        )

        self.assertEqual(scenario[1].net_change, Decimal("250"))
        self.assertEqual(scenario[-1].balance, Decimal("3735"))

    def test_scenario_does_not_change_service_projections(self) -> None:
        self.service.scenario_with_transaction(Decimal("50"), date(2024, 6, 5))

        self.assertEqual(len(self.service.daily_projections()), 5)

    def test_rejects_unknown_kind(self) -> None:
        with self.assertRaises(ValueError):
            self.service.scenario_with_transaction(Decimal("5"), date(2024, 6, 5), kind="transfer")

    def test_removing_recurring_restores_its_amount(self) -> None:
        baseline = self.service.baseline_scenario_curve()
        scenario = self.service.scenario_without_recurring(21)

        self.assertEqual(len(scenario), len(baseline))
        for original, changed in zip(baseline, scenario):
            self.assertEqual(changed.balance, original.balance + Decimal("1800"))

    def test_removing_unknown_recurring_keeps_baseline(self) -> None:
        self.assertEqual(
            self.service.scenario_without_recurring(999),
            self.service.baseline_scenario_curve(),
        )


if __name__ == "__main__":
    unittest.main()
