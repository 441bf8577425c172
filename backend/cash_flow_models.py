from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple


class EventKind(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"

    @classmethod
    def validate(cls, value: "EventKind | str") -> "EventKind":
        if isinstance(value, cls):
            return value
        normalized = value.strip().lower()
        try:
            return cls(normalized)
        except ValueError as exc:
            raise ValueError("Kind must be income or expense.") from exc


class EventOrigin(str, Enum):
    PENDING = "pending"
    RECURRING = "recurring"
    SCENARIO = "scenario"


class AlertKind(str, Enum):
    LOW_BALANCE = "low_balance"
    OVERDRAFT = "overdraft"


class AlertSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class AccountSnapshot:
    id: int
    classification: str
    balance: Decimal
    active: bool = True
    currency: str | None = None


@dataclass(frozen=True)
class EntrySnapshot:
    id: int
    date: date
    classification: str
    amount: Decimal
    account_id: int
    pending: bool = False
    name: str = ""


@dataclass(frozen=True)
class RecurringDefinition:
    """A template for an expected monthly income or expense.

    ``amount`` keeps the stored sign convention: negative amounts are
    incoming deposits, positive amounts are outflows.
    """

    id: int
    name: str
    amount: Decimal
    expected_day_of_month: Optional[int] = None
    active: bool = True
    paused: bool = False
    paused_until: Optional[date] = None
    manual: bool = False
    occurrence_count: int = 0
    confidence_score: Optional[Decimal] = None
    next_expected_date: Optional[date] = None
    expected_amount_avg: Optional[Decimal] = None
    expected_amount_min: Optional[Decimal] = None
    expected_amount_max: Optional[Decimal] = None
    merchant_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.merchant_name or self.name


@dataclass(frozen=True)
class ProjectedEvent:
    date: date
    kind: EventKind
    amount: Decimal
    description: str
    confidence: Decimal
    origin: EventOrigin
    origin_id: Optional[int] = None
    recurring_ref: Optional[RecurringDefinition] = None
    amount_min: Optional[Decimal] = None
    amount_max: Optional[Decimal] = None

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.kind is EventKind.INCOME else -self.amount


@dataclass(frozen=True)
class BalancePoint:
    date: date
    balance: Decimal
    confidence: Decimal
    net_change: Decimal
    event_count: int


@dataclass(frozen=True)
class ScenarioPoint:
    date: date
    balance: Decimal
    net_change: Decimal
    event_count: int


@dataclass(frozen=True)
class Alert:
    kind: AlertKind
    date: date
    projected_balance: Decimal
    severity: AlertSeverity
    days_until: int
    threshold: Optional[Decimal] = None


@dataclass(frozen=True)
class ProjectionSummary:
    total_projected_income: Decimal
    total_projected_expenses: Decimal
    net_projected_cash_flow: Decimal
    projection_count: int
    starting_balance: Decimal
    ending_balance: Decimal
    start_date: date
    end_date: date


@dataclass(frozen=True)
class ScenarioComparison:
    original_ending_balance: Decimal
    scenario_ending_balance: Decimal
    difference: Decimal
    impact: str


@dataclass(frozen=True)
class ProjectionResult:
    projections: List[ProjectedEvent]
    balance_curve: List[BalancePoint]
    summary: ProjectionSummary
    alerts: List[Alert] = field(default_factory=list)


@dataclass(frozen=True)
class ProjectionRequest:
    household_id: int
    start_date: date
    end_date: date
    account_ids: Optional[Tuple[int, ...]] = None
    today: date = field(default_factory=date.today)

    def __post_init__(self) -> None:
        for value in (self.start_date, self.end_date, self.today):
            if isinstance(value, datetime) or not isinstance(value, date):
                raise ValueError("Projection dates must be calendar dates.")
        if self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date.")
        if self.account_ids is not None:
            object.__setattr__(self, "account_ids", tuple(self.account_ids) or None)

    @property
    def day_count(self) -> int:
        return (self.end_date - self.start_date).days + 1

    def includes_account(self, account_id: int) -> bool:
        return self.account_ids is None or account_id in self.account_ids
