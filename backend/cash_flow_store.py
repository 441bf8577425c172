from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional, Protocol, Sequence

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    select,
)
from sqlalchemy.engine import Engine

from backend.cash_flow_models import AccountSnapshot, EntrySnapshot, RecurringDefinition

metadata = MetaData()

households = Table(
    "households",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("currency", String(3), nullable=False, server_default="USD"),
)

accounts = Table(
    "accounts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("household_id", Integer, ForeignKey("households.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("classification", String(20), nullable=False),
    Column("balance", Numeric(14, 2), nullable=False, server_default="0"),
    Column("currency", String(3)),
    Column("active", Boolean, nullable=False, server_default="1"),
)

entries = Table(
    "entries",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("household_id", Integer, ForeignKey("households.id"), nullable=False),
    Column("account_id", Integer, ForeignKey("accounts.id"), nullable=False),
    Column("name", String(255), nullable=False, server_default=""),
    Column("date", Date, nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("classification", String(20), nullable=False),
    Column("pending", Boolean, nullable=False, server_default="0"),
)

recurring_transactions = Table(
    "recurring_transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("household_id", Integer, ForeignKey("households.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("merchant_name", String(255)),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("expected_day_of_month", Integer),
    Column("next_expected_date", Date),
    Column("expected_amount_avg", Numeric(12, 2)),
    Column("expected_amount_min", Numeric(12, 2)),
    Column("expected_amount_max", Numeric(12, 2)),
    Column("manual", Boolean, nullable=False, server_default="0"),
    Column("occurrence_count", Integer, nullable=False, server_default="0"),
    Column("confidence_score", Numeric(5, 4)),
    Column("active", Boolean, nullable=False, server_default="1"),
    Column("paused", Boolean, nullable=False, server_default="0"),
    Column("paused_until", Date),
)


class ProjectionDataSource(Protocol):
    def fetch_accounts(self, household_id: int) -> Sequence[AccountSnapshot]:
        ...

    def fetch_entries(
        self,
        household_id: int,
        start_date: date,
        end_date: date,
        account_ids: Optional[Sequence[int]] = None,
    ) -> Sequence[EntrySnapshot]:
        ...

    def fetch_recurring_definitions(
        self, household_id: int
    ) -> Sequence[RecurringDefinition]:
        ...


@dataclass
class InMemoryProjectionSource:
    """Snapshot-backed source for a single household."""

    accounts: List[AccountSnapshot] = field(default_factory=list)
    entries: List[EntrySnapshot] = field(default_factory=list)
    recurring: List[RecurringDefinition] = field(default_factory=list)

    def fetch_accounts(self, household_id: int) -> List[AccountSnapshot]:
        return list(self.accounts)

    def fetch_entries(
        self,
        household_id: int,
        start_date: date,
        end_date: date,
        account_ids: Optional[Sequence[int]] = None,
    ) -> List[EntrySnapshot]:
        return [
            entry
            for entry in self.entries
            if start_date <= entry.date <= end_date
            and (not account_ids or entry.account_id in account_ids)
        ]

    def fetch_recurring_definitions(
        self, household_id: int
    ) -> List[RecurringDefinition]:
        return list(self.recurring)


@dataclass
class SqlProjectionSource:
    engine: Engine

    def fetch_accounts(self, household_id: int) -> List[AccountSnapshot]:
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(
                    accounts.c.id,
                    accounts.c.classification,
                    accounts.c.balance,
                    accounts.c.active,
                    accounts.c.currency,
                ).where(accounts.c.household_id == household_id)
            ).mappings().all()
        return [
            AccountSnapshot(
                id=row["id"],
                classification=row["classification"],
                balance=_coerce_decimal(row["balance"]),
                active=bool(row["active"]),
                currency=row["currency"],
            )
            for row in rows
        ]

    def fetch_entries(
        self,
        household_id: int,
        start_date: date,
        end_date: date,
        account_ids: Optional[Sequence[int]] = None,
    ) -> List[EntrySnapshot]:
        stmt = select(
            entries.c.id,
            entries.c.date,
            entries.c.classification,
            entries.c.amount,
            entries.c.account_id,
            entries.c.pending,
            entries.c.name,
        ).where(
            entries.c.household_id == household_id,
            entries.c.date >= start_date,
            entries.c.date <= end_date,
        )
        if account_ids:
            stmt = stmt.where(entries.c.account_id.in_(list(account_ids)))
        with self.engine.begin() as conn:
            rows = conn.execute(stmt.order_by(entries.c.date, entries.c.id)).mappings().all()
        return [
            EntrySnapshot(
                id=row["id"],
                date=row["date"],
                classification=row["classification"],
                amount=_coerce_decimal(row["amount"]),
                account_id=row["account_id"],
                pending=bool(row["pending"]),
                name=row["name"] or "",
            )
            for row in rows
        ]

    def fetch_recurring_definitions(
        self, household_id: int
    ) -> List[RecurringDefinition]:
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(recurring_transactions)
                .where(recurring_transactions.c.household_id == household_id)
                .order_by(recurring_transactions.c.id)
            ).mappings().all()
        return [
            RecurringDefinition(
                id=row["id"],
                name=row["name"],
                amount=_coerce_decimal(row["amount"]),
                expected_day_of_month=row["expected_day_of_month"],
                active=bool(row["active"]),
                paused=bool(row["paused"]),
                paused_until=row["paused_until"],
                manual=bool(row["manual"]),
                occurrence_count=row["occurrence_count"] or 0,
                confidence_score=_optional_decimal(row["confidence_score"]),
                next_expected_date=row["next_expected_date"],
                expected_amount_avg=_optional_decimal(row["expected_amount_avg"]),
                expected_amount_min=_optional_decimal(row["expected_amount_min"]),
                expected_amount_max=_optional_decimal(row["expected_amount_max"]),
                merchant_name=row["merchant_name"],
            )
            for row in rows
        ]


def _optional_decimal(value) -> Optional[Decimal]:
    if value is None:
        return None
    return _coerce_decimal(value)


def _coerce_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))
