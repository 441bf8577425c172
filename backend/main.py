import logging
import os
from datetime import date, timedelta
from decimal import Decimal

from fastapi import FastAPI, HTTPException, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy import create_engine, select

from backend.balance_curve import compare_scenario
from backend.cash_flow_models import (
    Alert,
    BalancePoint,
    EventKind,
    ProjectedEvent,
    ProjectionRequest,
    ProjectionSummary,
    ScenarioComparison,
    ScenarioPoint,
)
from backend.cash_flow_projection import (
    DEFAULT_UPCOMING_LIMIT,
    CashFlowProjectionService,
    default_window,
    window_for_view,
)
from backend.cash_flow_store import SqlProjectionSource, households, metadata

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI()

frontend_origin = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

database_url = os.getenv("DATABASE_URL", "sqlite:///./cash_flow.db")
connect_args = {}
if database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(database_url, connect_args=connect_args)
projection_source = SqlProjectionSource(engine)


def get_low_balance_threshold() -> Decimal:
    raw = os.getenv("LOW_BALANCE_THRESHOLD", "500")
    try:
        threshold = Decimal(raw)
    except ArithmeticError:
        threshold = None
    if threshold is None or not threshold.is_finite():
        logger.warning("Ignoring invalid LOW_BALANCE_THRESHOLD %r", raw)
        return Decimal("500")
    return threshold


def get_projection_window_days() -> int:
    raw = os.getenv("PROJECTION_WINDOW_DAYS", "90")
    try:
        days = int(raw)
    except ValueError:
        days = 90
    return days if days >= 0 else 90


MAX_UPCOMING_DAYS = 3650
LOW_BALANCE_THRESHOLD = get_low_balance_threshold()
PROJECTION_WINDOW_DAYS = get_projection_window_days()


@app.on_event("startup")
def init_db() -> None:
    metadata.create_all(engine)


class ProjectedEventResponse(BaseModel):
    date: date
    kind: str
    amount: Decimal
    description: str
    confidence: Decimal
    origin: str
    origin_id: int | None = None
    recurring_transaction_id: int | None = None
    amount_min: Decimal | None = None
    amount_max: Decimal | None = None

    @classmethod
    def from_event(cls, event: ProjectedEvent) -> "ProjectedEventResponse":
        return cls(
            date=event.date,
            kind=event.kind.value,
            amount=event.amount,
            description=event.description,
            confidence=event.confidence,
            origin=event.origin.value,
            origin_id=event.origin_id,
            recurring_transaction_id=(
                event.recurring_ref.id if event.recurring_ref is not None else None
            ),
            amount_min=event.amount_min,
            amount_max=event.amount_max,
        )


class BalancePointResponse(BaseModel):
    date: date
    balance: Decimal
    confidence: Decimal
    net_change: Decimal
    event_count: int

    @classmethod
    def from_point(cls, point: BalancePoint) -> "BalancePointResponse":
        return cls(
            date=point.date,
            balance=point.balance,
            confidence=point.confidence,
            net_change=point.net_change,
            event_count=point.event_count,
        )


class ScenarioPointResponse(BaseModel):
    date: date
    balance: Decimal
    net_change: Decimal
    event_count: int

    @classmethod
    def from_point(cls, point: ScenarioPoint) -> "ScenarioPointResponse":
        return cls(
            date=point.date,
            balance=point.balance,
            net_change=point.net_change,
            event_count=point.event_count,
        )


class AlertResponse(BaseModel):
    kind: str
    date: date
    projected_balance: Decimal
    severity: str
    days_until: int
    threshold: Decimal | None = None

    @classmethod
    def from_alert(cls, alert: Alert) -> "AlertResponse":
        return cls(
            kind=alert.kind.value,
            date=alert.date,
            projected_balance=alert.projected_balance,
            severity=alert.severity.value,
            days_until=alert.days_until,
            threshold=alert.threshold,
        )


class ProjectionSummaryResponse(BaseModel):
    total_projected_income: Decimal
    total_projected_expenses: Decimal
    net_projected_cash_flow: Decimal
    projection_count: int
    starting_balance: Decimal
    ending_balance: Decimal
    start_date: date
    end_date: date

    @classmethod
    def from_summary(cls, summary: ProjectionSummary) -> "ProjectionSummaryResponse":
        return cls(
            total_projected_income=summary.total_projected_income,
            total_projected_expenses=summary.total_projected_expenses,
            net_projected_cash_flow=summary.net_projected_cash_flow,
            projection_count=summary.projection_count,
            starting_balance=summary.starting_balance,
            ending_balance=summary.ending_balance,
            start_date=summary.start_date,
            end_date=summary.end_date,
        )


class ProjectionResponse(BaseModel):
    projections: list[ProjectedEventResponse]
    balance_curve: list[BalancePointResponse]
    summary: ProjectionSummaryResponse
    alerts: list[AlertResponse]


class ScenarioComparisonResponse(BaseModel):
    original_ending_balance: Decimal
    scenario_ending_balance: Decimal
    difference: Decimal
    impact: str

    @classmethod
    def from_comparison(
        cls, comparison: ScenarioComparison
    ) -> "ScenarioComparisonResponse":
        return cls(
            original_ending_balance=comparison.original_ending_balance,
            scenario_ending_balance=comparison.scenario_ending_balance,
            difference=comparison.difference,
            impact=comparison.impact,
        )


class ScenarioResponse(BaseModel):
    original: list[ScenarioPointResponse]
    scenario: list[ScenarioPointResponse]
    comparison: ScenarioComparisonResponse | None = None


class UpcomingResponse(BaseModel):
    projections: list[ProjectedEventResponse]
    alerts: list[AlertResponse]


class ScenarioType:
    values = {"add_transaction", "remove_recurring"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Invalid scenario type.")
        return normalized


class ScenarioPayload(BaseModel):
    type: str
    amount: Decimal | None = None
    transaction_date: date | None = None
    kind: str | None = None
    description: str | None = None
    recurring_transaction_id: int | None = None

    @classmethod
    def validate_payload(cls, payload: "ScenarioPayload") -> "ScenarioPayload":
        payload.type = ScenarioType.validate(payload.type)
        payload.description = payload.description.strip() if payload.description else None
        if payload.type == "add_transaction":
            if payload.amount is None or payload.transaction_date is None:
                raise ValueError("Scenario transaction requires an amount and a date.")
            if payload.amount == 0:
                raise ValueError("Scenario amount must not be zero.")
            if payload.kind is None:
                payload.kind = (
                    EventKind.INCOME.value if payload.amount < 0 else EventKind.EXPENSE.value
                )
            else:
                payload.kind = EventKind.validate(payload.kind).value
        elif payload.recurring_transaction_id is None:
            raise ValueError("Removing a recurring transaction requires its id.")
        return payload


def get_household_id(x_household_id: str | None) -> int:
    if not x_household_id:
        raise HTTPException(status_code=401, detail="Missing household identity.")
    try:
        household_id = int(x_household_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid household identity.") from exc
    with engine.begin() as conn:
        result = conn.execute(select(households.c.id).where(households.c.id == household_id))
        if not result.first():
            raise HTTPException(status_code=404, detail="Household not found.")
    return household_id


def build_projection_service(
    household_id: int,
    start_date: date | None,
    end_date: date | None,
    account_ids: list[int] | None,
    view: str | None = None,
) -> CashFlowProjectionService:
    today = date.today()
    start_value = start_date or today
    try:
        if end_date is not None:
            end_value = end_date
        elif view:
            end_value = window_for_view(start_value, view)[1]
        else:
            end_value = default_window(start_value, PROJECTION_WINDOW_DAYS)[1]
    except OverflowError as exc:
        raise HTTPException(status_code=400, detail="Projection window is out of range.") from exc
    try:
        request = ProjectionRequest(
            household_id=household_id,
            start_date=start_value,
            end_date=end_value,
            account_ids=tuple(account_ids) if account_ids else None,
            today=today,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return CashFlowProjectionService(
        projection_source,
        request,
        low_balance_threshold=LOW_BALANCE_THRESHOLD,
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/cash-flow/projection", response_model=ProjectionResponse)
def cash_flow_projection(
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    view: str | None = Query(None),
    account_ids: list[int] | None = Query(None),
    x_household_id: str | None = Header(None, alias="x-household-id"),
) -> ProjectionResponse:
    household_id = get_household_id(x_household_id)
    service = build_projection_service(household_id, start_date, end_date, account_ids, view)
    projection = service.generate_projection()
    return ProjectionResponse(
        projections=[ProjectedEventResponse.from_event(event) for event in projection.projections],
        balance_curve=[BalancePointResponse.from_point(point) for point in projection.balance_curve],
        summary=ProjectionSummaryResponse.from_summary(projection.summary),
        alerts=[AlertResponse.from_alert(alert) for alert in projection.alerts],
    )


@app.get("/cash-flow/balance-curve", response_model=list[BalancePointResponse])
def cash_flow_balance_curve(
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    account_ids: list[int] | None = Query(None),
    x_household_id: str | None = Header(None, alias="x-household-id"),
) -> list[BalancePointResponse]:
    household_id = get_household_id(x_household_id)
    service = build_projection_service(household_id, start_date, end_date, account_ids)
    return [BalancePointResponse.from_point(point) for point in service.balance_curve()]


@app.get("/cash-flow/days/{day}", response_model=list[ProjectedEventResponse])
def cash_flow_day_details(
    day: date,
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    account_ids: list[int] | None = Query(None),
    x_household_id: str | None = Header(None, alias="x-household-id"),
) -> list[ProjectedEventResponse]:
    household_id = get_household_id(x_household_id)
    service = build_projection_service(household_id, start_date, end_date, account_ids)
    return [ProjectedEventResponse.from_event(event) for event in service.projections_for_date(day)]


@app.post("/cash-flow/scenario", response_model=ScenarioResponse)
def cash_flow_scenario(
    payload: ScenarioPayload,
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    account_ids: list[int] | None = Query(None),
    x_household_id: str | None = Header(None, alias="x-household-id"),
) -> ScenarioResponse:
    household_id = get_household_id(x_household_id)
    try:
        payload = ScenarioPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    service = build_projection_service(household_id, start_date, end_date, account_ids)
    original = service.baseline_scenario_curve()
    if payload.type == "add_transaction":
        scenario = service.scenario_with_transaction(
            payload.amount,
            payload.transaction_date,
            kind=payload.kind,
            description=payload.description or "Hypothetical transaction",
        )
    else:
        scenario = service.scenario_without_recurring(payload.recurring_transaction_id)

    comparison = compare_scenario(original, scenario)
    return ScenarioResponse(
        original=[ScenarioPointResponse.from_point(point) for point in original],
        scenario=[ScenarioPointResponse.from_point(point) for point in scenario],
        comparison=(
            ScenarioComparisonResponse.from_comparison(comparison)
            if comparison is not None
            else None
        ),
    )


@app.get("/cash-flow/upcoming", response_model=UpcomingResponse)
def cash_flow_upcoming(
    days: int = Query(7, ge=0, le=MAX_UPCOMING_DAYS),
    x_household_id: str | None = Header(None, alias="x-household-id"),
) -> UpcomingResponse:
    household_id = get_household_id(x_household_id)
    today = date.today()
    try:
        end_value = today + timedelta(days=days)
    except OverflowError as exc:
        raise HTTPException(status_code=400, detail="Projection window is out of range.") from exc
    service = build_projection_service(household_id, today, end_value, None)
    return UpcomingResponse(
        projections=[
            ProjectedEventResponse.from_event(event)
            for event in service.upcoming(DEFAULT_UPCOMING_LIMIT)
        ],
        alerts=[AlertResponse.from_alert(alert) for alert in service.low_balance_alerts()],
    )
