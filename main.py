import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from sqlalchemy.orm import Session

from database import get_db
from errors import ConcurrentUpdateError, NotFoundError, ValidationError
from models import PaymentStatus, PaymentType
from periods import DateRange, calculate_date_range
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    CategoryIn,
    PaymentIn,
    PaymentOut,
    PaymentStatusIn,
    RecurringCreatedOut,
    RecurringUpdateIn,
    StatsQuery,
    TransactionIn,
    TransactionOut,
)
from services import (
    AccountService,
    CategoryService,
    PaymentService,
    TransactionService,
)
from stats import StatsService


scheduler_manager = SchedulerManager()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    scheduler_manager.start()
    yield
    scheduler_manager.stop()


app = FastAPI(title="Finance Tracker", lifespan=lifespan)


def range_from_query(query: StatsQuery) -> DateRange:
    try:
        return calculate_date_range(query.time_range, query.start_date, query.end_date)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/accounts")
def list_accounts(db: Session = Depends(get_db)):
    return [
        {"id": a.id, "name": a.name, "type": a.type}
        for a in AccountService(db).list_all()
    ]


@app.post("/accounts", status_code=201)
def create_account(data: AccountIn, db: Session = Depends(get_db)):
    account = AccountService(db).create(data)
    return {"id": account.id, "name": account.name, "type": account.type}


@app.get("/categories")
def list_categories(db: Session = Depends(get_db)):
    return [
        {"id": c.id, "name": c.name, "type": c.type, "icon": c.icon}
        for c in CategoryService(db).list_all()
    ]


@app.post("/categories", status_code=201)
def create_category(data: CategoryIn, db: Session = Depends(get_db)):
    category = CategoryService(db).create(data)
    return {
        "id": category.id,
        "name": category.name,
        "type": category.type,
        "icon": category.icon,
    }


@app.post("/transactions", status_code=201)
def create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    service = TransactionService(db)
    try:
        if data.is_recurring:
            template, occurrence = service.create_recurring(data)
            return RecurringCreatedOut(
                template=TransactionOut.model_validate(template),
                first_occurrence=TransactionOut.model_validate(occurrence),
            )
        return TransactionOut.model_validate(service.create(data))
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/transactions/recurring", response_model=list[TransactionOut])
def list_recurring(db: Session = Depends(get_db)):
    return TransactionService(db).list_recurring()


@app.get("/transactions/recurring/upcoming", response_model=list[TransactionOut])
def upcoming_recurring(limit: int = 5, db: Session = Depends(get_db)):
    return TransactionService(db).upcoming_recurring(limit=limit)


@app.get("/transactions/{template_id}/occurrences", response_model=list[TransactionOut])
def recurring_occurrences(template_id: int, db: Session = Depends(get_db)):
    try:
        return TransactionService(db).occurrences(template_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/transactions/{template_id}/toggle", response_model=TransactionOut)
def toggle_recurring(template_id: int, db: Session = Depends(get_db)):
    try:
        return TransactionService(db).toggle_recurring(template_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ConcurrentUpdateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.patch("/transactions/{template_id}/recurring", response_model=TransactionOut)
def update_recurring(
    template_id: int, data: RecurringUpdateIn, db: Session = Depends(get_db)
):
    try:
        return TransactionService(db).update_recurring(template_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ConcurrentUpdateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.get("/stats/transactions")
def transaction_stats(query: StatsQuery = Depends(), db: Session = Depends(get_db)):
    date_range = range_from_query(query)
    result = StatsService(db).compare(date_range, query.account_id)
    payload = asdict(result)
    payload["time_range"] = query.time_range
    return payload


@app.get("/stats/dashboard")
def dashboard_stats(account_id: Optional[int] = None, db: Session = Depends(get_db)):
    return asdict(StatsService(db).dashboard_summary(account_id=account_id))


@app.get("/stats/graph")
def graph_stats(account_id: Optional[int] = None, db: Session = Depends(get_db)):
    return [asdict(p) for p in StatsService(db).monthly_graph(account_id=account_id)]


@app.get("/stats/daily-spending")
def daily_spending(
    days: int = 7, account_id: Optional[int] = None, db: Session = Depends(get_db)
):
    if days < 1 or days > 366:
        raise HTTPException(status_code=400, detail="days must be between 1 and 366")
    points = StatsService(db).daily_spending(days=days, account_id=account_id)
    return [asdict(p) for p in points]


@app.get("/stats/monthly-spending")
def monthly_spending(
    year: int = Query(..., ge=1, le=9999),
    account_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    points = StatsService(db).monthly_spending(year, account_id=account_id)
    return [asdict(p) for p in points]


@app.get("/stats/category-distribution")
def category_distribution(
    account_id: Optional[int] = None, db: Session = Depends(get_db)
):
    shares = StatsService(db).category_distribution(account_id=account_id)
    return [asdict(s) for s in shares]


@app.get("/stats/calendar")
def calendar_stats(
    month: int,
    year: int = Query(..., ge=1, le=9999),
    account_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    if month < 1 or month > 12:
        raise HTTPException(status_code=400, detail="month must be between 1 and 12")
    return asdict(StatsService(db).calendar_month(year, month, account_id=account_id))


@app.get("/stats/payment")
def payment_stats(db: Session = Depends(get_db)):
    return asdict(StatsService(db).payment_stats())


@app.get("/payments", response_model=list[PaymentOut])
def list_payments(
    type: Optional[PaymentType] = None,
    status: Optional[PaymentStatus] = None,
    db: Session = Depends(get_db),
):
    return PaymentService(db).list_all(type=type, status=status)


@app.post("/payments", status_code=201, response_model=PaymentOut)
def create_payment(data: PaymentIn, db: Session = Depends(get_db)):
    return PaymentService(db).create(data)


@app.patch("/payments/{payment_id}/status", response_model=PaymentOut)
def update_payment_status(
    payment_id: int, data: PaymentStatusIn, db: Session = Depends(get_db)
):
    try:
        return PaymentService(db).update_status(payment_id, data.status)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/admin/recurring/run")
def run_recurring(db: Session = Depends(get_db)):
    count = TransactionService(db).catch_up_all()
    logging.info(f"manual recurring run: templates_posted={count}")
    return {"templates_posted": count}
