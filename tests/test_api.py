import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
import main
from main import app


@pytest.fixture
def client():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    # Not used as a context manager so the lifespan never starts the scheduler.
    yield TestClient(app)
    app.dependency_overrides.clear()


def create_account(client: TestClient) -> int:
    response = client.post("/accounts", json={"name": "Checking"})
    assert response.status_code == 201
    return response.json()["id"]


def test_create_recurring_transaction_returns_template_and_first_occurrence(client):
    account_id = create_account(client)

    response = client.post(
        "/transactions",
        json={
            "account_id": account_id,
            "amount_cents": 499,
            "type": "EXPENSE",
            "description": "Coffee subscription",
            "occurred_at": "2024-01-01T00:00:00",
            "is_recurring": True,
            "interval": "DAILY",
        },
    )

    assert response.status_code == 201
    body = response.json()
    assert body["template"]["next_due_at"] == "2024-01-02T00:00:00"
    assert body["first_occurrence"]["parent_template_id"] == body["template"]["id"]

    listed = client.get("/transactions/recurring").json()
    assert [t["id"] for t in listed] == [body["template"]["id"]]


def test_recurring_transaction_without_interval_is_rejected(client):
    account_id = create_account(client)

    response = client.post(
        "/transactions",
        json={
            "account_id": account_id,
            "amount_cents": 499,
            "type": "EXPENSE",
            "is_recurring": True,
        },
    )

    assert response.status_code == 422


def test_unknown_account_is_not_found(client):
    response = client.post(
        "/transactions",
        json={"account_id": 42, "amount_cents": 100, "type": "INCOME"},
    )

    assert response.status_code == 404


@pytest.mark.parametrize(
    "params",
    [
        {"time_range": "custom", "start_date": "2024-03-01", "end_date": "2024-02-01"},
        {"time_range": "custom", "end_date": "2024-02-01"},
        {"time_range": "custom", "start_date": "yesterday", "end_date": "2024-02-01"},
    ],
)
def test_invalid_custom_range_is_a_bad_request(client, params):
    response = client.get("/stats/transactions", params=params)

    assert response.status_code == 400


def test_transaction_stats_reports_both_periods(client):
    account_id = create_account(client)
    client.post(
        "/transactions",
        json={
            "account_id": account_id,
            "amount_cents": 10_000,
            "type": "INCOME",
            "occurred_at": "2024-01-10T12:00:00",
        },
    )

    response = client.get(
        "/stats/transactions",
        params={
            "time_range": "custom",
            "start_date": "2024-01-01",
            "end_date": "2024-01-31",
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["time_range"] == "custom"
    assert body["current"]["total_income"] == 10_000
    assert body["comparisons"]["total_income"] == {
        "change": 100.0,
        "direction": "increase",
    }
    assert body["periods"]["previous"]["end"] == "2023-12-31T23:59:59.999999"
    assert body["periods"]["previous"]["start"] == "2023-12-01T00:00:00"


def test_toggle_unknown_template_is_not_found(client):
    response = client.post("/transactions/999/toggle")

    assert response.status_code == 404


def test_calendar_rejects_invalid_month(client):
    response = client.get("/stats/calendar", params={"year": 2024, "month": 13})

    assert response.status_code == 400


@pytest.mark.parametrize("year", [0, 10_000])
def test_out_of_range_year_is_rejected(client, year):
    assert client.get("/stats/monthly-spending", params={"year": year}).status_code == 422
    assert (
        client.get("/stats/calendar", params={"year": year, "month": 1}).status_code
        == 422
    )


def test_payment_stats_endpoint(client):
    created = client.post(
        "/payments",
        json={"amount_cents": 4_000, "person_name": "Ana", "type": "LENT"},
    )
    assert created.status_code == 201
    client.post(
        "/payments",
        json={"amount_cents": 1_500, "person_name": "Ben", "type": "BORROWED"},
    )

    settled = client.patch(
        f"/payments/{created.json()['id']}/status", json={"status": "PAID"}
    )
    assert settled.json()["status"] == "PAID"
    reopened = client.patch(
        f"/payments/{created.json()['id']}/status", json={"status": "PENDING"}
    )
    assert reopened.status_code == 400

    body = client.get("/stats/payment").json()
    assert body == {
        "unpaid_lent": 0,
        "unpaid_borrowed": 1_500,
        "active_payments_count": 1,
        "net_balance": -1_500,
    }


def test_lifespan_starts_and_stops_the_scheduler(client, monkeypatch):
    calls = []
    monkeypatch.setattr(main.scheduler_manager, "start", lambda: calls.append("start"))
    monkeypatch.setattr(main.scheduler_manager, "stop", lambda: calls.append("stop"))

    with TestClient(app) as running:
        assert running.get("/accounts").status_code == 200
        assert calls == ["start"]

    assert calls == ["start", "stop"]
