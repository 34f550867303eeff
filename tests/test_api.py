import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
from main import app


HEADERS = {"X-User-Id": "api-user"}


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.balance_cache.clear()
    yield TestClient(app)
    app.dependency_overrides.clear()


def post_txn(client, amount, type_id, day, category="General"):
    response = client.post(
        "/api/transactions",
        json={"amount": amount, "typeId": type_id, "category": category, "date": day},
        headers=HEADERS,
    )
    assert response.status_code == 201
    return response.json()


def test_health(client) -> None:
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_missing_user_header_is_unauthorized(client) -> None:
    assert client.get("/api/balance").status_code == 401


def test_balance_endpoints(client) -> None:
    post_txn(client, "1000", 2, "2024-01-01", "Salary")
    post_txn(client, "300", 1, "2024-01-05", "Rent")

    balance = client.get("/api/balance", headers=HEADERS).json()
    monthly = client.get("/api/balance/monthly/01/2024", headers=HEADERS).json()
    history = client.get("/api/balance/history", headers=HEADERS).json()
    months = client.get("/api/balance/months", headers=HEADERS).json()

    assert balance == {"balance": 700, "totalBalance": 700, "allocatedSavings": 0}
    assert monthly == {"balance": 700}
    assert history == [{"month": "2024/01", "balance": 700}]
    assert months == ["2024/01"]


def test_invalid_month_returns_field_errors(client) -> None:
    response = client.get("/api/balance/monthly/13/2024", headers=HEADERS)

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["fields"] == ["month"]


def test_calendar_endpoint(client) -> None:
    post_txn(client, "1000", 2, "2024-01-01")
    post_txn(client, "300", 1, "2024-01-05")

    response = client.get(
        "/api/cash-flow/calendar",
        params={"start_date": "2024-01-03", "end_date": "2024-01-10"},
        headers=HEADERS,
    )

    assert response.status_code == 200
    days = response.json()["dailyBalances"]
    assert len(days) == 8
    assert days["2024-01-04"]["balance"] == 1000
    assert days["2024-01-05"]["balance"] == 700


def test_calendar_requires_both_dates(client) -> None:
    response = client.get(
        "/api/cash-flow/calendar", params={"end_date": "2024-01-10"}, headers=HEADERS
    )

    assert response.status_code == 400
    assert response.json()["fields"] == ["start_date"]


def test_transaction_update_and_delete_refresh_balance(client) -> None:
    created = post_txn(client, "100", 2, "2024-01-01")
    assert client.get("/api/balance", headers=HEADERS).json()["balance"] == 100

    updated = client.put(
        f"/api/transactions/{created['id']}",
        json={"amount": "40", "typeId": 2, "category": "General", "date": "2024-01-01"},
        headers=HEADERS,
    )
    assert updated.status_code == 200
    assert client.get("/api/balance", headers=HEADERS).json()["balance"] == 40

    deleted = client.delete(f"/api/transactions/{created['id']}", headers=HEADERS)
    assert deleted.status_code == 200
    assert client.get("/api/transactions", headers=HEADERS).json() == []


def test_unknown_transaction_is_not_found(client) -> None:
    response = client.delete("/api/transactions/999", headers=HEADERS)

    assert response.status_code == 404


def test_scheduled_crud(client) -> None:
    created = client.post(
        "/api/cash-flow/scheduled",
        json={
            "description": "Insurance",
            "amount": "120",
            "category": "Bills",
            "typeId": 1,
            "scheduled_date": "2099-01-31",
            "recurrence_pattern": "monthly",
        },
        headers=HEADERS,
    )
    assert created.status_code == 201
    scheduled_id = created.json()["id"]

    listed = client.get("/api/cash-flow/scheduled", headers=HEADERS).json()
    assert [item["description"] for item in listed] == ["Insurance"]

    updated = client.put(
        f"/api/cash-flow/scheduled/{scheduled_id}",
        json={"recurrence_interval": 2},
        headers=HEADERS,
    )
    assert updated.json()["recurrence_interval"] == 2

    assert (
        client.delete(f"/api/cash-flow/scheduled/{scheduled_id}", headers=HEADERS).status_code
        == 200
    )
    assert (
        client.get(f"/api/cash-flow/scheduled/{scheduled_id}", headers=HEADERS).status_code
        == 404
    )


def test_scheduled_in_the_past_is_rejected(client) -> None:
    response = client.post(
        "/api/cash-flow/scheduled",
        json={
            "description": "Late",
            "amount": "10",
            "category": "Bills",
            "typeId": 1,
            "scheduled_date": "2001-01-01",
        },
        headers=HEADERS,
    )

    assert response.status_code == 400
    assert response.json()["fields"] == ["scheduled_date"]


def test_savings_goal_flow(client) -> None:
    post_txn(client, "500", 2, "2024-01-01")
    goal = client.post(
        "/api/savings-goals",
        json={"goal_name": "Bike", "target_amount": "400"},
        headers=HEADERS,
    ).json()

    allocated = client.post(
        f"/api/savings-goals/{goal['id']}/allocate",
        json={"amount": "100", "date": "2024-01-02"},
        headers=HEADERS,
    )
    assert allocated.status_code == 200

    balance = client.get("/api/balance", headers=HEADERS).json()
    assert balance["balance"] == 400
    assert balance["allocatedSavings"] == 100

    overdraw = client.post(
        f"/api/savings-goals/{goal['id']}/withdraw",
        json={"amount": "1000"},
        headers=HEADERS,
    )
    assert overdraw.status_code == 400

    overview = client.get("/api/balance/savings-overview", headers=HEADERS).json()
    assert overview["totalGoals"] == 1
    assert overview["progressPercentage"] == 25.0


def test_amounts_are_json_numbers_on_every_endpoint(client) -> None:
    post_txn(client, "1000.00", 2, "2024-01-01")

    balance = client.get("/api/balance", headers=HEADERS).json()
    calendar = client.get(
        "/api/cash-flow/calendar",
        params={"start_date": "2024-01-01", "end_date": "2024-01-01"},
        headers=HEADERS,
    ).json()

    day = calendar["dailyBalances"]["2024-01-01"]
    for value in (balance["balance"], balance["allocatedSavings"], day["balance"]):
        assert isinstance(value, (int, float))
    assert balance["balance"] == day["balance"] == 1000


def test_configure_logging_applies_level_after_handlers_exist() -> None:
    import logging

    import main

    root = logging.getLogger()
    previous = root.level
    handler = logging.NullHandler()
    root.addHandler(handler)
    try:
        main.configure_logging("WARNING")
        assert root.level == logging.WARNING
        main.configure_logging("debug")
        assert root.level == logging.DEBUG
    finally:
        root.removeHandler(handler)
        root.setLevel(previous)


def test_importing_scheduler_leaves_logging_alone(monkeypatch) -> None:
    import importlib
    import logging

    import scheduler

    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

    importlib.reload(scheduler)

    assert calls == []
