"""
End-to-end tests through the HTTP API.
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from splitledger.api.dependencies import get_cache
from splitledger.core.security import create_access_token
from splitledger.db.session import get_db
from splitledger.main import app


def create_dinner(client, auth_headers, group, payer, amount="100.00"):
    response = client.post(
        f"/api/groups/{group.id}/expenses",
        json={"amount": amount, "description": "Dinner", "category": "Food"},
        headers=auth_headers(payer),
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client):
    assert client.get("/").json() == {"message": "SplitLedger API is running"}
    assert client.get("/health").json() == {"status": "healthy"}


def test_requires_bearer_token(client):
    assert client.get("/api/debts").status_code == 401
    response = client.get("/api/debts", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_current_user(client, users, auth_headers):
    response = client.get("/api/users/me", headers=auth_headers(users["alice"]))
    assert response.status_code == 200
    assert response.json()["full_name"] == "Alice Tester"


def test_split_and_settle_end_to_end(client, users, group, auth_headers):
    """$100.00 among three: bob pays back his 33.33 and the pair nets to zero."""
    alice, bob, carol = users["alice"], users["bob"], users["carol"]

    expense = create_dinner(client, auth_headers, group, alice)
    shares = {p["user_id"]: p["amount_owed"] for p in expense["participants"]}
    assert expense["amount"] == "100.00"
    assert expense["category"] == "Food"
    assert shares == {alice.id: "0.00", bob.id: "33.33", carol.id: "33.33"}

    debts = client.get("/api/debts", headers=auth_headers(bob)).json()
    assert debts["summary"]["total_user_owes"] == "33.33"
    assert debts["urgent_debts"][0]["payer_id"] == alice.id

    response = client.post(
        f"/api/settlements/groups/{group.id}/users/{alice.id}",
        json={"amount": "33.33", "settlement_method": "digital_wallet"},
        headers=auth_headers(bob),
    )
    assert response.status_code == 201, response.text
    body = response.json()
    assert body["settlement"]["status"] == "pending"
    assert body["settlement"]["amount"] == "33.33"
    assert body["summary"]["remaining_debt"] == "0.00"
    assert body["summary"]["is_fully_settled"] is True
    assert body["settled_expenses"][0]["expense_id"] == expense["id"]
    settlement_id = body["settlement"]["id"]

    response = client.post(
        f"/api/settlements/{settlement_id}/confirm",
        json={"confirm": True},
        headers=auth_headers(alice),
    )
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "confirmed"

    detailed = client.get(f"/api/debts/detailed/{group.id}", headers=auth_headers(alice)).json()
    assert f"{bob.id}_{group.id}" not in detailed["net_balances"]
    assert detailed["net_balances"][f"{carol.id}_{group.id}"]["net_amount"] == "33.33"

    # The cached summary from before the settlement was invalidated.
    debts = client.get("/api/debts", headers=auth_headers(bob)).json()
    assert debts["summary"]["total_user_owes"] == "0.00"

    history = client.get("/api/settlements/history?status=confirmed", headers=auth_headers(bob)).json()
    assert [s["id"] for s in history["settlements"]] == [settlement_id]
    assert history["settlements"][0]["method"] == "digital_wallet"


def test_settlement_errors_map_to_status_codes(client, users, group, auth_headers):
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    create_dinner(client, auth_headers, group, alice, amount="30.00")
    url = f"/api/settlements/groups/{group.id}/users/{alice.id}"

    overpay = client.post(url, json={"amount": "10.01"}, headers=auth_headers(bob))
    assert overpay.status_code == 400
    assert "cannot exceed total debt" in overpay.json()["error"]

    settlement_id = client.post(url, json={"amount": "10.00"}, headers=auth_headers(bob)).json()["settlement"]["id"]
    confirm_url = f"/api/settlements/{settlement_id}/confirm"

    assert client.post(confirm_url, json={"confirm": True}, headers=auth_headers(carol)).status_code == 403
    assert client.get(f"/api/settlements/{settlement_id}", headers=auth_headers(carol)).status_code == 404

    disputed = client.post(
        confirm_url, json={"confirm": False, "dispute_reason": "Wrong amount"}, headers=auth_headers(alice)
    )
    assert disputed.json()["status"] == "disputed"
    assert client.post(confirm_url, json={"confirm": True}, headers=auth_headers(alice)).status_code == 409

    nothing_owed = client.post(
        f"/api/settlements/groups/{group.id}/users/{carol.id}", json={"amount": "1.00"}, headers=auth_headers(bob)
    )
    assert nothing_owed.status_code == 404


def test_amount_with_too_many_decimals_is_rejected(client, users, group, auth_headers):
    response = client.post(
        f"/api/groups/{group.id}/expenses",
        json={"amount": "10.005", "description": "Odd"},
        headers=auth_headers(users["alice"]),
    )
    assert response.status_code == 422


def test_non_member_cannot_list_group_expenses(client, users, group, auth_headers):
    response = client.get(f"/api/groups/{group.id}/expenses", headers=auth_headers(users["dave"]))
    assert response.status_code == 403


def test_group_expense_list_and_edit_rules(client, users, group, auth_headers):
    alice = users["alice"]
    expense = create_dinner(client, auth_headers, group, alice, amount="12.00")

    listing = client.get(f"/api/groups/{group.id}/expenses?is_settled=false", headers=auth_headers(alice)).json()
    assert listing["pagination"]["total_items"] == 1
    assert listing["expenses"][0]["split_type"] == "equal"

    response = client.patch(f"/api/expenses/{expense['id']}", json={"amount": "15.00"}, headers=auth_headers(alice))
    assert response.status_code == 400

    assert client.delete(f"/api/expenses/{expense['id']}", headers=auth_headers(users["bob"])).status_code == 403
    assert client.delete(f"/api/expenses/{expense['id']}", headers=auth_headers(alice)).status_code == 204
    listing = client.get(f"/api/groups/{group.id}/expenses", headers=auth_headers(alice)).json()
    assert listing["expenses"] == []


def test_personal_expenses(client, users, auth_headers):
    dave = users["dave"]
    created = client.post(
        "/api/expenses/personal",
        json={"amount": "4.50", "description": "Coffee", "payment_method": "credit_card"},
        headers=auth_headers(dave),
    )
    assert created.status_code == 201
    assert created.json()["scope"] == "personal"
    assert created.json()["is_settled"] is True

    listing = client.get("/api/expenses/personal", headers=auth_headers(dave)).json()
    assert [e["amount"] for e in listing["expenses"]] == ["4.50"]

    expense_id = created.json()["id"]
    updated = client.patch(f"/api/expenses/{expense_id}", json={"amount": "5.25"}, headers=auth_headers(dave))
    assert updated.json()["amount"] == "5.25"

    listing = client.get("/api/expenses/personal", headers=auth_headers(dave)).json()
    assert [e["amount"] for e in listing["expenses"]] == ["5.25"]

    assert client.get(f"/api/expenses/{expense_id}", headers=auth_headers(users["alice"])).status_code == 403


@pytest.fixture
def offline_client(tmp_path, cache):
    """A client whose database file lives in a directory that does not exist."""
    engine = create_engine(f"sqlite:///{tmp_path / 'missing' / 'ledger.db'}")
    session = sessionmaker(bind=engine)()

    def override_get_db():
        yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: cache
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    session.close()
    engine.dispose()


def test_database_outage_returns_503(offline_client):
    headers = {"Authorization": f"Bearer {create_access_token({'user_id': 1})}"}

    response = offline_client.get("/api/debts", headers=headers)
    assert response.status_code == 503
    assert response.json() == {"error": "Ledger temporarily unavailable"}

    response = offline_client.post(
        "/api/settlements/groups/1/users/2",
        json={"amount": "10.00"},
        headers=headers,
    )
    assert response.status_code == 503
