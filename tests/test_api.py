from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from dentlink.api.deps import get_session_factory
from dentlink.main import app
from dentlink.utils.jwt import create_access_token


@pytest.fixture
def client(session_factory, users):
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield TestClient(app)
    app.dependency_overrides.clear()


def _auth(user_id, role):
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


def test_requires_token(client):
    r = client.get("/api/cases")
    assert r.status_code == 401
    assert r.json()["ok"] is False

    r = client.get("/api/cases", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_case_to_payment_over_http(client, users):
    patient = _auth(users.patient, "patient")
    admin = _auth(users.admin, "admin")
    doc_a = _auth(users.doctor_a, "doctor")
    doc_b = _auth(users.doctor_b, "doctor")

    r = client.post("/api/cases", json={"title": "Broken crown", "affected_teeth": ["11"]}, headers=patient)
    assert r.status_code == 201, r.text
    case = r.json()["data"]
    assert case["status"] == "pending_review"
    case_id = case["id"]

    r = client.post(f"/api/cases/{case_id}/assign", json={"doctor_ids": [users.doctor_a, users.doctor_b]},
                    headers=patient)
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "forbidden"

    r = client.post(f"/api/cases/{case_id}/assign", json={"doctor_ids": [users.doctor_a, users.doctor_b]},
                    headers=admin)
    assert r.status_code == 200, r.text
    assert r.json()["data"]["assigned_doctor_ids"] == sorted([users.doctor_a, users.doctor_b])

    r = client.post(f"/api/cases/{case_id}/proposals", json={"cost": "5000", "details": "Crown"}, headers=doc_a)
    assert r.status_code == 201, r.text
    pa = r.json()["data"]["id"]
    r = client.post(f"/api/cases/{case_id}/proposals", json={"cost": "4500", "details": "Crown"}, headers=doc_b)
    pb = r.json()["data"]["id"]

    r = client.get(f"/api/cases/{case_id}/proposals", headers=doc_a)
    assert r.json()["meta"]["count"] == 1
    assert r.json()["data"][0]["id"] == pa

    r = client.get("/api/cases", headers=patient)
    assert [c["id"] for c in r.json()["data"]] == [case_id]
    assert r.json()["meta"] == {"count": 1, "limit": 100}

    r = client.get(f"/api/cases/{case_id}/comparison", headers=patient)
    rows = r.json()["data"]["rows"]
    assert [row["proposal"]["id"] for row in rows] == [pb, pa]
    assert rows[0]["is_best_price"] is True

    r = client.post("/api/wallet/deposit", json={"amount": "5000", "method": "bkash"}, headers=patient)
    assert r.status_code == 201, r.text
    assert Decimal(r.json()["data"]["available_balance"]) == Decimal("5000")

    r = client.post(f"/api/cases/{case_id}/select", json={"proposal_id": pb, "payment_method": "wallet"},
                    headers=patient)
    assert r.status_code == 200, r.text
    body = r.json()["data"]
    assert body["case"]["status"] == "in_progress"
    assert body["case"]["payment_status"] == "paid"
    assert body["proposal"]["status"] == "accepted"

    r = client.delete(f"/api/proposals/{pb}", headers=admin)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "invalid_state"

    r = client.get(f"/api/finance/doctors/{users.doctor_b}/snapshot", headers=doc_b)
    snap = r.json()["data"]
    assert Decimal(snap["grossRevenue"]) == Decimal("4500")
    assert Decimal(snap["commission"]) == Decimal("450")
    assert Decimal(snap["pendingBalance"]) == Decimal("4050")

    r = client.get(f"/api/finance/doctors/{users.doctor_b}/snapshot", headers=doc_a)
    assert r.status_code == 403

    r = client.get("/api/wallet/summary", headers=patient)
    assert Decimal(r.json()["data"]["available_balance"]) == Decimal("500")

    r = client.get(f"/api/cases/{case_id}/invoice", headers=patient)
    inv = r.json()["data"]
    assert Decimal(inv["cost"]) == Decimal("4500")
    assert Decimal(inv["commission_amount"]) == Decimal("450")
    assert inv["payment_method"] == "wallet"

    r = client.get(f"/api/cases/{case_id}/channel", headers=doc_b)
    assert r.status_code == 200
    r = client.get(f"/api/cases/{case_id}/channel", headers=doc_a)
    assert r.status_code == 403


def test_error_envelopes(client, users):
    admin = _auth(users.admin, "admin")
    patient = _auth(users.patient, "patient")

    r = client.get("/api/cases/424242", headers=admin)
    assert r.status_code == 404
    assert r.json() == {"ok": False, "error": {"msg": "Case not found", "code": "not_found", "details": None}}

    r = client.post(f"/api/finance/doctors/{users.doctor_a}/payouts", json={"amount": "10"}, headers=admin)
    assert r.status_code == 422
    err = r.json()["error"]
    assert err["code"] == "insufficient_funds"
    assert err["details"]["requested"] == "10.00"

    r = client.post("/api/wallet/deposit", json={"amount": "-5"}, headers=patient)
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "request_validation"


def test_settings_admin_only(client, users):
    admin = _auth(users.admin, "admin")
    doctor = _auth(users.doctor_a, "doctor")

    r = client.get("/api/settings", headers=doctor)
    assert r.json()["data"]["commission_type"] == "percentage"

    r = client.put("/api/settings", json={"commission_type": "fixed", "commission_rate": "150"}, headers=doctor)
    assert r.status_code == 403

    r = client.put("/api/settings", json={"commission_rate": "120"}, headers=admin)
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "invalid_config"

    r = client.put("/api/settings", json={"commission_type": "fixed", "commission_rate": "150"}, headers=admin)
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["commission_type"] == "fixed"
    assert Decimal(data["commission_rate"]) == Decimal("150")
