from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from lease_ops.api.dependencies import get_db, get_session_factory
from lease_ops.auth.jwt import get_current_user
from lease_ops.main import app
from lease_ops.models.models import OutboxEvent
from lease_ops.services import batch as batch_service


def _override_get_db(session):
    def _inner():
        try:
            yield session
        finally:
            pass

    return _inner


def _override_user(user):
    def _inner():
        return user

    return _inner


@pytest.fixture
def api(db_session, session_factory, monkeypatch):
    monkeypatch.setattr(batch_service.settings, "reconciliation_max_workers", 1)
    client = TestClient(app)
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    def login(user):
        app.dependency_overrides[get_current_user] = _override_user(user)
        return client

    try:
        yield login
    finally:
        app.dependency_overrides.clear()
        client.close()


@pytest.fixture
def leases(create_user, create_property, create_lease, add_charge, add_provision, add_signer, add_invoice):
    owner = create_user("owner@example.com", "OWNER")
    other_owner = create_user("other@example.com", "OWNER")
    mine = create_property(owner, address="14 rue Sainte-Catherine, Bordeaux")
    theirs = create_property(other_owner)
    own_lease = create_lease(mine)
    other_lease = create_lease(theirs)
    add_charge(mine, "100.00", "monthly")
    add_provision(own_lease, date(2024, 1, 1), "800.00")
    add_signer(own_lease)
    add_invoice(own_lease, date(2025, 3, 1), amount="950.00", period="2025-03")
    add_invoice(other_lease, date(2025, 3, 1))
    return {"owner": owner, "own_lease": own_lease, "other_lease": other_lease}


def test_owner_reconciles_own_lease(api, leases, db_session):
    client = api(leases["owner"])

    response = client.post(
        "/reconciliations/run",
        json={"scope": "lease", "year": 2024, "lease_id": leases["own_lease"].id},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["scope"] == "lease"
    assert body["errors"] == []
    assert len(body["results"]) == 1
    assert Decimal(body["results"][0]["total_charges"]) == Decimal("1200")
    assert Decimal(body["results"][0]["delta"]) == Decimal("400")
    assert db_session.query(OutboxEvent).filter(OutboxEvent.event_type == "Charge.Reconciled").count() == 1


def test_owner_cannot_reconcile_someone_elses_lease(api, leases):
    client = api(leases["owner"])

    response = client.post(
        "/reconciliations/run",
        json={"scope": "lease", "year": 2024, "lease_id": leases["other_lease"].id},
    )

    assert response.status_code == 403
    assert response.json()["error"] == "authorization_error"


def test_owner_cannot_run_portfolio_batch(api, leases):
    response = api(leases["owner"]).post("/reconciliations/run", json={"scope": "all", "year": 2024})

    assert response.status_code == 403


def test_admin_runs_portfolio_batch(api, leases, create_user):
    admin = create_user("admin@example.com", "ADMIN")

    response = api(admin).post("/reconciliations/run", json={"scope": "all", "year": 2024})

    assert response.status_code == 200
    body = response.json()
    assert sorted(result["lease_id"] for result in body["results"]) == sorted(
        [leases["own_lease"].id, leases["other_lease"].id]
    )

    listing = api(admin).get("/reconciliations", params={"year": 2024})
    assert listing.status_code == 200
    assert len(listing.json()) == 2


def test_run_request_is_validated(api, leases, create_user):
    client = api(create_user("admin@example.com", "ADMIN"))

    assert client.post("/reconciliations/run", json={"scope": "lease", "year": 2024}).status_code == 422
    assert client.post("/reconciliations/run", json={"scope": "all", "year": 1800}).status_code == 422
    assert client.post("/reconciliations/run", json={"scope": "everything", "year": 2024}).status_code == 422


def test_unknown_lease_returns_not_found(api, create_user):
    client = api(create_user("admin@example.com", "ADMIN"))

    response = client.post("/reconciliations/run", json={"scope": "lease", "year": 2024, "lease_id": 404})

    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


def test_owner_only_sees_own_reconciliations(api, leases):
    client = api(leases["owner"])
    client.post("/reconciliations/run", json={"scope": "lease", "year": 2024, "lease_id": leases["own_lease"].id})

    response = client.get("/reconciliations")

    assert response.status_code == 200
    assert [item["lease_id"] for item in response.json()] == [leases["own_lease"].id]
    assert client.get("/reconciliations", params={"lease_id": leases["other_lease"].id}).status_code == 403


def test_owner_lists_only_own_late_invoices(api, leases):
    client = api(leases["owner"])

    response = client.get("/delinquency/late-invoices", params={"now": "2025-03-20T10:00:00"})

    assert response.status_code == 200
    body = response.json()
    assert len(body) == 1
    assert body[0]["lease_id"] == leases["own_lease"].id
    assert body[0]["days_late"] == 19
    assert body[0]["reminder_level"] == "formelle"
    assert body[0]["tenant_name"] == "Jeanne Martin"


def test_tenant_cannot_list_late_invoices(api, create_user):
    tenant = create_user("tenant@example.com", "TENANT")

    response = api(tenant).get("/delinquency/late-invoices")

    assert response.status_code == 403


def test_reminder_preview(api, leases, db_session):
    client = api(leases["owner"])
    invoice_id = client.get("/delinquency/late-invoices", params={"now": "2025-03-20T10:00:00"}).json()[0]["invoice_id"]

    response = client.get(f"/delinquency/late-invoices/{invoice_id}/reminder", params={"now": "2025-03-20T10:00:00"})

    assert response.status_code == 200
    reminder = response.json()["reminder"]
    assert reminder["subject"] == "Relance : loyer impayé – 14 rue Sainte-Catherine, Bordeaux"
    assert "950,00 €" in reminder["body"]
    assert "mars 2025" in reminder["body"]

    not_late = client.get(f"/delinquency/late-invoices/{invoice_id}/reminder", params={"now": "2025-03-02T10:00:00"})
    assert not_late.status_code == 404


def test_dispatch_dry_run_sends_nothing(api, leases, create_user, tmp_path):
    admin = create_user("admin@example.com", "ADMIN")

    response = api(admin).post("/delinquency/reminders/dispatch", json={"now": "2025-03-20T10:00:00", "dry_run": True})

    assert response.status_code == 200
    assert {item["status"] for item in response.json()} == {"pending"}
    assert not (tmp_path / "emails").exists()


def test_dispatch_requires_admin(api, leases):
    response = api(leases["owner"]).post("/delinquency/reminders/dispatch", json={})

    assert response.status_code == 403


def test_process_outbox_endpoint(api, leases, create_user):
    admin = create_user("admin@example.com", "ADMIN")
    client = api(admin)
    client.post("/reconciliations/run", json={"scope": "lease", "year": 2024, "lease_id": leases["own_lease"].id})

    response = client.post("/events/outbox/process")

    assert response.status_code == 200
    assert response.json() == {"processed": 1, "failed": 0, "total": 1}


def test_owner_gets_forbidden_for_unknown_lease(api, leases):
    client = api(leases["owner"])

    run = client.post("/reconciliations/run", json={"scope": "lease", "year": 2024, "lease_id": 404})
    listing = client.get("/reconciliations", params={"lease_id": 404})

    assert run.status_code == 403
    assert listing.status_code == 403
