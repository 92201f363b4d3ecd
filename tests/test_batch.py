import threading
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from lease_ops.core.errors import AuthorizationError, NotFoundError, StorageError, ValidationError
from lease_ops.models.models import AuditLog, Reconciliation
from lease_ops.services.batch import run_batch
from lease_ops.services.store import LeaseStore


@pytest.fixture
def portfolio(db_session, create_user, create_property, create_lease, add_charge, add_provision):
    owner = create_user("owner@example.com", "OWNER")
    first_property = create_property(owner)
    second_property = create_property(owner)
    first = create_lease(first_property)
    orphan = create_lease(None)
    second = create_lease(second_property)
    create_lease(first_property, status="terminated")
    add_charge(first_property, "100.00", "monthly")
    add_charge(second_property, "600.00", "yearly")
    add_provision(first, date(2024, 3, 1), "800.00")
    add_provision(second, date(2024, 3, 1), "600.00")
    return {"owner": owner, "first": first, "orphan": orphan, "second": second}


def test_all_scope_collects_failures_and_continues(db_session, create_user, portfolio):
    admin = create_user("admin@example.com", "ADMIN")

    result = run_batch(LeaseStore(db_session), "all", 2024, user=admin)

    assert [record.lease_id for record in result.results] == [portfolio["first"].id, portfolio["second"].id]
    assert [record.delta for record in result.results] == [Decimal("400.00"), Decimal("0.00")]
    assert len(result.errors) == 1
    assert result.errors[0].lease_id == portfolio["orphan"].id
    assert result.errors[0].error == "not_found"
    assert result.cancelled is False
    assert db_session.query(Reconciliation).count() == 2


def test_all_scope_runs_in_parallel_with_session_factory(session_factory, db_session, create_user, portfolio):
    admin = create_user("admin@example.com", "ADMIN")

    result = run_batch(
        LeaseStore(db_session),
        "all",
        2024,
        user=admin,
        session_factory=session_factory,
        max_workers=2,
    )

    assert [record.lease_id for record in result.results] == [portfolio["first"].id, portfolio["second"].id]
    assert [error.lease_id for error in result.errors] == [portfolio["orphan"].id]


def test_all_scope_records_audit_entry(db_session, create_user, portfolio):
    admin = create_user("admin@example.com", "ADMIN")

    run_batch(LeaseStore(db_session), "all", 2024, user=admin)

    entry = db_session.query(AuditLog).filter(AuditLog.action == "reconciliation.batch.run").one()
    assert entry.actor_user_id == admin.id
    assert entry.target_entity_id == "all"


def test_all_scope_requires_admin(db_session, portfolio):
    with pytest.raises(AuthorizationError):
        run_batch(LeaseStore(db_session), "all", 2024, user=portfolio["owner"])
    assert db_session.query(Reconciliation).count() == 0


def test_scheduled_run_skips_authorization(db_session, portfolio):
    result = run_batch(LeaseStore(db_session), "all", 2024, user=None, authorize=False)

    assert len(result.results) == 2


def test_lease_scope_allows_owner_of_the_lease(db_session, portfolio):
    result = run_batch(LeaseStore(db_session), "lease", 2024, user=portfolio["owner"], lease_id=portfolio["first"].id)

    assert len(result.results) == 1
    assert result.results[0].delta == Decimal("400.00")
    assert result.errors == []


def test_lease_scope_rejects_other_owner(db_session, create_user, portfolio):
    stranger = create_user("stranger@example.com", "OWNER")

    with pytest.raises(AuthorizationError):
        run_batch(LeaseStore(db_session), "lease", 2024, user=stranger, lease_id=portfolio["first"].id)


def test_lease_scope_propagates_lookup_failures(db_session, create_user, portfolio):
    admin = create_user("admin@example.com", "ADMIN")

    with pytest.raises(NotFoundError):
        run_batch(LeaseStore(db_session), "lease", 2024, user=admin, lease_id=portfolio["orphan"].id)
    with pytest.raises(NotFoundError):
        run_batch(LeaseStore(db_session), "lease", 2024, user=admin, lease_id=9999)


@pytest.mark.parametrize(
    "scope, year, lease_id",
    [
        ("lease", 2024, None),
        ("portfolio", 2024, None),
        ("all", 1899, None),
        ("all", 10000, None),
    ],
)
def test_invalid_requests_are_rejected_before_any_work(db_session, create_user, portfolio, scope, year, lease_id):
    admin = create_user("admin@example.com", "ADMIN")

    with pytest.raises(ValidationError):
        run_batch(LeaseStore(db_session), scope, year, user=admin, lease_id=lease_id)
    assert db_session.query(Reconciliation).count() == 0


def test_cancelled_run_stops_before_remaining_leases(db_session, create_user, portfolio):
    admin = create_user("admin@example.com", "ADMIN")
    cancel = threading.Event()
    cancel.set()

    result = run_batch(LeaseStore(db_session), "all", 2024, user=admin, cancel_event=cancel)

    assert result.cancelled is True
    assert result.results == []
    assert db_session.query(Reconciliation).count() == 0


def _failing_provisions_for(failing_lease_id):
    original = LeaseStore.list_provisions

    def _list_provisions(self, lease_id, start, end):
        if lease_id == failing_lease_id:
            with self._guard("provision listing"):
                raise OperationalError("SELECT provisions", {}, Exception("disk I/O error"))
        return original(self, lease_id, start, end)

    return _list_provisions


def test_all_scope_records_storage_failure_and_continues(db_session, create_user, portfolio, monkeypatch):
    admin = create_user("admin@example.com", "ADMIN")
    monkeypatch.setattr(LeaseStore, "list_provisions", _failing_provisions_for(portfolio["first"].id))

    result = run_batch(LeaseStore(db_session), "all", 2024, user=admin)

    assert [record.lease_id for record in result.results] == [portfolio["second"].id]
    assert [(error.lease_id, error.error) for error in result.errors] == [
        (portfolio["first"].id, "storage_error"),
        (portfolio["orphan"].id, "not_found"),
    ]


def test_lease_scope_surfaces_storage_failure(db_session, create_user, portfolio, monkeypatch):
    admin = create_user("admin@example.com", "ADMIN")
    monkeypatch.setattr(LeaseStore, "list_provisions", _failing_provisions_for(portfolio["first"].id))

    with pytest.raises(StorageError):
        run_batch(LeaseStore(db_session), "lease", 2024, user=admin, lease_id=portfolio["first"].id)
    assert db_session.query(Reconciliation).count() == 0


def test_non_admin_cannot_tell_missing_from_foreign_leases(db_session, create_user, portfolio):
    stranger = create_user("stranger@example.com", "OWNER")

    with pytest.raises(AuthorizationError):
        run_batch(LeaseStore(db_session), "lease", 2024, user=stranger, lease_id=9999)
    with pytest.raises(AuthorizationError):
        run_batch(LeaseStore(db_session), "lease", 2024, user=stranger, lease_id=portfolio["first"].id)
