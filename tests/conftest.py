import sys
from collections.abc import Callable, Generator
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lease_ops.config import Base  # noqa: E402
import lease_ops.config as app_config  # noqa: E402
import lease_ops.main as app_main  # noqa: E402
# Import the full models module so all tables (including audit_logs) register with Base metadata.
from lease_ops.models import models as _all_models  # noqa: E402,F401
from lease_ops.models.models import (  # noqa: E402
    Charge,
    Invoice,
    Lease,
    LeaseSigner,
    Profile,
    Property,
    Provision,
    Role,
    User,
)


@pytest.fixture(scope="session", autouse=True)
def _configure_global_test_db(tmp_path_factory):
    """Configure the app-wide SessionLocal/engine so TestClient uses a DB with all tables."""
    db_dir = tmp_path_factory.mktemp("globaldb")
    db_path = db_dir / "app.db"
    engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    app_config.SessionLocal = SessionLocal
    app_config.engine = engine
    app_main.SessionLocal = SessionLocal
    app_main.engine = engine
    yield
    engine.dispose()


@pytest.fixture(autouse=True)
def _local_email_outbox(tmp_path, monkeypatch):
    monkeypatch.setattr(app_config.settings, "email_backend", "local")
    monkeypatch.setattr(app_config.settings, "email_output_dir", str(tmp_path / "emails"))


@pytest.fixture
def session_factory(tmp_path) -> Generator[sessionmaker, None, None]:
    """A sessionmaker bound to a fresh SQLite file, shareable across threads."""
    db_path = tmp_path / "test.db"
    engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    try:
        yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """Provide a fresh SQLite database for each test."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def create_role(db_session: Session) -> Callable[[str], Role]:
    def _create(name: str) -> Role:
        existing = db_session.query(Role).filter(Role.name == name).first()
        if existing:
            return existing
        role = Role(name=name)
        db_session.add(role)
        db_session.commit()
        return role

    return _create


@pytest.fixture
def create_user(db_session: Session, create_role: Callable[[str], Role]) -> Callable[[str, Optional[str]], User]:
    def _create(email: str = "user@example.com", role_name: str = "ADMIN") -> User:
        role = create_role(role_name)
        user = User(email=email, role_id=role.id)
        user.primary_role = role
        user.roles.append(role)
        db_session.add(user)
        db_session.commit()
        return user

    return _create


@pytest.fixture
def create_property(db_session: Session) -> Callable[..., Property]:
    counter = {"value": 0}

    def _create(owner: Optional[User] = None, address: Optional[str] = None) -> Property:
        counter["value"] += 1
        prop = Property(
            owner_id=owner.id if owner else None,
            address=address or f"{counter['value']} rue de la Paix, 75002 Paris",
        )
        db_session.add(prop)
        db_session.commit()
        return prop

    return _create


@pytest.fixture
def create_lease(db_session: Session) -> Callable[..., Lease]:
    def _create(prop: Optional[Property] = None, status: str = "active", lease_type: str = "nu") -> Lease:
        lease = Lease(property_id=prop.id if prop else None, status=status, lease_type=lease_type)
        db_session.add(lease)
        db_session.commit()
        return lease

    return _create


@pytest.fixture
def add_signer(db_session: Session) -> Callable[..., LeaseSigner]:
    def _create(
        lease: Lease,
        first_name: Optional[str] = "Jeanne",
        last_name: Optional[str] = "Martin",
        email: Optional[str] = "jeanne.martin@example.com",
        role: str = "locataire_principal",
    ) -> LeaseSigner:
        profile = Profile(first_name=first_name, last_name=last_name, email=email)
        db_session.add(profile)
        db_session.flush()
        signer = LeaseSigner(lease_id=lease.id, profile_id=profile.id, role=role)
        db_session.add(signer)
        db_session.commit()
        return signer

    return _create


@pytest.fixture
def add_charge(db_session: Session) -> Callable[..., Charge]:
    def _create(prop: Property, amount: str, periodicity: str = "monthly", is_rebillable: bool = True) -> Charge:
        charge = Charge(
            property_id=prop.id,
            label="Charges de copropriété",
            amount=Decimal(amount),
            periodicity=periodicity,
            is_rebillable=is_rebillable,
        )
        db_session.add(charge)
        db_session.commit()
        return charge

    return _create


@pytest.fixture
def add_provision(db_session: Session) -> Callable[..., Provision]:
    def _create(lease: Lease, month: date, amount: str) -> Provision:
        provision = Provision(lease_id=lease.id, month=month, amount=Decimal(amount))
        db_session.add(provision)
        db_session.commit()
        return provision

    return _create


@pytest.fixture
def add_invoice(db_session: Session) -> Callable[..., Invoice]:
    def _create(
        lease: Lease,
        due_date: date,
        amount: str = "850.00",
        status: str = "sent",
        period: Optional[str] = None,
    ) -> Invoice:
        invoice = Invoice(lease_id=lease.id, due_date=due_date, amount=Decimal(amount), status=status, period=period)
        db_session.add(invoice)
        db_session.commit()
        return invoice

    return _create
