from pathlib import Path

from alembic import command
from alembic.config import Config
import lease_ops.config as app_config
from lease_ops.models.models import Reconciliation
import sqlalchemy as sa

ROOT = Path(__file__).resolve().parents[1]


def test_initial_migration_creates_schema(tmp_path, monkeypatch):
    db_path = tmp_path / "migrations.db"
    db_url = f"sqlite:///{db_path}"
    monkeypatch.setattr(app_config.settings, "database_url", db_url, raising=False)
    monkeypatch.chdir(ROOT)

    config = Config(str(ROOT / "lease_ops" / "alembic.ini"))
    config.set_main_option("script_location", str(ROOT / "lease_ops" / "migrations"))
    command.upgrade(config, "head")

    engine = sa.create_engine(db_url)
    try:
        inspector = sa.inspect(engine)
        tables = set(inspector.get_table_names())
        assert {"leases", "charges", "provisions", "invoices", "reconciliations", "outbox", "audit_logs"} <= tables
        constraints = {item["name"] for item in inspector.get_unique_constraints("reconciliations")}
        assert "uq_reconciliation_lease_year" in constraints

        with sa.orm.Session(engine) as session:
            session.query(Reconciliation).all()
    finally:
        engine.dispose()
