"""
Tests for transaction handling and the migration command line.
"""

import pytest
from alembic.util.exc import CommandError

import migrate
from backoffice.database.database import transaction
from backoffice.modules.outlets.models import Outlet


# ===== TRANSACTIONS =====

class TestTransaction:

    def test_isolation_refuses_pending_changes(self, db_session, outlet_a):
        db_session.query(Outlet).count()
        outlet_a.name = "Central Kitchen East"
        with pytest.raises(RuntimeError) as exc_info:
            with transaction(db_session, isolation_level="SERIALIZABLE"):
                pass
        assert str(exc_info.value) == (
            "Cannot start a SERIALIZABLE transaction while the session holds unsaved changes"
        )
        assert outlet_a in db_session.dirty

    def test_isolation_after_reads(self, db_session, outlet_a):
        db_session.query(Outlet).count()
        assert db_session.in_transaction()
        with transaction(db_session, isolation_level="SERIALIZABLE"):
            outlet_a.name = "Central Kitchen East"
        db_session.expire_all()
        assert db_session.get(Outlet, outlet_a.id).name == "Central Kitchen East"

    def test_error_rolls_back(self, db_session, outlet_a):
        with pytest.raises(ValueError):
            with transaction(db_session):
                outlet_a.name = "Renamed"
                db_session.flush()
                raise ValueError("boom")
        db_session.expire_all()
        assert db_session.get(Outlet, outlet_a.id).name == "Central Kitchen"


# ===== MIGRATIONS =====

@pytest.fixture
def alembic_calls(monkeypatch):
    calls = []
    for name in ("upgrade", "downgrade", "revision", "check", "stamp", "current", "history"):
        monkeypatch.setattr(
            migrate.command, name,
            lambda config, *args, _name=name, **kwargs: calls.append((_name, config, args, kwargs))
        )
    return calls


class TestMigrateCommand:

    def test_config_uses_settings_url(self):
        config = migrate.alembic_config()
        assert config.get_main_option("sqlalchemy.url") == "sqlite://"
        assert config.get_main_option("script_location") == str(migrate.PROJECT_ROOT / "alembic")

    def test_upgrade_defaults_to_head(self, alembic_calls):
        assert migrate.main(["upgrade"]) == 0
        name, _, args, kwargs = alembic_calls[0]
        assert (name, args, kwargs) == ("upgrade", ("head",), {"sql": False})

    def test_downgrade_steps(self, alembic_calls):
        assert migrate.main(["downgrade", "--steps", "2"]) == 0
        assert alembic_calls[0][2] == ("-2",)
        assert migrate.main(["downgrade", "base"]) == 0
        assert alembic_calls[1][2] == ("base",)

    def test_downgrade_rejects_zero_steps(self, alembic_calls):
        assert migrate.main(["downgrade", "--steps", "0"]) == 2
        assert alembic_calls == []

    def test_revision_autogenerates(self, alembic_calls):
        assert migrate.main(["revision", "-m", "add tabs"]) == 0
        assert alembic_calls[0][3] == {"message": "add tabs", "autogenerate": True}
        assert migrate.main(["revision", "-m", "data fix", "--empty"]) == 0
        assert alembic_calls[1][3]["autogenerate"] is False

    def test_database_url_override(self, alembic_calls):
        migrate.main(["--database-url", "sqlite:///other.db", "current"])
        assert alembic_calls[0][1].get_main_option("sqlalchemy.url") == "sqlite:///other.db"

    def test_alembic_failure_exits_nonzero(self, monkeypatch):
        def drifted(config):
            raise CommandError("New upgrade operations detected")

        monkeypatch.setattr(migrate.command, "check", drifted)
        assert migrate.main(["check"]) == 1

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            migrate.main([])
