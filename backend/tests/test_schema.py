"""
Bootstrap and schema tests.

Verifies:
- First-run seeding creates the admin, the main stock, default money boxes,
  settings and the seed history, and a second run creates nothing
- check_schema reports a complete schema
- The database refuses a second active main stock on its own
"""

import pytest
from sqlalchemy.exc import IntegrityError

from retailpos.models import MigrationRecord, MoneyBox, Permission, Setting, Stock, User
from retailpos.services import schema_service


class TestBootstrap:

    def test_first_run_seeds(self, db_session):
        summary = schema_service.bootstrap(admin_password="secret123")

        assert summary["admin_created"] is True
        assert summary["main_stock_created"] is True
        assert summary["money_boxes_created"] == ["daily", "safe", "bank"]
        assert summary["permissions_created"] > 0
        assert summary["settings_created"] > 0

        main = db_session.query(Stock).filter_by(is_main_stock=True).one()
        assert main.code == "MAIN"
        assert db_session.query(User).filter_by(role="admin").count() == 1
        assert db_session.query(MigrationRecord).count() == len(schema_service.SEED_STEPS)

    def test_second_run_is_a_no_op(self, db_session):
        schema_service.bootstrap(admin_password="secret123")
        counts = [db_session.query(m).count() for m in (User, Permission, Stock, MoneyBox, Setting, MigrationRecord)]

        summary = schema_service.bootstrap(admin_password="secret123")

        assert summary == {
            "admin_created": False,
            "permissions_created": 0,
            "main_stock_created": False,
            "money_boxes_created": [],
            "settings_created": 0,
        }
        assert [db_session.query(m).count() for m in (User, Permission, Stock, MoneyBox, Setting, MigrationRecord)] == counts

    def test_existing_main_stock_kept(self, db_session, main_stock):
        summary = schema_service.bootstrap()

        assert summary["main_stock_created"] is False
        assert summary["admin_created"] is False
        assert db_session.query(Stock).count() == 1

    def test_check_schema_reports_complete(self, db_session):
        result = schema_service.check_schema()

        assert result == {"ok": True, "missing_tables": [], "missing_columns": []}


class TestSingleMainStockIndex:

    def test_second_active_main_rejected_by_database(self, db_session, main_stock):
        db_session.add(Stock(name="Rogue", code="RG1", address="Mosul", capacity=0.0, is_main_stock=True))

        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

        assert db_session.query(Stock).filter_by(is_main_stock=True).count() == 1

    def test_inactive_main_does_not_count(self, db_session, main_stock):
        db_session.add(Stock(
            name="Old main", code="OLD", address="Najaf", capacity=0.0, is_main_stock=True, is_active=False,
        ))
        db_session.commit()

        assert db_session.query(Stock).filter_by(is_main_stock=True, is_active=True).count() == 1
