# tests/test_migrations.py
import os

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from config import get_settings

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


@pytest.fixture
def migration_db(tmp_path, monkeypatch):
     url = f"sqlite:///{tmp_path / 'migrations.db'}"
     monkeypatch.setenv("DATABASE_URL", url)
     get_settings.cache_clear()
     config = Config()
     config.set_main_option("script_location", os.path.join(ROOT, "alembic"))
     yield config, create_engine(url)
     get_settings.cache_clear()


def test_upgrade_creates_the_ledger_tables(migration_db):
     config, engine = migration_db

     command.upgrade(config, "head")

     inspector = inspect(engine)
     assert {"payment_link_configs", "payment_links", "transactions"} <= set(inspector.get_table_names())
     refund_index = [i for i in inspector.get_indexes("transactions") if i["name"] == "uq_transactions_refund_of_id"]
     assert refund_index and refund_index[0]["unique"]
     engine.dispose()


def test_downgrade_removes_everything(migration_db):
     config, engine = migration_db

     command.upgrade(config, "head")
     command.downgrade(config, "base")

     assert set(inspect(engine).get_table_names()) == {"alembic_version"}
     engine.dispose()
