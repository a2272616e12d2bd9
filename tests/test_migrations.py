"""Tests for the Alembic environment."""

import io
from pathlib import Path

from alembic import command
from alembic.config import Config

ROOT = Path(__file__).resolve().parents[1]


def test_offline_upgrade_renders_schema(monkeypatch):
    monkeypatch.setenv("POSTGRES_DSN", "postgresql+psycopg://orderpay@db/orderpay")
    out = io.StringIO()
    cfg = Config(str(ROOT / "alembic.ini"), output_buffer=out)
    cfg.set_main_option("script_location", str(ROOT / "alembic"))

    command.upgrade(cfg, "head", sql=True)

    sql = out.getvalue()
    assert "CREATE TABLE alembic_version_orderpay" in sql
    for table in ("products", "orders", "order_items", "payments"):
        assert f"CREATE TABLE {table}" in sql
    assert "ck_products_stock_non_negative" in sql
    assert "INSERT INTO alembic_version_orderpay (version_num) VALUES ('20261019120000')" in sql
