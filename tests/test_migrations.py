from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import Column, create_engine, inspect

import stockflow.models  # noqa: F401
from stockflow.db.base import Base


def _alembic_config(url: str) -> Config:
    project_root = Path(__file__).resolve().parents[1]
    alembic_cfg = Config(str(project_root / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(project_root / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", url)
    return alembic_cfg


def test_baseline_migration_creates_every_model_table_and_index(tmp_path):
    url = f"sqlite:///{tmp_path / 'migrated.db'}"
    command.upgrade(_alembic_config(url), "head")

    engine = create_engine(url)
    try:
        inspector = inspect(engine)
        table_names = set(inspector.get_table_names())
        for table in Base.metadata.sorted_tables:
            assert table.name in table_names, table.name

            migrated = {index["name"] for index in inspector.get_indexes(table.name)}
            # Expression indexes (lower(sku), lower(username)) are not reflected by SQLite.
            declared = {
                index.name
                for index in table.indexes
                if all(isinstance(expression, Column) for expression in index.expressions)
            }
            assert declared <= migrated, (table.name, sorted(declared - migrated))

        stock_card_indexes = {index["name"] for index in inspector.get_indexes("stock_cards")}
        assert {
            "ix_stock_cards_item_id",
            "ix_stock_cards_reference",
            "ix_stock_cards_item_created_at",
        } <= stock_card_indexes
    finally:
        engine.dispose()
