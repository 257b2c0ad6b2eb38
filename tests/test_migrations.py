"""
Tests for the Alembic schema migration, run against a mocked ``op``.
"""

import importlib.util
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

MIGRATION = Path(__file__).resolve().parent.parent / "alembic" / "versions" / "001_initial_schema.py"


@pytest.fixture
def migration():
    spec = importlib.util.spec_from_file_location("migration_001", MIGRATION)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _index_calls(op):
    return {c.args[0]: c for c in op.create_index.call_args_list}


class TestInitialSchema:
    def test_creates_both_tables(self, migration):
        op = MagicMock()
        with patch.object(migration, "op", op):
            migration.upgrade()
        tables = [c.args[0] for c in op.create_table.call_args_list]
        assert tables == ["amenities", "properties"]

    def test_compound_indexes(self, migration):
        op = MagicMock()
        with patch.object(migration, "op", op):
            migration.upgrade()
        calls = _index_calls(op)
        assert calls["ix_amenities_category_type"].args[2] == ["category", "type"]
        assert calls["ix_amenities_county_category"].args[2] == ["county", "category"]
        assert calls["ix_amenities_verified_lifecycle"].args[2] == ["verified", "lifecycle"]

    def test_full_text_index_on_name_and_description(self, migration):
        op = MagicMock()
        with patch.object(migration, "op", op):
            migration.upgrade()
        text_index = _index_calls(op)["ix_amenities_text_search"]

        assert text_index.kwargs["postgresql_using"] == "gin"
        (expression,) = text_index.args[2]
        assert "to_tsvector" in str(expression)
        assert "name" in str(expression) and "description" in str(expression)

    def test_downgrade_drops_everything(self, migration):
        op = MagicMock()
        with patch.object(migration, "op", op):
            migration.downgrade()
        op.drop_index.assert_called_once_with("ix_amenities_text_search", table_name="amenities")
        assert [c.args[0] for c in op.drop_table.call_args_list] == ["properties", "amenities"]
