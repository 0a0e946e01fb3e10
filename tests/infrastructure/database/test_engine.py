"""Tests for database engine setup and schema creation."""

from pathlib import Path

import pytest
from sqlalchemy import inspect, text, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from schemalink.infrastructure.database.engine import create_db_engine, init_database
from schemalink.infrastructure.database.schema import datatype_edges
from tests.conftest import NOW, add_datatype, add_link


class TestCreateDbEngine:
    def test_wal_mode_enabled(self, tmp_path: Path) -> None:
        engine = create_db_engine(tmp_path / "test.db")
        with engine.connect() as conn:
            assert conn.execute(text("PRAGMA journal_mode")).scalar() == "wal"

    def test_foreign_keys_enabled(self, tmp_path: Path) -> None:
        engine = create_db_engine(tmp_path / "test.db")
        with engine.connect() as conn:
            assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1

    def test_transactions_take_write_lock(self, tmp_path: Path) -> None:
        db_path = tmp_path / "test.db"
        engine = create_db_engine(db_path)
        other = create_db_engine(db_path, busy_timeout=0.05)
        with engine.begin() as conn:
            conn.execute(text("CREATE TABLE t (x INTEGER)"))
        with engine.begin():
            with pytest.raises(Exception, match="locked"), other.begin():
                pass


class TestInitDatabase:
    def test_creates_db_file(self, tmp_path: Path) -> None:
        init_database(tmp_path)
        assert (tmp_path / ".schemalink" / "schemalink.db").exists()

    def test_creates_all_tables(self, db_engine: Engine) -> None:
        expected = {
            "datatypes",
            "datatype_edges",
            "datafields",
            "sort_fields",
            "layouts",
            "layout_slots",
            "slot_fields",
            "slot_links",
            "datarecords",
            "record_links",
            "cache_entries",
            "event_wal",
        }
        assert expected.issubset(set(inspect(db_engine).get_table_names()))

    def test_idempotent(self, tmp_path: Path) -> None:
        init_database(tmp_path)
        engine = init_database(tmp_path)
        assert "datatypes" in inspect(engine).get_table_names()


class TestActivePairIndex:
    def test_second_active_link_rejected(self, db_engine: Engine) -> None:
        a = add_datatype(db_engine, "A")
        b = add_datatype(db_engine, "B")
        add_link(db_engine, a.id, b.id)
        with pytest.raises(IntegrityError):
            add_link(db_engine, a.id, b.id)

    def test_soft_deleted_link_frees_pair(self, db_engine: Engine) -> None:
        a = add_datatype(db_engine, "A")
        b = add_datatype(db_engine, "B")
        edge_id = add_link(db_engine, a.id, b.id)
        with db_engine.begin() as conn:
            conn.execute(
                update(datatype_edges)
                .where(datatype_edges.c.id == edge_id)
                .values(deleted_at=NOW, deleted_by="seed")
            )
        assert add_link(db_engine, a.id, b.id) != edge_id
