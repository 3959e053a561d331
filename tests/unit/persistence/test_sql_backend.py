"""Unit tests for SqlLedgerStore on in-memory SQLite."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, func, select, text
from sqlalchemy.pool import StaticPool

from efdloader.core.exceptions import DestinationWriteError
from efdloader.models.records import Destination
from efdloader.persistence.sql_backend import SqlLedgerStore
from efdloader.persistence.sql_schema import DESTINATION_TABLES, branches, metadata


def _engine():
    return create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture
def store():
    return SqlLedgerStore(engine=_engine(), create_schema=True)


def _movement(description: str = "NF-e 1", amount: str = "1500.00") -> dict:
    return {
        "branch_id": "br-1",
        "period": date(2024, 1, 1),
        "direction": "inbound",
        "counterparty_code": "8888888888",
        "description": description,
        "amount": Decimal(amount),
        "pis": Decimal("0"),
        "cofins": Decimal("0"),
        "icms": Decimal("0"),
        "ipi": Decimal("0"),
    }


def _count(store: SqlLedgerStore, destination: Destination) -> int:
    with store.engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(DESTINATION_TABLES[destination])).scalar_one()


class TestBranches:
    def test_ensure_creates_once(self, store):
        branch_id, created = store.ensure_branch("ent-1", "12345678000271", "FILIAL", "001")
        again, created_again = store.ensure_branch("ent-1", "12345678000271", "FILIAL")
        assert created and not created_again
        assert again == branch_id

    def test_ensure_updates_establishment_code(self, store):
        branch_id, _ = store.ensure_branch("ent-1", "12345678000271", "FILIAL")
        store.ensure_branch("ent-1", "12345678000271", "FILIAL", "009")
        with store.engine.connect() as conn:
            code = conn.execute(
                select(branches.c.establishment_code).where(branches.c.id == branch_id)
            ).scalar_one()
        assert code == "009"

    def test_load_branches_scoped_to_entity(self, store):
        branch_id, _ = store.ensure_branch("ent-1", "11111111000111", "A")
        store.ensure_branch("ent-2", "22222222000122", "B")
        assert store.load_branches("ent-1") == {"11111111000111": branch_id}

    def test_update_branch(self, store):
        branch_id, _ = store.ensure_branch("ent-1", "11111111000111", "Filial 11.111.111/0001-11")
        store.update_branch(branch_id, name="FILIAL NORTE", establishment_code="002")
        with store.engine.connect() as conn:
            row = conn.execute(select(branches).where(branches.c.id == branch_id)).one()
        assert row.name == "FILIAL NORTE"
        assert row.establishment_code == "002"


class TestWriteRows:
    def test_duplicates_are_skipped(self, store):
        assert store.write_rows(Destination.GOODS_MOVEMENTS, [_movement("a"), _movement("b")]) == 2
        assert store.write_rows(Destination.GOODS_MOVEMENTS, [_movement("a"), _movement("c")]) == 1
        assert _count(store, Destination.GOODS_MOVEMENTS) == 3

    def test_empty_batch(self, store):
        assert store.write_rows(Destination.GOODS_MOVEMENTS, []) == 0

    def test_counterparties_keyed_by_branch_and_code(self, store):
        rows = [
            {"branch_id": "br-1", "code": "F1", "name": "A"},
            {"branch_id": "br-2", "code": "F1", "name": "A"},
        ]
        assert store.write_rows(Destination.COUNTERPARTIES, rows) == 2
        assert store.write_rows(Destination.COUNTERPARTIES, rows[:1]) == 0

    def test_asset_items_keyed_by_item_number(self, store):
        item = {
            "branch_id": "br-1",
            "period": date(2024, 2, 1),
            "usage": "consumption",
            "cfop": "1556",
            "item_number": "1",
            "document_number": "9001",
            "counterparty_code": "F001",
            "description": "FORNECEDOR A - Doc 9001",
            "amount": Decimal("250.00"),
            "icms": Decimal("45.00"),
            "pis": Decimal("4.13"),
            "cofins": Decimal("19.00"),
        }
        second = {**item, "item_number": "2"}
        assert store.write_rows(Destination.ASSET_ITEMS, [item, second]) == 2
        assert store.write_rows(Destination.ASSET_ITEMS, [item]) == 0
        assert _count(store, Destination.ASSET_ITEMS) == 2

    def test_plain_insert_when_constraint_missing(self):
        engine = _engine()
        metadata.create_all(engine, tables=[t for t in metadata.sorted_tables if t.name != "goods_movements"])
        with engine.begin() as conn:
            conn.execute(text(
                "CREATE TABLE goods_movements ("
                " id INTEGER PRIMARY KEY AUTOINCREMENT,"
                " branch_id VARCHAR(36) NOT NULL, period DATE NOT NULL,"
                " direction VARCHAR(10) NOT NULL, counterparty_code VARCHAR(60),"
                " description VARCHAR(200) NOT NULL, amount NUMERIC(18, 2) NOT NULL,"
                " pis NUMERIC(18, 2) NOT NULL, cofins NUMERIC(18, 2) NOT NULL,"
                " icms NUMERIC(18, 2) NOT NULL, ipi NUMERIC(18, 2) NOT NULL)"
            ))
        store = SqlLedgerStore(engine=engine)

        assert store.write_rows(Destination.GOODS_MOVEMENTS, [_movement()]) == 1
        assert store.write_rows(Destination.GOODS_MOVEMENTS, [_movement()]) == 1
        assert _count(store, Destination.GOODS_MOVEMENTS) == 2

    def test_other_database_errors_are_fatal(self, store):
        row = _movement()
        row["description"] = None
        with pytest.raises(DestinationWriteError) as excinfo:
            store.write_rows(Destination.GOODS_MOVEMENTS, [row])
        assert excinfo.value.destination == "goods_movements"


class TestRefreshDownstream:
    def test_runs_configured_statements(self):
        engine = _engine()
        store = SqlLedgerStore(
            engine=engine,
            create_schema=True,
            refresh_statements=[
                "CREATE TABLE IF NOT EXISTS ledger_summary (n INTEGER)",
                "DELETE FROM ledger_summary",
                "INSERT INTO ledger_summary SELECT COUNT(*) FROM goods_movements",
            ],
        )
        store.write_rows(Destination.GOODS_MOVEMENTS, [_movement()])
        store.refresh_downstream()
        with engine.connect() as conn:
            assert conn.execute(text("SELECT n FROM ledger_summary")).scalar_one() == 1

    def test_no_statements_is_a_no_op(self, store):
        store.refresh_downstream()


def test_requires_url_or_engine():
    with pytest.raises(ValueError):
        SqlLedgerStore()
