"""SQLAlchemy Core tables for the destination ledger."""

from __future__ import annotations

from sqlalchemy import (
    Column,
    Date,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    UniqueConstraint,
)

from efdloader.models.records import NATURAL_KEYS, Destination

metadata = MetaData()


def _money(name: str) -> Column:
    return Column(name, Numeric(18, 2), nullable=False, default=0)


branches = Table(
    "branches",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("entity_id", String(64), nullable=False, index=True),
    Column("document_number", String(14), nullable=False),
    Column("name", String(200), nullable=False),
    Column("establishment_code", String(60)),
    UniqueConstraint("entity_id", "document_number", name="branches_entity_document_key"),
)

counterparties = Table(
    "counterparties",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("branch_id", String(36), nullable=False),
    Column("code", String(60), nullable=False),
    Column("name", String(100), nullable=False),
    Column("cnpj", String(14)),
    Column("cpf", String(11)),
    Column("state_registration", String(20)),
    Column("municipality_code", String(7)),
    UniqueConstraint(*NATURAL_KEYS[Destination.COUNTERPARTIES], name="counterparties_unique_record"),
)

goods_movements = Table(
    "goods_movements",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("branch_id", String(36), nullable=False, index=True),
    Column("period", Date, nullable=False),
    Column("direction", String(10), nullable=False),
    Column("counterparty_code", String(60)),
    Column("description", String(200), nullable=False),
    _money("amount"),
    _money("pis"),
    _money("cofins"),
    _money("icms"),
    _money("ipi"),
    UniqueConstraint(*NATURAL_KEYS[Destination.GOODS_MOVEMENTS], name="goods_movements_unique_record"),
)

utility_invoices = Table(
    "utility_invoices",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("branch_id", String(36), nullable=False, index=True),
    Column("period", Date, nullable=False),
    Column("operation", String(10), nullable=False),
    Column("service_type", String(20), nullable=False),
    Column("supplier_document", String(14)),
    Column("description", String(200), nullable=False),
    _money("amount"),
    _money("pis"),
    _money("cofins"),
    _money("icms"),
    UniqueConstraint(*NATURAL_KEYS[Destination.UTILITY_INVOICES], name="utility_invoices_unique_record"),
)

freight_documents = Table(
    "freight_documents",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("branch_id", String(36), nullable=False, index=True),
    Column("period", Date, nullable=False),
    Column("direction", String(10), nullable=False),
    Column("carrier_document", String(14)),
    Column("description", String(200), nullable=False),
    _money("amount"),
    _money("pis"),
    _money("cofins"),
    _money("icms"),
    UniqueConstraint(*NATURAL_KEYS[Destination.FREIGHT_DOCUMENTS], name="freight_documents_unique_record"),
)

service_invoices = Table(
    "service_invoices",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("branch_id", String(36), nullable=False, index=True),
    Column("period", Date, nullable=False),
    Column("direction", String(10), nullable=False),
    Column("counterparty_code", String(60)),
    Column("description", String(200), nullable=False),
    _money("amount"),
    _money("pis"),
    _money("cofins"),
    _money("iss"),
    UniqueConstraint(*NATURAL_KEYS[Destination.SERVICE_INVOICES], name="service_invoices_unique_record"),
)

asset_items = Table(
    "asset_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("branch_id", String(36), nullable=False, index=True),
    Column("period", Date, nullable=False),
    Column("usage", String(20), nullable=False),
    Column("cfop", String(4), nullable=False),
    Column("item_number", String(10), nullable=False),
    Column("document_number", String(60), nullable=False),
    Column("counterparty_code", String(60)),
    Column("description", String(200), nullable=False),
    _money("amount"),
    _money("icms"),
    _money("pis"),
    _money("cofins"),
    UniqueConstraint(*NATURAL_KEYS[Destination.ASSET_ITEMS], name="asset_items_unique_record"),
)

DESTINATION_TABLES: dict[Destination, Table] = {
    Destination.COUNTERPARTIES: counterparties,
    Destination.GOODS_MOVEMENTS: goods_movements,
    Destination.UTILITY_INVOICES: utility_invoices,
    Destination.FREIGHT_DOCUMENTS: freight_documents,
    Destination.SERVICE_INVOICES: service_invoices,
    Destination.ASSET_ITEMS: asset_items,
}
