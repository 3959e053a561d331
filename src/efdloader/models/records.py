"""Record kinds, quota families and the normalized rows written to the ledger."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import StrEnum
from typing import Any, ClassVar, Optional

from pydantic import BaseModel

ZERO = Decimal("0")


class RecordKind(StrEnum):
    """Line tags the engine understands (fields[1] of a ledger line)."""

    HEADER = "0000"
    ESTABLISHMENT = "0140"
    COUNTERPARTY = "0150"
    SERVICE_CONTEXT = "A010"
    SERVICE_INVOICE = "A100"
    GOODS_CONTEXT = "C010"
    GOODS_MOVEMENT = "C100"
    GOODS_ITEM = "C170"
    UTILITY_INVOICE = "C500"
    DAILY_CONSOLIDATION = "C600"
    TRANSPORT_CONTEXT = "D010"
    FREIGHT_DOCUMENT = "D100"
    FREIGHT_PIS = "D101"
    FREIGHT_COFINS = "D105"
    TELECOM_DOCUMENT = "D500"
    TELECOM_PIS = "D501"
    TELECOM_COFINS = "D505"


class RecordFamily(StrEnum):
    """Quota-bounded primary record families."""

    A100 = "a100"
    C100 = "c100"
    C170 = "c170"
    C500 = "c500"
    C600 = "c600"
    D100 = "d100"
    D500 = "d500"


class ImportScope(StrEnum):
    ALL = "all"
    ONLY_A = "only_a"  # services
    ONLY_C = "only_c"  # goods
    ONLY_D = "only_d"  # transport


class FormatVariant(StrEnum):
    """The two sibling layouts of the ledger file."""

    ICMS_IPI = "icms_ipi"
    CONTRIBUICOES = "contribuicoes"


class Direction(StrEnum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class Destination(StrEnum):
    COUNTERPARTIES = "counterparties"
    GOODS_MOVEMENTS = "goods_movements"
    UTILITY_INVOICES = "utility_invoices"
    FREIGHT_DOCUMENTS = "freight_documents"
    SERVICE_INVOICES = "service_invoices"
    ASSET_ITEMS = "asset_items"


# Counterparties go first: movement rows reference them.
FLUSH_ORDER: tuple[Destination, ...] = (
    Destination.COUNTERPARTIES,
    Destination.GOODS_MOVEMENTS,
    Destination.UTILITY_INVOICES,
    Destination.FREIGHT_DOCUMENTS,
    Destination.SERVICE_INVOICES,
    Destination.ASSET_ITEMS,
)

NATURAL_KEYS: dict[Destination, tuple[str, ...]] = {
    Destination.COUNTERPARTIES: ("branch_id", "code"),
    Destination.GOODS_MOVEMENTS: ("branch_id", "period", "direction", "description", "amount"),
    Destination.UTILITY_INVOICES: (
        "branch_id", "period", "operation", "service_type", "description", "amount",
    ),
    Destination.FREIGHT_DOCUMENTS: ("branch_id", "period", "direction", "description", "amount"),
    Destination.SERVICE_INVOICES: ("branch_id", "period", "direction", "description", "amount"),
    Destination.ASSET_ITEMS: (
        "branch_id", "period", "document_number", "item_number", "cfop", "counterparty_code",
    ),
}


class AssetUsage(StrEnum):
    """Why an acquired item is not resale stock."""

    CONSUMPTION = "consumption"  # uso e consumo
    FIXED_ASSET = "fixed_asset"  # ativo imobilizado


CFOP_USAGE: dict[str, AssetUsage] = {
    "1556": AssetUsage.CONSUMPTION,
    "2556": AssetUsage.CONSUMPTION,
    "1551": AssetUsage.FIXED_ASSET,
    "2551": AssetUsage.FIXED_ASSET,
}

FINAL_CONSUMER_CODE = "9999999999"
UNIDENTIFIED_SUPPLIER_CODE = "8888888888"

SENTINEL_COUNTERPARTIES: dict[str, str] = {
    FINAL_CONSUMER_CODE: "CONSUMIDOR FINAL",
    UNIDENTIFIED_SUPPLIER_CODE: "FORNECEDOR NÃO IDENTIFICADO",
}


class Counterparty(BaseModel):
    """A business partner declared in the counterparty registry."""

    destination: ClassVar[Destination] = Destination.COUNTERPARTIES

    code: str
    name: str
    cnpj: Optional[str] = None
    cpf: Optional[str] = None
    state_registration: Optional[str] = None
    municipality_code: Optional[str] = None

    def to_row(self, branch_id: str) -> dict[str, Any]:
        return {"branch_id": branch_id, **self.model_dump()}


class LedgerRecord(BaseModel):
    """Base for business rows emitted by primary records."""

    destination: ClassVar[Destination]

    family: RecordFamily
    period: Optional[date] = None
    branch_id: Optional[str] = None
    description: str = ""
    amount: Decimal = ZERO

    def to_row(self, branch_id: str) -> dict[str, Any]:
        """Row for the destination table; the record's own branch wins over the fallback."""
        row = self.model_dump(exclude={"family"})
        row["branch_id"] = self.branch_id or branch_id
        return row


class GoodsMovement(LedgerRecord):
    destination: ClassVar[Destination] = Destination.GOODS_MOVEMENTS

    direction: Direction = Direction.OUTBOUND
    counterparty_code: Optional[str] = None
    pis: Decimal = ZERO
    cofins: Decimal = ZERO
    icms: Decimal = ZERO
    ipi: Decimal = ZERO


class UtilityInvoice(LedgerRecord):
    destination: ClassVar[Destination] = Destination.UTILITY_INVOICES

    operation: str = "credit"  # credit | debit
    service_type: str = "other"  # energy | water | gas | communication | other
    supplier_document: Optional[str] = None
    pis: Decimal = ZERO
    cofins: Decimal = ZERO
    icms: Decimal = ZERO


class FreightDocument(LedgerRecord):
    destination: ClassVar[Destination] = Destination.FREIGHT_DOCUMENTS

    direction: Direction = Direction.INBOUND
    carrier_document: Optional[str] = None
    pis: Decimal = ZERO
    cofins: Decimal = ZERO
    icms: Decimal = ZERO


class ServiceInvoice(LedgerRecord):
    destination: ClassVar[Destination] = Destination.SERVICE_INVOICES

    direction: Direction = Direction.OUTBOUND
    counterparty_code: Optional[str] = None
    pis: Decimal = ZERO
    cofins: Decimal = ZERO
    iss: Decimal = ZERO


class GoodsDocument(BaseModel):
    """The open C100 whose C170 item lines follow it."""

    direction: Direction
    counterparty_code: str
    document_number: str
    entry_date: str = ""


class AssetItem(LedgerRecord):
    """A C170 item bought for own use or as a fixed asset."""

    destination: ClassVar[Destination] = Destination.ASSET_ITEMS

    usage: AssetUsage
    cfop: str
    item_number: str = ""
    document_number: str = ""
    counterparty_code: Optional[str] = None
    icms: Decimal = ZERO
    pis: Decimal = ZERO
    cofins: Decimal = ZERO
