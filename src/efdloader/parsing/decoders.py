"""Per-record-kind field decoders.

Each decoder takes the split fields of a classified line and the current
:class:`ProcessingContext`, may mutate the context, and returns a
:class:`DecodeResult`. Decoders never perform I/O; anything that needs durable
storage (creating a branch) is returned as an instruction for the driver.

Field indices follow ``line.split("|")``, so index 0 is the empty field before
the leading pipe and index 1 is the record tag.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field as dataclass_field
from decimal import Decimal
from enum import StrEnum
from typing import Callable, Optional, Sequence

from efdloader.models.context import ProcessingContext
from efdloader.models.records import (
    CFOP_USAGE,
    FINAL_CONSUMER_CODE,
    UNIDENTIFIED_SUPPLIER_CODE,
    AssetItem,
    Counterparty,
    Direction,
    FormatVariant,
    FreightDocument,
    GoodsDocument,
    GoodsMovement,
    LedgerRecord,
    RecordFamily,
    RecordKind,
    ServiceInvoice,
    UtilityInvoice,
)
from efdloader.parsing.fields import (
    ZERO,
    digits_only,
    field,
    format_cnpj,
    is_ddmmyyyy,
    nullable,
    optional_amount,
    parse_amount,
    parse_period,
)

logger = logging.getLogger(__name__)


class BranchSource(StrEnum):
    REGISTRY = "registry"
    CONTEXT_SWITCH = "context_switch"


@dataclass(frozen=True)
class BranchInstruction:
    """Ensure a branch exists for ``document_number`` and make it the active one."""

    document_number: str
    name: Optional[str]
    establishment_code: Optional[str]
    source: BranchSource

    @property
    def display_name(self) -> str:
        return self.name or f"Filial {format_cnpj(self.document_number)}"


@dataclass
class DecodeResult:
    records: list[LedgerRecord] = dataclass_field(default_factory=list)
    branch: Optional[BranchInstruction] = None
    counterparty: Optional[Counterparty] = None


Decoder = Callable[[Sequence[str], ProcessingContext], DecodeResult]

_UTILITY_TYPES = {
    "06": "energy",
    "21": "communication",
    "22": "communication",
    "28": "gas",
    "29": "water",
}

_UTILITY_LABELS = {
    "energy": "Energia Elétrica",
    "water": "Água",
    "gas": "Gás",
    "communication": "Comunicação",
    "other": "Outros",
}


def _variant(context: ProcessingContext) -> FormatVariant:
    return context.format_variant or FormatVariant.CONTRIBUICOES


def _direction(flag: str) -> Direction:
    return Direction.INBOUND if flag == "0" else Direction.OUTBOUND


def counterparty_code(raw: str, direction: Direction) -> str:
    """Explicit code, or the sentinel for the movement's direction."""
    raw = raw.strip()
    if raw and raw != "0":
        return raw
    return UNIDENTIFIED_SUPPLIER_CODE if direction is Direction.INBOUND else FINAL_CONSUMER_CODE


def _describe(text: str, fallback: str) -> str:
    return text.strip()[:200] or fallback


# ---------------------------------------------------------------------------
# Header and registries
# ---------------------------------------------------------------------------

def decode_header(fields: Sequence[str], context: ProcessingContext) -> DecodeResult:
    if len(fields) <= 9:
        return DecodeResult()
    if context.format_variant is None:
        context.format_variant = (
            FormatVariant.ICMS_IPI if is_ddmmyyyy(field(fields, 4)) else FormatVariant.CONTRIBUICOES
        )
    icms_ipi = context.format_variant is FormatVariant.ICMS_IPI
    start = field(fields, 4 if icms_ipi else 6)
    period = parse_period(start)
    if period is None:
        logger.warning("Header record has no usable period start (%r)", start)

    closed = context.close_scope()
    context.current_period = period
    context.current_entity_id = digits_only(field(fields, 7 if icms_ipi else 9))
    return DecodeResult(records=closed)


def decode_establishment(fields: Sequence[str], context: ProcessingContext) -> DecodeResult:
    if len(fields) <= 4:
        return DecodeResult()
    code = field(fields, 2)
    name = field(fields, 3)[:200]
    document = digits_only(field(fields, 4))
    if not code or not document:
        return DecodeResult()
    context.establishment_code_by_document[document] = code
    return DecodeResult(
        records=context.close_scope(),
        branch=BranchInstruction(document, name or None, code, BranchSource.REGISTRY),
    )


def decode_counterparty(fields: Sequence[str], context: ProcessingContext) -> DecodeResult:
    if len(fields) <= 3:
        return DecodeResult()
    code = field(fields, 2)
    name = field(fields, 3)[:100]
    if not code or not name:
        return DecodeResult()
    counterparty = Counterparty(
        code=code,
        name=name,
        cnpj=digits_only(field(fields, 5)) or None,
        cpf=digits_only(field(fields, 6)) or None,
        state_registration=nullable(field(fields, 7)),
        municipality_code=nullable(field(fields, 8)),
    )
    context.counterparty_by_code[code] = counterparty
    return DecodeResult(counterparty=counterparty)


def decode_context_switch(fields: Sequence[str], context: ProcessingContext) -> DecodeResult:
    document = digits_only(field(fields, 2))
    if not document:
        return DecodeResult()
    closed = context.close_scope()
    known = context.branch_by_document.get(document)
    establishment_code = context.establishment_code_by_document.get(document)
    if known is not None and establishment_code is None:
        context.switch_branch(document, known)
        return DecodeResult(records=closed)
    # Unknown branch, or a known one whose 0140 code still has to be stored.
    return DecodeResult(
        records=closed,
        branch=BranchInstruction(document, None, establishment_code, BranchSource.CONTEXT_SWITCH),
    )


# ---------------------------------------------------------------------------
# Primary records
# ---------------------------------------------------------------------------

def decode_service_invoice(fields: Sequence[str], context: ProcessingContext) -> DecodeResult:
    if len(fields) <= 12:
        return DecodeResult()
    amount = parse_amount(fields[12])
    if amount <= ZERO:
        return DecodeResult()
    direction = _direction(field(fields, 2))
    record = ServiceInvoice(
        family=RecordFamily.A100,
        period=context.current_period,
        branch_id=context.current_branch_id,
        direction=direction,
        counterparty_code=counterparty_code(field(fields, 4), direction),
        description=_describe(f"NFS-e {field(fields, 9) or field(fields, 8)}", "Nota de Serviço"),
        amount=amount,
        pis=optional_amount(fields, 16),
        cofins=optional_amount(fields, 18),
        iss=optional_amount(fields, 21),
    )
    return DecodeResult(records=[record])


def decode_goods_movement(fields: Sequence[str], context: ProcessingContext) -> DecodeResult:
    icms_ipi = _variant(context) is FormatVariant.ICMS_IPI
    direction = _direction(field(fields, 2))
    context.goods_document = None
    if icms_ipi and len(fields) > 11:
        context.goods_document = GoodsDocument(
            direction=direction,
            counterparty_code=counterparty_code(field(fields, 4), direction),
            document_number=field(fields, 8) or field(fields, 9),
            entry_date=field(fields, 11) or field(fields, 10),
        )

    # The ICMS/IPI layout is only trusted when the tax columns are all present.
    if len(fields) <= (27 if icms_ipi else 12):
        return DecodeResult()
    amount = parse_amount(fields[12])
    if amount <= ZERO:
        return DecodeResult()
    record = GoodsMovement(
        family=RecordFamily.C100,
        period=context.current_period,
        branch_id=context.current_branch_id,
        direction=direction,
        counterparty_code=counterparty_code(field(fields, 4), direction),
        description=_describe(f"NF-e {field(fields, 8)}", "NF-e"),
        amount=amount,
        pis=optional_amount(fields, 26),
        cofins=optional_amount(fields, 27),
        icms=optional_amount(fields, 22),
        ipi=optional_amount(fields, 25),
    )
    return DecodeResult(records=[record])


def decode_goods_item(fields: Sequence[str], context: ProcessingContext) -> DecodeResult:
    """C170 items of the open C100, kept only for own-use and fixed-asset CFOPs."""
    document = context.goods_document
    if document is None or len(fields) <= 11:
        return DecodeResult()
    cfop = field(fields, 11)
    usage = CFOP_USAGE.get(cfop)
    if usage is None:
        return DecodeResult()
    amount = parse_amount(fields[7])
    if amount <= ZERO:
        return DecodeResult()

    description = f"Doc {document.document_number}"
    partner = context.counterparty_by_code.get(document.counterparty_code)
    if partner is not None:
        description = f"{partner.name} - {description}"
    record = AssetItem(
        family=RecordFamily.C170,
        period=parse_period(document.entry_date) or context.current_period,
        branch_id=context.current_branch_id,
        usage=usage,
        cfop=cfop,
        item_number=field(fields, 2),
        document_number=document.document_number,
        counterparty_code=document.counterparty_code,
        description=_describe(description, "Item de NF-e"),
        amount=amount,
        icms=optional_amount(fields, 15),
        pis=optional_amount(fields, 25),
        cofins=optional_amount(fields, 28),
    )
    return DecodeResult(records=[record])


def decode_utility_invoice(fields: Sequence[str], context: ProcessingContext) -> DecodeResult:
    if len(fields) <= 10:
        return DecodeResult()
    amount = parse_amount(fields[10])
    if amount <= ZERO:
        return DecodeResult()

    if _variant(context) is FormatVariant.CONTRIBUICOES:
        operation = "credit"
        model = field(fields, 3)
        supplier = digits_only(field(fields, 2))
        taxes = {"icms": 11, "pis": 13, "cofins": 14}
        doc_label = f"Doc {field(fields, 7)}"
    else:
        operation = "credit" if field(fields, 2) == "0" else "debit"
        model = field(fields, 5)
        supplier = digits_only(field(fields, 4))
        taxes = {"icms": 13, "pis": 16, "cofins": 18}
        doc_label = field(fields, 7)

    service_type = _UTILITY_TYPES.get(model, "other")
    label = _UTILITY_LABELS[service_type]
    record = UtilityInvoice(
        family=RecordFamily.C500,
        period=context.current_period,
        branch_id=context.current_branch_id,
        operation=operation,
        service_type=service_type,
        supplier_document=supplier or None,
        description=_describe(f"{label} - {doc_label}", label),
        amount=amount,
        **{name: optional_amount(fields, index) for name, index in taxes.items()},
    )
    return DecodeResult(records=[record])


def decode_daily_consolidation(fields: Sequence[str], context: ProcessingContext) -> DecodeResult:
    if len(fields) <= 16:
        return DecodeResult()
    amount = parse_amount(fields[7])
    if amount <= ZERO:
        return DecodeResult()
    record = GoodsMovement(
        family=RecordFamily.C600,
        period=context.current_period,
        branch_id=context.current_branch_id,
        direction=Direction.OUTBOUND,
        counterparty_code=FINAL_CONSUMER_CODE,
        description=_describe(
            f"Consolidação NF {field(fields, 2)} {field(fields, 3)}", "Consolidação diária"
        ),
        amount=amount,
        pis=parse_amount(fields[15]),
        cofins=parse_amount(fields[16]),
        icms=parse_amount(fields[12]),
    )
    return DecodeResult(records=[record])


def decode_freight_document(fields: Sequence[str], context: ProcessingContext) -> DecodeResult:
    if _variant(context) is FormatVariant.ICMS_IPI:
        if len(fields) <= 26:
            return DecodeResult()
        amount = parse_amount(fields[14])
        if amount <= ZERO:
            return DecodeResult()
        record = FreightDocument(
            family=RecordFamily.D100,
            period=context.current_period,
            branch_id=context.current_branch_id,
            direction=_direction(field(fields, 2)),
            carrier_document=digits_only(field(fields, 5)) or None,
            description=_describe(f"CT-e {field(fields, 8)}", "Conhecimento de Transporte"),
            amount=amount,
            pis=parse_amount(fields[24]),
            cofins=parse_amount(fields[26]),
            icms=parse_amount(fields[23]),
        )
        return DecodeResult(records=[record])

    # Contribuicoes: PIS/COFINS arrive in the following D101/D105 lines.
    closed = context.close_pending(RecordFamily.D100)
    if len(fields) > 20:
        amount = parse_amount(fields[15])
        if amount > ZERO:
            access_key = field(fields, 10)
            context.open_pending(FreightDocument(
                family=RecordFamily.D100,
                period=context.current_period,
                branch_id=context.current_branch_id,
                direction=_direction(field(fields, 2)),
                carrier_document=access_key[6:20] if len(access_key) >= 20 else None,
                description=_describe(
                    f"CT-e {access_key or field(fields, 9)}", "Conhecimento de Transporte"
                ),
                amount=amount,
                icms=parse_amount(fields[20]),
            ))
    return DecodeResult(records=closed)


def decode_telecom_document(fields: Sequence[str], context: ProcessingContext) -> DecodeResult:
    if _variant(context) is FormatVariant.ICMS_IPI:
        if len(fields) <= 19:
            return DecodeResult()
        amount = parse_amount(fields[11])
        if amount <= ZERO:
            return DecodeResult()
        record = FreightDocument(
            family=RecordFamily.D500,
            period=context.current_period,
            branch_id=context.current_branch_id,
            direction=_direction(field(fields, 2)),
            carrier_document=digits_only(field(fields, 4)) or None,
            description=_describe(f"Telecom/Comunicação {field(fields, 7)}", "Serviço de Comunicação"),
            amount=amount,
            pis=parse_amount(fields[17]),
            cofins=parse_amount(fields[19]),
            icms=parse_amount(fields[14]),
        )
        return DecodeResult(records=[record])

    closed = context.close_pending(RecordFamily.D100, RecordFamily.D500)
    if len(fields) > 19:
        amount = parse_amount(fields[12])
        if amount > ZERO:
            context.open_pending(FreightDocument(
                family=RecordFamily.D500,
                period=context.current_period,
                branch_id=context.current_branch_id,
                direction=_direction(field(fields, 2)),
                carrier_document=digits_only(field(fields, 4)) or None,
                description=_describe(
                    f"Telecom/Comunicação {field(fields, 9)}", "Serviço de Comunicação"
                ),
                amount=amount,
                icms=parse_amount(fields[19]),
            ))
    return DecodeResult(records=closed)


# ---------------------------------------------------------------------------
# Auxiliary sub-totals
# ---------------------------------------------------------------------------

def _subtotal(family: RecordFamily, tax: str, index: int) -> Decoder:
    def decode(fields: Sequence[str], context: ProcessingContext) -> DecodeResult:
        if _variant(context) is FormatVariant.CONTRIBUICOES and len(fields) > index:
            value: Decimal = parse_amount(fields[index])
            context.add_to_pending(family, **{tax: value})
        return DecodeResult()

    decode.__name__ = f"decode_{family}_{tax}"
    return decode


DECODERS: dict[RecordKind, Decoder] = {
    RecordKind.HEADER: decode_header,
    RecordKind.ESTABLISHMENT: decode_establishment,
    RecordKind.COUNTERPARTY: decode_counterparty,
    RecordKind.SERVICE_CONTEXT: decode_context_switch,
    RecordKind.GOODS_CONTEXT: decode_context_switch,
    RecordKind.TRANSPORT_CONTEXT: decode_context_switch,
    RecordKind.SERVICE_INVOICE: decode_service_invoice,
    RecordKind.GOODS_MOVEMENT: decode_goods_movement,
    RecordKind.GOODS_ITEM: decode_goods_item,
    RecordKind.UTILITY_INVOICE: decode_utility_invoice,
    RecordKind.DAILY_CONSOLIDATION: decode_daily_consolidation,
    RecordKind.FREIGHT_DOCUMENT: decode_freight_document,
    RecordKind.FREIGHT_PIS: _subtotal(RecordFamily.D100, "pis", 8),
    RecordKind.FREIGHT_COFINS: _subtotal(RecordFamily.D100, "cofins", 8),
    RecordKind.TELECOM_DOCUMENT: decode_telecom_document,
    RecordKind.TELECOM_PIS: _subtotal(RecordFamily.D500, "pis", 7),
    RecordKind.TELECOM_COFINS: _subtotal(RecordFamily.D500, "cofins", 7),
}


def decode(kind: RecordKind, fields: Sequence[str], context: ProcessingContext) -> DecodeResult:
    return DECODERS[kind](fields, context)
