"""Tests for per-record-kind decoders."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from efdloader.models.context import ProcessingContext
from efdloader.models.records import (
    FINAL_CONSUMER_CODE,
    UNIDENTIFIED_SUPPLIER_CODE,
    AssetItem,
    AssetUsage,
    Direction,
    FormatVariant,
    FreightDocument,
    GoodsMovement,
    RecordFamily,
    RecordKind,
    ServiceInvoice,
    UtilityInvoice,
)
from efdloader.parsing.classifier import classify
from efdloader.parsing.decoders import BranchSource, decode
from tests.fakes import efd


def run(context: ProcessingContext, line: str):
    kind = classify(line)
    assert kind is not None, line
    return decode(kind, line.split("|"), context)


@pytest.fixture
def contrib():
    context = ProcessingContext(current_branch_id="br-1")
    run(context, efd.HEADER_CONTRIB)
    return context


@pytest.fixture
def icms():
    context = ProcessingContext(current_branch_id="br-1")
    run(context, efd.HEADER_ICMS)
    return context


class TestHeader:
    def test_contribuicoes_detected_from_blank_date_field(self, contrib):
        assert contrib.format_variant is FormatVariant.CONTRIBUICOES
        assert contrib.current_period == date(2024, 1, 1)
        assert contrib.current_entity_id == efd.ENTITY_DOCUMENT

    def test_icms_ipi_detected_from_leading_date(self, icms):
        assert icms.format_variant is FormatVariant.ICMS_IPI
        assert icms.current_period == date(2024, 1, 1)
        assert icms.current_entity_id == efd.ENTITY_DOCUMENT

    def test_variant_fixed_after_first_header(self, contrib):
        run(contrib, efd.HEADER_ICMS)
        assert contrib.format_variant is FormatVariant.CONTRIBUICOES

    def test_short_header_ignored(self):
        context = ProcessingContext()
        result = run(context, "|0000|006|0|")
        assert result.records == []
        assert context.format_variant is None
        assert context.current_period is None

    def test_example_header_then_inbound_movement(self):
        context = ProcessingContext(current_branch_id="br-1")
        run(context, "|0000|003|0||01012024|31012024|EMPRESA X|12345678000190|SP|3550308||")
        result = run(context, efd.goods_movement(amount="1500,00", code=""))

        [record] = result.records
        assert isinstance(record, GoodsMovement)
        assert record.amount == Decimal("1500.00")
        assert record.counterparty_code == UNIDENTIFIED_SUPPLIER_CODE
        assert record.period == date(2024, 1, 1)
        assert record.direction is Direction.INBOUND


class TestRegistries:
    def test_establishment_returns_registry_instruction(self, contrib):
        result = run(contrib, efd.establishment(code="007", name="FILIAL SUL"))
        assert result.branch is not None
        assert result.branch.document_number == efd.BRANCH_DOCUMENT
        assert result.branch.establishment_code == "007"
        assert result.branch.source is BranchSource.REGISTRY
        assert contrib.establishment_code_by_document[efd.BRANCH_DOCUMENT] == "007"

    def test_establishment_without_document_ignored(self, contrib):
        result = run(contrib, efd.establishment(document=""))
        assert result.branch is None

    def test_counterparty_cached_and_returned(self, contrib):
        result = run(contrib, efd.counterparty())
        assert result.counterparty is not None
        assert result.counterparty.cnpj == "11222333000181"
        assert result.counterparty.municipality_code == "3550308"
        assert contrib.counterparty_by_code["F001"].name == "FORNECEDOR A"

    def test_context_switch_to_known_branch(self, contrib):
        contrib.branch_by_document[efd.BRANCH_DOCUMENT] = "br-2"
        result = run(contrib, efd.context_switch())
        assert result.branch is None
        assert contrib.current_branch_id == "br-2"

    def test_context_switch_to_unknown_branch_uses_synthesized_name(self, contrib):
        contrib.establishment_code_by_document[efd.BRANCH_DOCUMENT] = "001"
        result = run(contrib, efd.context_switch("D010"))
        assert result.branch.source is BranchSource.CONTEXT_SWITCH
        assert result.branch.establishment_code == "001"
        assert result.branch.display_name == "Filial 12.345.678/0002-71"


class TestPrimaryRecords:
    def test_zero_amount_emits_nothing(self, contrib):
        assert run(contrib, efd.goods_movement(amount="0,00")).records == []

    def test_short_line_emits_nothing(self, contrib):
        assert run(contrib, "|C100|0|1||55|").records == []

    def test_goods_movement_icms_layout(self, icms):
        [record] = run(icms, efd.goods_movement_icms()).records
        assert record.direction is Direction.OUTBOUND
        assert record.counterparty_code == "C001"
        assert record.description == "NF-e 456"
        assert (record.icms, record.ipi, record.pis, record.cofins) == (
            Decimal("180.00"), Decimal("50.00"), Decimal("16.50"), Decimal("76.00"),
        )

    def test_goods_movement_icms_needs_tax_columns(self, icms):
        assert run(icms, efd.goods_movement()).records == []

    def test_service_invoice_outbound_gets_final_consumer(self, contrib):
        [record] = run(contrib, efd.service_invoice()).records
        assert isinstance(record, ServiceInvoice)
        assert record.counterparty_code == FINAL_CONSUMER_CODE
        assert record.description == "NFS-e 77"
        assert record.iss == Decimal("100.00")

    def test_utility_invoice_energy(self, contrib):
        [record] = run(contrib, efd.utility_invoice()).records
        assert isinstance(record, UtilityInvoice)
        assert record.service_type == "energy"
        assert record.description == "Energia Elétrica - Doc 991"
        assert record.supplier_document == "11222333000181"
        assert (record.icms, record.pis, record.cofins) == (
            Decimal("81.00"), Decimal("7.43"), Decimal("34.20"),
        )

    def test_utility_invoice_unknown_model_is_other(self, contrib):
        [record] = run(contrib, efd.utility_invoice(model="99")).records
        assert record.service_type == "other"

    def test_daily_consolidation(self, contrib):
        [record] = run(contrib, efd.daily_consolidation()).records
        assert record.family is RecordFamily.C600
        assert record.counterparty_code == FINAL_CONSUMER_CODE
        assert record.amount == Decimal("900.00")


class TestFreightAggregation:
    def test_d100_subtotals_accumulate_until_next_primary(self, contrib):
        assert run(contrib, efd.freight_document()).records == []
        run(contrib, efd.freight_pis("13,20"))
        run(contrib, efd.freight_cofins("60,80"))

        [record] = run(contrib, efd.freight_document(amount="100,00")).records
        assert isinstance(record, FreightDocument)
        assert record.amount == Decimal("800.00")
        assert record.pis == Decimal("13.20")
        assert record.cofins == Decimal("60.80")
        assert record.icms == Decimal("96.00")
        assert record.carrier_document == "11222333000181"
        assert record.branch_id == "br-1"
        assert RecordFamily.D100 in contrib.pending

    def test_d500_closes_both_slots(self, contrib):
        run(contrib, efd.telecom_document())
        run(contrib, efd.telecom_pis())
        run(contrib, efd.telecom_cofins())
        run(contrib, efd.freight_document())
        assert set(contrib.pending) == {RecordFamily.D100, RecordFamily.D500}

        closed = run(contrib, efd.telecom_document(number="556")).records
        assert [r.family for r in closed] == [RecordFamily.D100, RecordFamily.D500]
        assert closed[1].pis == Decimal("4.95")
        assert closed[1].cofins == Decimal("22.80")
        assert closed[1].description == "Telecom/Comunicação 555"

    def test_subtotal_without_open_slot_is_ignored(self, contrib):
        assert run(contrib, efd.freight_pis()).records == []
        assert contrib.pending == {}

    def test_context_switch_closes_pending(self, contrib):
        run(contrib, efd.freight_document())
        contrib.branch_by_document[efd.BRANCH_DOCUMENT] = "br-2"
        [record] = run(contrib, efd.context_switch("D010")).records
        assert record.branch_id == "br-1"
        assert contrib.current_branch_id == "br-2"

    def test_icms_variant_emits_immediately(self, icms):
        line = efd.efd_line(
            "D100",
            {2: "0", 5: "11222333000181", 8: "789", 14: "800,00", 23: "96,00", 24: "13,20", 26: "60,80"},
            width=28,
        )
        [record] = run(icms, line).records
        assert record.pis == Decimal("13.20")
        assert record.cofins == Decimal("60.80")
        assert icms.pending == {}

    def test_icms_variant_ignores_subtotals(self, icms):
        assert run(icms, efd.freight_pis()).records == []


def test_decode_covers_every_kind():
    from efdloader.parsing.decoders import DECODERS

    assert set(DECODERS) == set(RecordKind)


class TestGoodsItems:
    def test_consumption_item_uses_counterparty_name_and_entry_date(self, icms):
        run(icms, efd.counterparty(code="F001", name="FORNECEDOR A"))
        run(icms, efd.goods_movement_icms(direction="0", code="F001", number="9001", entry_date="15022024"))

        [record] = run(icms, efd.goods_item(cfop="1556", amount="250,00", item="3")).records

        assert isinstance(record, AssetItem)
        assert record.family is RecordFamily.C170
        assert record.usage is AssetUsage.CONSUMPTION
        assert record.cfop == "1556"
        assert record.item_number == "3"
        assert record.document_number == "9001"
        assert record.counterparty_code == "F001"
        assert record.description == "FORNECEDOR A - Doc 9001"
        assert record.period == date(2024, 2, 1)
        assert record.branch_id == "br-1"
        assert (record.amount, record.icms, record.pis, record.cofins) == (
            Decimal("250.00"), Decimal("45.00"), Decimal("4.13"), Decimal("19.00"),
        )

    def test_fixed_asset_cfop(self, icms):
        run(icms, efd.goods_movement_icms(direction="0"))
        [record] = run(icms, efd.goods_item(cfop="2551")).records
        assert record.usage is AssetUsage.FIXED_ASSET

    def test_unknown_counterparty_and_missing_entry_date(self, icms):
        run(icms, efd.goods_movement_icms(code="", number="77"))
        [record] = run(icms, efd.goods_item()).records
        assert record.description == "Doc 77"
        assert record.counterparty_code == FINAL_CONSUMER_CODE
        assert record.period == date(2024, 1, 1)

    def test_resale_cfop_ignored(self, icms):
        run(icms, efd.goods_movement_icms(direction="0"))
        assert run(icms, efd.goods_item(cfop="1102")).records == []

    def test_item_without_open_document_ignored(self, icms):
        assert run(icms, efd.goods_item()).records == []

    def test_contribuicoes_layout_ignores_items(self, contrib):
        run(contrib, efd.goods_movement())
        assert contrib.goods_document is None
        assert run(contrib, efd.goods_item()).records == []

    def test_branch_change_closes_document(self, icms):
        run(icms, efd.goods_movement_icms(direction="0"))
        icms.branch_by_document[efd.BRANCH_DOCUMENT] = "br-2"
        run(icms, efd.context_switch("C010"))
        assert run(icms, efd.goods_item()).records == []

    def test_open_document_survives_checkpoint(self, icms):
        run(icms, efd.goods_movement_icms(direction="0", number="555"))
        resumed = ProcessingContext.restore(icms.snapshot())
        [record] = run(resumed, efd.goods_item()).records
        assert record.document_number == "555"


class TestContextSwitchEstablishmentCode:
    def test_known_branch_with_cached_code_asks_for_update(self, contrib):
        contrib.branch_by_document[efd.BRANCH_DOCUMENT] = "br-2"
        contrib.establishment_code_by_document[efd.BRANCH_DOCUMENT] = "005"
        result = run(contrib, efd.context_switch("A010"))
        assert result.branch is not None
        assert result.branch.source is BranchSource.CONTEXT_SWITCH
        assert result.branch.establishment_code == "005"
