"""Tests for ProcessingContext checkpoint round-trips and pending slots."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from efdloader.models.context import ProcessingContext
from efdloader.models.records import Counterparty, FormatVariant, FreightDocument, RecordFamily


def _pending(family: RecordFamily = RecordFamily.D100) -> FreightDocument:
    return FreightDocument(
        family=family,
        period=date(2024, 1, 1),
        branch_id="br-1",
        description="CT-e 1",
        amount=Decimal("800.00"),
    )


class TestSnapshot:
    def test_round_trip_keeps_pending_and_branches(self):
        context = ProcessingContext(
            current_period=date(2024, 1, 1),
            current_entity_id="12345678000190",
            current_branch_id="br-1",
            format_variant=FormatVariant.CONTRIBUICOES,
            branch_by_document={"12345678000271": "br-1"},
        )
        context.open_pending(_pending())
        context.add_to_pending(RecordFamily.D100, pis=Decimal("13.20"))

        restored = ProcessingContext.restore(context.snapshot())

        assert restored.current_period == date(2024, 1, 1)
        assert restored.format_variant is FormatVariant.CONTRIBUICOES
        assert restored.pending[RecordFamily.D100].pis == Decimal("13.20")
        assert restored.pending[RecordFamily.D100].amount == Decimal("800.00")
        assert restored.branch_by_document == {"12345678000271": "br-1"}

    def test_registry_caches_not_checkpointed(self):
        context = ProcessingContext()
        context.counterparty_by_code["F1"] = Counterparty(code="F1", name="X")
        context.establishment_code_by_document["1"] = "001"
        snapshot = context.snapshot()
        assert "counterparty_by_code" not in snapshot
        assert "establishment_code_by_document" not in snapshot


class TestRestore:
    def test_fresh_context_uses_default_branch(self):
        context = ProcessingContext.restore(None, default_branch_id="br-0")
        assert context.current_branch_id == "br-0"
        assert context.current_period is None

    def test_checkpointed_branches_win_over_ledger(self):
        snapshot = ProcessingContext(branch_by_document={"A": "br-checkpoint"})
        context = ProcessingContext.restore(
            snapshot, known_branches={"A": "br-ledger", "B": "br-b"},
        )
        assert context.branch_by_document == {"A": "br-checkpoint", "B": "br-b"}

    def test_restore_copies_model_snapshot(self):
        snapshot = ProcessingContext()
        snapshot.open_pending(_pending())
        context = ProcessingContext.restore(snapshot)
        context.close_pending()
        assert RecordFamily.D100 in snapshot.pending


class TestPending:
    def test_add_without_slot_returns_false(self):
        assert not ProcessingContext().add_to_pending(RecordFamily.D500, cofins=Decimal("1"))

    def test_close_named_slot_only(self):
        context = ProcessingContext()
        context.open_pending(_pending(RecordFamily.D100))
        context.open_pending(_pending(RecordFamily.D500))
        [closed] = context.close_pending(RecordFamily.D500)
        assert closed.family is RecordFamily.D500
        assert list(context.pending) == [RecordFamily.D100]

    def test_close_all_in_family_order(self):
        context = ProcessingContext()
        context.open_pending(_pending(RecordFamily.D500))
        context.open_pending(_pending(RecordFamily.D100))
        assert [r.family for r in context.close_pending()] == [RecordFamily.D100, RecordFamily.D500]
