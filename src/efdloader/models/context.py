"""Processing context threaded through the line stream.

The persisted fields of :class:`ProcessingContext` are the resume checkpoint:
``model_dump(mode="json")`` is what lands in the job record, and
:meth:`ProcessingContext.restore` rebuilds it at the start of the next slice.
The registry caches are excluded from serialization and rebuilt per slice.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field

from efdloader.models.records import (
    Counterparty,
    FormatVariant,
    FreightDocument,
    GoodsDocument,
    RecordFamily,
)

_PENDING_ORDER = (RecordFamily.D100, RecordFamily.D500)


class ProcessingContext(BaseModel):
    current_period: Optional[date] = None
    current_entity_id: str = ""
    current_branch_id: Optional[str] = None
    format_variant: Optional[FormatVariant] = None
    pending: dict[RecordFamily, FreightDocument] = Field(default_factory=dict)
    goods_document: Optional[GoodsDocument] = None
    branch_by_document: dict[str, str] = Field(default_factory=dict)

    # Slice-local registry caches, never checkpointed.
    counterparty_by_code: dict[str, Counterparty] = Field(default_factory=dict, exclude=True)
    establishment_code_by_document: dict[str, str] = Field(default_factory=dict, exclude=True)

    @classmethod
    def restore(
        cls,
        snapshot: ProcessingContext | dict[str, Any] | None,
        *,
        known_branches: dict[str, str] | None = None,
        default_branch_id: str | None = None,
    ) -> ProcessingContext:
        """Rehydrate the context for a new slice.

        Branches persisted in the ledger are merged under the checkpointed map,
        so a branch resolved in an earlier slice keeps its identity.
        """
        if snapshot is None:
            context = cls(current_branch_id=default_branch_id)
        elif isinstance(snapshot, ProcessingContext):
            context = snapshot.model_copy(deep=True)
        else:
            context = cls.model_validate(snapshot)
        if known_branches:
            context.branch_by_document = {**known_branches, **context.branch_by_document}
        return context

    def snapshot(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def switch_branch(self, document_number: str, branch_id: str) -> None:
        self.branch_by_document[document_number] = branch_id
        self.current_branch_id = branch_id
        self.current_entity_id = document_number

    # ---- pending aggregates ----

    def open_pending(self, record: FreightDocument) -> None:
        self.pending[record.family] = record

    def add_to_pending(
        self, family: RecordFamily, *, pis: Decimal | None = None, cofins: Decimal | None = None
    ) -> bool:
        """Add an auxiliary sub-total to the open slot; False when no slot is open."""
        record = self.pending.get(family)
        if record is None:
            return False
        if pis is not None:
            record.pis += pis
        if cofins is not None:
            record.cofins += cofins
        return True

    def close_scope(self) -> list[FreightDocument]:
        """Leave the current period/branch: close every slot and forget the open C100."""
        self.goods_document = None
        return self.close_pending()

    def close_pending(self, *families: RecordFamily) -> list[FreightDocument]:
        """Close the given slots (all of them when none are named) and return their records."""
        closed: list[FreightDocument] = []
        for family in families or _PENDING_ORDER:
            record = self.pending.pop(family, None)
            if record is not None:
                closed.append(record)
        return closed
