"""Per-family block quotas (record_limit applied to each active family)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from efdloader.models.records import ImportScope, RecordFamily

SCOPE_FAMILIES: dict[ImportScope, frozenset[RecordFamily]] = {
    ImportScope.ALL: frozenset(RecordFamily),
    ImportScope.ONLY_A: frozenset({RecordFamily.A100}),
    ImportScope.ONLY_C: frozenset({
        RecordFamily.C100, RecordFamily.C170, RecordFamily.C500, RecordFamily.C600,
    }),
    ImportScope.ONLY_D: frozenset({RecordFamily.D100, RecordFamily.D500}),
}


@dataclass
class BlockQuota:
    """limit 0 = unbounded, negative = family disabled."""

    limit: int = 0
    count: int = 0

    @property
    def disabled(self) -> bool:
        return self.limit < 0

    @property
    def bounded(self) -> bool:
        return self.limit > 0

    @property
    def exhausted(self) -> bool:
        return self.bounded and self.count >= self.limit


class BlockQuotas:
    def __init__(self, quotas: Mapping[RecordFamily, BlockQuota]) -> None:
        self._quotas = dict(quotas)

    @classmethod
    def for_scope(
        cls,
        record_limit: int,
        scope: ImportScope,
        emitted: Mapping[str, int] | None = None,
    ) -> BlockQuotas:
        """Build quotas for a job; ``emitted`` carries counts from earlier slices."""
        active = SCOPE_FAMILIES[scope]
        limit = max(record_limit, 0)
        emitted = emitted or {}
        return cls({
            family: BlockQuota(
                limit=limit if family in active else -1,
                count=int(emitted.get(family.value, 0)),
            )
            for family in RecordFamily
        })

    def __getitem__(self, family: RecordFamily) -> BlockQuota:
        return self._quotas[family]

    def try_consume(self, family: RecordFamily) -> bool:
        """Count one emitted record of ``family``; False when it must be dropped."""
        quota = self._quotas[family]
        if quota.disabled or quota.exhausted:
            return False
        quota.count += 1
        return True

    def all_exhausted(self) -> bool:
        """True once every bounded family reached its limit (and at least one is bounded)."""
        bounded = [q for q in self._quotas.values() if q.bounded]
        return bool(bounded) and all(q.exhausted for q in bounded)

    def counts(self) -> dict[str, int]:
        return {family.value: quota.count for family, quota in self._quotas.items()}
