"""Tests for per-family block quotas."""

from __future__ import annotations

from efdloader.ingest.quotas import BlockQuotas
from efdloader.models.records import ImportScope, RecordFamily


class TestBlockQuotas:
    def test_unbounded_when_limit_zero(self):
        quotas = BlockQuotas.for_scope(0, ImportScope.ALL)
        assert all(quotas.try_consume(RecordFamily.C100) for _ in range(10))
        assert not quotas.all_exhausted()

    def test_limit_applies_per_family(self):
        quotas = BlockQuotas.for_scope(2, ImportScope.ALL)
        assert quotas.try_consume(RecordFamily.C100)
        assert quotas.try_consume(RecordFamily.C100)
        assert not quotas.try_consume(RecordFamily.C100)
        assert quotas.try_consume(RecordFamily.D100)

    def test_inactive_families_disabled(self):
        quotas = BlockQuotas.for_scope(0, ImportScope.ONLY_D)
        assert not quotas.try_consume(RecordFamily.C100)
        assert quotas[RecordFamily.C100].disabled
        assert quotas.try_consume(RecordFamily.D500)

    def test_all_exhausted_only_counts_bounded_families(self):
        quotas = BlockQuotas.for_scope(1, ImportScope.ONLY_A)
        assert not quotas.all_exhausted()
        quotas.try_consume(RecordFamily.A100)
        assert quotas.all_exhausted()

    def test_emitted_counts_resume_across_slices(self):
        quotas = BlockQuotas.for_scope(3, ImportScope.ALL, {"c100": 3, "d100": 1})
        assert not quotas.try_consume(RecordFamily.C100)
        assert quotas.try_consume(RecordFamily.D100)
        assert quotas.counts()["d100"] == 2
