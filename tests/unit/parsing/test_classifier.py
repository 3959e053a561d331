"""Tests for the line classifier."""

from __future__ import annotations

import pytest

from efdloader.models.records import ImportScope, RecordKind
from efdloader.parsing.classifier import classify


class TestClassify:
    def test_known_tag(self):
        assert classify("|C100|0|1|") is RecordKind.GOODS_MOVEMENT

    @pytest.mark.parametrize("line", ["", "C100|0|1|", "|C100", "|9999|x|", "|c100|0|"])
    def test_ignored_lines(self, line):
        assert classify(line) is None

    def test_scope_filters_other_blocks(self):
        assert classify("|C100|0|", ImportScope.ONLY_A) is None
        assert classify("|A100|0|", ImportScope.ONLY_A) is RecordKind.SERVICE_INVOICE
        assert classify("|D105|0|", ImportScope.ONLY_C) is None
        assert classify("|C170|1|", ImportScope.ONLY_C) is RecordKind.GOODS_ITEM
        assert classify("|C170|1|", ImportScope.ONLY_D) is None

    @pytest.mark.parametrize("scope", list(ImportScope))
    def test_registries_in_every_scope(self, scope):
        assert classify("|0000|006|", scope) is RecordKind.HEADER
        assert classify("|0140|001|", scope) is RecordKind.ESTABLISHMENT
        assert classify("|0150|F1|", scope) is RecordKind.COUNTERPARTY
