"""Shared type aliases."""

from __future__ import annotations

from typing import Any

JobId = str
BranchId = str
DocumentNumber = str  # digits only, 14 for a CNPJ
Row = dict[str, Any]
