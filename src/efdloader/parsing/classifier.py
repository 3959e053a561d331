"""Line classifier: raw line -> record kind, or None when the line is ignored."""

from __future__ import annotations

from typing import Optional

from efdloader.models.records import ImportScope, RecordKind

_REGISTRY = frozenset({RecordKind.HEADER, RecordKind.ESTABLISHMENT, RecordKind.COUNTERPARTY})

_SERVICES = frozenset({RecordKind.SERVICE_CONTEXT, RecordKind.SERVICE_INVOICE})

_GOODS = frozenset({
    RecordKind.GOODS_CONTEXT,
    RecordKind.GOODS_MOVEMENT,
    RecordKind.GOODS_ITEM,
    RecordKind.UTILITY_INVOICE,
    RecordKind.DAILY_CONSOLIDATION,
})

_TRANSPORT = frozenset({
    RecordKind.TRANSPORT_CONTEXT,
    RecordKind.FREIGHT_DOCUMENT,
    RecordKind.FREIGHT_PIS,
    RecordKind.FREIGHT_COFINS,
    RecordKind.TELECOM_DOCUMENT,
    RecordKind.TELECOM_PIS,
    RecordKind.TELECOM_COFINS,
})

SCOPE_KINDS: dict[ImportScope, frozenset[RecordKind]] = {
    ImportScope.ALL: _REGISTRY | _SERVICES | _GOODS | _TRANSPORT,
    ImportScope.ONLY_A: _REGISTRY | _SERVICES,
    ImportScope.ONLY_C: _REGISTRY | _GOODS,
    ImportScope.ONLY_D: _REGISTRY | _TRANSPORT,
}


def classify(line: str, scope: ImportScope = ImportScope.ALL) -> Optional[RecordKind]:
    if not line.startswith("|"):
        return None
    parts = line.split("|", 2)
    if len(parts) < 3:
        return None
    try:
        kind = RecordKind(parts[1])
    except ValueError:
        return None
    return kind if kind in SCOPE_KINDS[scope] else None
