"""SQLAlchemy backend implementing ILedgerStore."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Sequence

from sqlalchemy import Table, create_engine, insert, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import CursorResult, Engine
from sqlalchemy.exc import DBAPIError

from efdloader.core.exceptions import DestinationWriteError
from efdloader.models.records import NATURAL_KEYS, Destination
from efdloader.persistence.sql_schema import DESTINATION_TABLES, branches, metadata

logger = logging.getLogger(__name__)

# PostgreSQL: "there is no unique or exclusion constraint matching the ON CONFLICT specification";
# SQLite: "ON CONFLICT clause does not match any PRIMARY KEY or UNIQUE constraint".
_MISSING_CONSTRAINT_HINTS = ("no unique or exclusion constraint", "on conflict clause does not match")


def _is_missing_constraint(exc: DBAPIError) -> bool:
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return any(hint in message for hint in _MISSING_CONSTRAINT_HINTS)


def _rowcount(result: CursorResult, rows: Sequence[dict[str, Any]]) -> int:
    count = result.rowcount
    return count if count is not None and count >= 0 else len(rows)


class SqlLedgerStore:
    """Production ILedgerStore on PostgreSQL (SQLite for local runs and tests)."""

    def __init__(
        self,
        url: str | None = None,
        *,
        engine: Engine | None = None,
        echo: bool = False,
        refresh_statements: Sequence[str] = (),
        create_schema: bool = False,
    ) -> None:
        if engine is None:
            if not url:
                raise ValueError("SqlLedgerStore needs a database url or an engine")
            engine = create_engine(url, echo=echo)
        self._engine = engine
        self._refresh_statements = list(refresh_statements)
        if create_schema:
            metadata.create_all(engine)

    @property
    def engine(self) -> Engine:
        return self._engine

    # ---- branches ----

    def load_branches(self, entity_id: str) -> dict[str, str]:
        stmt = select(branches.c.document_number, branches.c.id).where(branches.c.entity_id == entity_id)
        with self._engine.connect() as conn:
            return {document: branch_id for document, branch_id in conn.execute(stmt)}

    def ensure_branch(
        self,
        entity_id: str,
        document_number: str,
        name: str,
        establishment_code: str | None = None,
    ) -> tuple[str, bool]:
        """Return ``(branch_id, created)`` for the entity's branch with this document."""
        with self._engine.begin() as conn:
            existing = conn.execute(
                select(branches.c.id).where(
                    branches.c.entity_id == entity_id,
                    branches.c.document_number == document_number,
                )
            ).scalar_one_or_none()
            if existing is not None:
                if establishment_code:
                    conn.execute(
                        update(branches)
                        .where(branches.c.id == existing)
                        .values(establishment_code=establishment_code)
                    )
                return existing, False

            branch_id = str(uuid.uuid4())
            conn.execute(
                insert(branches).values(
                    id=branch_id,
                    entity_id=entity_id,
                    document_number=document_number,
                    name=name[:200],
                    establishment_code=establishment_code,
                )
            )
            return branch_id, True

    def update_branch(
        self, branch_id: str, *, name: str | None = None, establishment_code: str | None = None
    ) -> None:
        values: dict[str, Any] = {}
        if name:
            values["name"] = name[:200]
        if establishment_code:
            values["establishment_code"] = establishment_code
        if not values:
            return
        with self._engine.begin() as conn:
            conn.execute(update(branches).where(branches.c.id == branch_id).values(**values))

    # ---- business rows ----

    def write_rows(self, destination: Destination, rows: Sequence[dict[str, Any]]) -> int:
        """Insert rows, skipping natural-key duplicates; plain insert when no constraint exists."""
        if not rows:
            return 0
        table = DESTINATION_TABLES[destination]
        try:
            with self._engine.begin() as conn:
                return _rowcount(conn.execute(self._upsert(table, destination), list(rows)), rows)
        except DBAPIError as exc:
            if not _is_missing_constraint(exc):
                raise DestinationWriteError(destination.value, str(exc.orig or exc)) from exc
            logger.warning(
                "%s has no unique constraint for %s; falling back to plain insert",
                table.name, NATURAL_KEYS[destination],
            )
        try:
            with self._engine.begin() as conn:
                return _rowcount(conn.execute(insert(table), list(rows)), rows)
        except DBAPIError as exc:
            raise DestinationWriteError(destination.value, str(exc.orig or exc)) from exc

    def _upsert(self, table: Table, destination: Destination):
        keys = list(NATURAL_KEYS[destination])
        dialect = self._engine.dialect.name
        if dialect == "postgresql":
            return pg_insert(table).on_conflict_do_nothing(index_elements=keys)
        if dialect == "sqlite":
            return sqlite_insert(table).on_conflict_do_nothing(index_elements=keys)
        return insert(table)

    def refresh_downstream(self) -> None:
        """Run the configured materialization statements in one transaction."""
        if not self._refresh_statements:
            return
        with self._engine.begin() as conn:
            for statement in self._refresh_statements:
                conn.execute(text(statement))
        logger.info("Refreshed %d downstream views", len(self._refresh_statements))
