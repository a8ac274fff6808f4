"""Relational-table adapter: CRUD requests as parameterized SQL statements.

Only the configured table name and validated field identifiers are ever
written into statement text. Every value travels as a bound parameter in the
driver's placeholder style, so a payload full of SQL metacharacters is stored
verbatim as data.
"""

from __future__ import annotations

import re
from abc import abstractmethod
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from crud_connector.adapters.base import AdapterBase
from crud_connector.config import IDENTIFIER_RE
from crud_connector.errors import BackendError, NotFoundError, ValidationError
from crud_connector.models import Record, RecordFilter
from crud_connector.schema import ID_FIELD, FieldSpec

_INTEGER_ID_RE = re.compile(r"-?[0-9]+")


@dataclass(frozen=True, slots=True)
class StatementResult:
    """Outcome of a data-modifying statement.

    Attributes:
        rowcount: Rows affected, as reported by the driver.
        lastrowid: Generated key of an INSERT, where the driver reports one.
    """

    rowcount: int
    lastrowid: Any = None


class TableAdapter(AdapterBase):
    """Base class for relational adapters.

    Subclasses provide the driver primitives (``_fetch``, ``_execute``), the
    placeholder and quoting style, and the column types used by
    :meth:`ensure_table`. The five operations are implemented here once.
    """

    id_column_ddl: str = "id INTEGER PRIMARY KEY"
    column_types: dict[type, str] = {str: "TEXT", int: "INTEGER", float: "REAL", bool: "BOOLEAN"}
    # Range of the id column; ids outside it can never be stored.
    id_range: tuple[int, int] = (-(2**63), 2**63 - 1)

    # -- driver primitives ------------------------------------------------

    @abstractmethod
    def placeholder(self, index: int) -> str:
        """Bound-parameter marker for the 1-based ``index``."""
        ...

    @abstractmethod
    def quote(self, identifier: str) -> str:
        """Quote a validated identifier."""
        ...

    @abstractmethod
    async def _fetch(self, sql: str, params: Sequence[Any]) -> list[Record]:
        """Run a query and return rows as dicts."""
        ...

    @abstractmethod
    async def _execute(self, sql: str, params: Sequence[Any]) -> StatementResult:
        """Run a data-modifying statement."""
        ...

    async def _insert(self, record: Mapping[str, Any]) -> Record:
        """Insert one row and return it as stored."""
        sql, params = self.build_insert(record)
        result = await self._execute(sql, params)
        if result.lastrowid is None:
            raise BackendError("Insert did not report a generated id")
        rows = await self._fetch(*self.build_select_by_id(result.lastrowid))
        if not rows:
            raise BackendError(f"Inserted row {result.lastrowid} could not be read back")
        return rows[0]

    # -- statement builders -----------------------------------------------

    @property
    def table(self) -> str:
        """Quoted table name."""
        return self.quote(self._config.table_or_collection_name)

    def _columns(self, names: Iterable[str]) -> list[str]:
        columns = []
        for name in names:
            if not isinstance(name, str) or not IDENTIFIER_RE.match(name):
                raise ValidationError(f"Invalid field name: {name!r}", field=str(name))
            columns.append(self.quote(name))
        return columns

    def build_insert(self, record: Mapping[str, Any]) -> tuple[str, list[Any]]:
        """Build ``INSERT INTO t (a, b) VALUES (?, ?)``."""
        columns = self._columns(record)
        placeholders = ", ".join(self.placeholder(i) for i in range(1, len(columns) + 1))
        sql = f"INSERT INTO {self.table} ({', '.join(columns)}) VALUES ({placeholders})"
        return sql, list(record.values())

    def build_select_by_id(self, record_id: Any) -> tuple[str, list[Any]]:
        """Build ``SELECT * FROM t WHERE id = ?``."""
        sql = f"SELECT * FROM {self.table} WHERE {self.quote(ID_FIELD)} = {self.placeholder(1)}"
        return sql, [record_id]

    def build_select(self, filter: RecordFilter | None = None) -> tuple[str, list[Any]]:
        """Build ``SELECT * FROM t [WHERE a = ? AND b IS NULL] ORDER BY id``."""
        sql = f"SELECT * FROM {self.table}"
        params: list[Any] = []
        if filter:
            clauses = []
            for column, (name, value) in zip(self._columns(filter), filter.items(), strict=True):
                if value is None:
                    clauses.append(f"{column} IS NULL")
                else:
                    if name == ID_FIELD:
                        value = self._coerce_id(value)
                    params.append(value)
                    clauses.append(f"{column} = {self.placeholder(len(params))}")
            sql += " WHERE " + " AND ".join(clauses)
        sql += f" ORDER BY {self.quote(ID_FIELD)}"
        return sql, params

    def build_update(self, record_id: Any, partial: Mapping[str, Any]) -> tuple[str, list[Any]]:
        """Build ``UPDATE t SET a = ?, b = ? WHERE id = ?``."""
        columns = self._columns(partial)
        assignments = ", ".join(
            f"{column} = {self.placeholder(i)}" for i, column in enumerate(columns, start=1)
        )
        sql = (
            f"UPDATE {self.table} SET {assignments} "
            f"WHERE {self.quote(ID_FIELD)} = {self.placeholder(len(columns) + 1)}"
        )
        return sql, [*partial.values(), record_id]

    def build_delete(self, record_id: Any) -> tuple[str, list[Any]]:
        """Build ``DELETE FROM t WHERE id = ?``."""
        sql = f"DELETE FROM {self.table} WHERE {self.quote(ID_FIELD)} = {self.placeholder(1)}"
        return sql, [record_id]

    def build_create_table(self) -> str:
        """Build ``CREATE TABLE IF NOT EXISTS`` from the schema.

        Raises:
            ValueError: If the adapter has no schema.
        """
        if self._schema is None:
            raise ValueError("ensure_table() needs a schema")
        columns = [self.id_column_ddl] + [self._column_ddl(spec) for spec in self._schema.fields]
        return f"CREATE TABLE IF NOT EXISTS {self.table} ({', '.join(columns)})"

    def _column_ddl(self, spec: FieldSpec) -> str:
        ddl = f"{self.quote(spec.name)} {self.column_types[spec.type]}"
        if spec.required or not spec.nullable:
            ddl += " NOT NULL"
        return ddl

    # -- helpers --------------------------------------------------------------

    def _coerce_id(self, record_id: Any) -> int:
        if isinstance(record_id, str) and _INTEGER_ID_RE.fullmatch(record_id.strip()):
            return int(record_id)
        if isinstance(record_id, int) and not isinstance(record_id, bool):
            return record_id
        raise ValidationError(f"Invalid id: {record_id!r}", field=ID_FIELD)

    def _storable_id(self, record_id: Any) -> int:
        """Coerce an id for lookup; an id the column cannot hold was never created."""
        rid = self._coerce_id(record_id)
        low, high = self.id_range
        if not low <= rid <= high:
            raise NotFoundError(f"Record {rid} not found", record_id=rid)
        return rid

    def _normalize(self, row: Mapping[str, Any]) -> Record:
        record = dict(row)
        if self._schema is not None:
            record = self._schema.coerce(record)
        return record

    def _prepare_create(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        if ID_FIELD in payload:
            raise ValidationError("create payload must not contain the 'id' field", field=ID_FIELD)
        record = self._schema.prepare_create(payload) if self._schema else dict(payload)
        if not record:
            raise ValidationError("create payload must contain at least one field")
        return record

    def _prepare_update(self, partial: Mapping[str, Any]) -> dict[str, Any]:
        if ID_FIELD in partial:
            raise ValidationError("update partial must not contain the 'id' field", field=ID_FIELD)
        return self._schema.prepare_update(partial) if self._schema else dict(partial)

    async def _after_open(self) -> None:
        if self._config.options.get("create_table"):
            await self.ensure_table()

    # -- operations -----------------------------------------------------------

    async def ensure_table(self) -> None:
        """Create the table from the schema if it does not exist yet."""
        async with self._translate():
            await self._execute(self.build_create_table(), [])

    async def create(self, payload: Mapping[str, Any]) -> Record:
        """Insert a row.

        Raises:
            ValidationError: If required fields are missing or values are invalid.
        """
        record = self._prepare_create(payload)
        async with self._translate():
            row = await self._insert(record)
        return self._normalize(row)

    async def read_one(self, record_id: Any) -> Record:
        """Select one row by id.

        Raises:
            NotFoundError: If no row has that id.
        """
        rid = self._storable_id(record_id)
        async with self._translate():
            rows = await self._fetch(*self.build_select_by_id(rid))
        if not rows:
            raise NotFoundError(f"Record {rid} not found", record_id=rid)
        return self._normalize(rows[0])

    async def read_all(self, filter: RecordFilter | None = None) -> list[Record]:
        """Select every row matching an equality filter, ordered by id.

        Raises:
            ValidationError: If the filter names a field the schema does not declare.
        """
        if filter and self._schema is not None:
            self._schema.check_filter(filter)
        sql, params = self.build_select(filter)
        if filter and filter.get(ID_FIELD) is not None:
            low, high = self.id_range
            if not low <= self._coerce_id(filter[ID_FIELD]) <= high:
                return []
        async with self._translate():
            rows = await self._fetch(sql, params)
        return [self._normalize(row) for row in rows]

    async def update(self, record_id: Any, partial: Mapping[str, Any]) -> Record:
        """Apply a partial update and return the updated row.

        Raises:
            NotFoundError: If no row has that id.
        """
        rid = self._storable_id(record_id)
        changes = self._prepare_update(partial)
        if not changes:
            return await self.read_one(rid)
        async with self._translate():
            result = await self._execute(*self.build_update(rid, changes))
            # Some drivers count changed rows rather than matched rows.
            if result.rowcount == 0 and not await self._fetch(*self.build_select_by_id(rid)):
                raise NotFoundError(f"Record {rid} not found", record_id=rid)
        return await self.read_one(rid)

    async def delete(self, record_id: Any) -> int:
        """Delete one row by id and return the affected row count.

        Raises:
            NotFoundError: If no row has that id.
        """
        rid = self._storable_id(record_id)
        async with self._translate():
            result = await self._execute(*self.build_delete(rid))
        if result.rowcount == 0:
            raise NotFoundError(f"Record {rid} not found", record_id=rid)
        return result.rowcount


__all__ = ["StatementResult", "TableAdapter"]
