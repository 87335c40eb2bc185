# src/polyorm/adapters/SQLiteAdapter.py
import datetime
import os
import re
from typing import Any, List, Optional, Sequence

from ..base.SQLAdapter import SQLAdapter
from ..decorators import backend
from ..errors import DatabaseError, DriverNotInstalledError
from ..models import FieldSpec, ModelDefinition
from ..schema import Dialect
from ..types import IdentifierKind, JsonDict
from ..utils import quote_identifier, quote_table


def _regexp(pattern: str, value: Any) -> bool:
    if value is None:
        return False
    return re.search(pattern, str(value)) is not None


@backend("sqlite", "sqlite3")
class SQLiteAdapter(SQLAdapter):
    """SQLite through aiosqlite; regex operators use a registered REGEXP function"""

    name = "sqlite"
    identifier_kind = IdentifierKind.NUMBER
    dialect = Dialect.SQLITE
    placeholder = "?"
    unbounded_limit = "-1"

    def __init__(self, settings=None, connection=None):
        super().__init__(settings, connection)
        database = getattr(settings, "database", None) or getattr(settings, "url", None)
        self.database = database or os.getenv("SQLITE_PATH", ":memory:")
        self._db = None

    async def _connect(self) -> None:
        try:
            import aiosqlite
        except ImportError:
            raise DriverNotInstalledError("aiosqlite is not installed. Install with: pip install aiosqlite")

        if self._db is not None:
            return
        try:
            db = await aiosqlite.connect(self.database)
            db.row_factory = aiosqlite.Row
            await db.create_function("REGEXP", 2, _regexp, deterministic=True)
        except Exception as e:
            raise DatabaseError(f"SQLite connect failed: {str(e)}") from e
        self._db = db
        self.logger.info(f"SQLite connected: {self.database}")

    async def _disconnect(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def _conn(self):
        if self._db is None:
            await self._connect()
        return self._db

    # -- primitives ----------------------------------------------------------

    async def _execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        db = await self._conn()
        done = self.logger_for(sql)
        try:
            cursor = await db.execute(sql, tuple(params))
            await db.commit()
            count = cursor.rowcount
            await cursor.close()
        except Exception as e:
            raise DatabaseError(f"SQLite execute failed: {str(e)}") from e
        done()
        return count

    async def _fetch(self, sql: str, params: Sequence[Any] = ()) -> List[JsonDict]:
        db = await self._conn()
        done = self.logger_for(sql)
        try:
            async with db.execute(sql, tuple(params)) as cursor:
                rows = await cursor.fetchall()
        except Exception as e:
            raise DatabaseError(f"SQLite select failed: {str(e)}") from e
        done()
        return [dict(row) for row in rows]

    async def _insert(self, definition: ModelDefinition, columns: List[str], values: List[Any]) -> JsonDict:
        table = quote_table(definition.table)
        if columns:
            cols = ", ".join(quote_identifier(c) for c in columns)
            marks = ", ".join([self.placeholder] * len(columns))
            sql = f"INSERT INTO {table} ({cols}) VALUES ({marks})"
        else:
            sql = f"INSERT INTO {table} DEFAULT VALUES"

        db = await self._conn()
        done = self.logger_for(sql)
        try:
            cursor = await db.execute(sql, tuple(values))
            await db.commit()
            rowid = cursor.lastrowid
            await cursor.close()
        except Exception as e:
            raise DatabaseError(f"SQLite insert failed: {str(e)}") from e
        done()

        rows = await self._fetch(f"SELECT * FROM {table} WHERE rowid = ?", [rowid])
        return rows[0] if rows else dict(zip(columns, values))

    async def _table_columns(self, table: str) -> List[str]:
        rows = await self._fetch(f"PRAGMA table_info({quote_table(table)})")
        return [row["name"] for row in rows]

    # -- dialect -------------------------------------------------------------

    def _default_order(self, definition: ModelDefinition) -> List[str]:
        return ["rowid"]

    def _value_to_database(self, spec: FieldSpec, value: Any) -> Any:
        if value is None:
            return None
        if spec.type == "date":
            return _to_iso(value)
        if spec.type == "boolean" and isinstance(value, bool):
            return int(value)
        return super()._value_to_database(spec, value)

    def _value_from_database(self, spec: FieldSpec, value: Any) -> Any:
        if value is None:
            return None
        if spec.type == "date" and isinstance(value, str):
            try:
                return datetime.datetime.fromisoformat(value)
            except ValueError:
                return value
        if spec.type == "boolean" and isinstance(value, int):
            return bool(value)
        return super()._value_from_database(spec, value)


def _to_iso(value: Any) -> Optional[Any]:
    """Dates are stored as sortable ISO-8601 text."""
    if isinstance(value, datetime.datetime):
        return value.isoformat(timespec="microseconds")
    if isinstance(value, datetime.date):
        return datetime.datetime.combine(value, datetime.time()).isoformat(timespec="microseconds")
    return value
