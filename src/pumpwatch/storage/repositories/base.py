"""
Base repository class for async SQLite access.
"""
from __future__ import annotations

from typing import Generic, Iterable, Optional, Type, TypeVar, Union

from pydantic import BaseModel

from pumpwatch.storage.database import Connection, Database

T = TypeVar("T", bound=BaseModel)

Executor = Union[Database, Connection]

# Stays under SQLite's bound-parameter limit (999 on older builds)
MAX_BOUND_PARAMS = 500


class BaseRepository(Generic[T]):
    """
    Base class for async repositories.

    Provides common patterns for CRUD operations.
    Subclasses define table name, primary key column and model type.

    Every method takes an optional ``conn``. Pass the connection yielded by
    ``Database.transaction()`` to run the call inside that transaction;
    leave it out to run standalone.
    """

    table_name: str
    id_column: str = "id"
    model_class: Type[T]

    def __init__(self, db: Database) -> None:
        self.db = db

    def _executor(self, conn: Optional[Connection]) -> Executor:
        return conn if conn is not None else self.db

    def _record_to_model(self, record) -> Optional[T]:
        """Convert a sqlite Row to a Pydantic model."""
        if record is None:
            return None
        return self.model_class(**dict(record))

    def _records_to_models(self, records) -> list[T]:
        """Convert list of Rows to list of models."""
        return [self._record_to_model(r) for r in records]

    async def get_by_id(self, id_value, conn: Optional[Connection] = None) -> Optional[T]:
        """Get a single record by primary key."""
        query = f"SELECT * FROM {self.table_name} WHERE {self.id_column} = ?"
        record = await self._executor(conn).fetchrow(query, id_value)
        return self._record_to_model(record)

    async def exists(self, id_value, conn: Optional[Connection] = None) -> bool:
        """Check if record exists."""
        query = f"SELECT 1 FROM {self.table_name} WHERE {self.id_column} = ?"
        result = await self._executor(conn).fetchval(query, id_value)
        return result is not None

    async def count(self, conn: Optional[Connection] = None) -> int:
        """Count all records in table."""
        query = f"SELECT COUNT(*) FROM {self.table_name}"
        return await self._executor(conn).fetchval(query)


    async def _delete_where_in(
        self, column: str, values: Iterable, conn: Optional[Connection] = None
    ) -> int:
        """
        Delete rows whose column is in ``values``. Returns rows deleted.

        Large lists are split into chunks of MAX_BOUND_PARAMS. Pass a
        transaction ``conn`` to make the chunks all-or-nothing.
        """
        values = list(values)
        executor = self._executor(conn)
        deleted = 0
        for start in range(0, len(values), MAX_BOUND_PARAMS):
            chunk = values[start:start + MAX_BOUND_PARAMS]
            placeholders = ", ".join("?" for _ in chunk)
            query = f"DELETE FROM {self.table_name} WHERE {column} IN ({placeholders})"
            deleted += await executor.execute(query, *chunk)
        return deleted
