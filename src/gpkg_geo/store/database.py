"""
SQLite access for a GeoPackage container.

This is the ONLY place where SQL is executed. Callers hand over either
statement intents (see statements.py) or, for catalog reads, SQL text with
bound parameters.
"""

import logging
import sqlite3
from typing import Iterable, Iterator, Optional, Sequence, Union

from pydantic import BaseModel

from .exceptions import TransactionError
from .statements import Statement, compile_statement

logger = logging.getLogger(__name__)


class ColumnInfo(BaseModel):
    """One physical column as reported by table introspection."""

    name: str
    type: str
    not_null: bool = False
    primary_key: bool = False


class RecordSet:
    """Rows returned by a single statement, addressable by column name."""

    def __init__(self, rows: Sequence[sqlite3.Row], columns: Sequence[str]):
        self._rows = list(rows)
        self.columns = list(columns)

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[sqlite3.Row]:
        return iter(self._rows)

    def __getitem__(self, index: int) -> sqlite3.Row:
        return self._rows[index]

    def __bool__(self) -> bool:
        return bool(self._rows)

    def get(self, row: int, column: str):
        return self._rows[row][column]

    def get_str(self, row: int, column: str) -> Optional[str]:
        value = self.get(row, column)
        return None if value is None else str(value)

    def get_int(self, row: int, column: str) -> Optional[int]:
        value = self.get(row, column)
        return None if value is None else int(value)

    def get_float(self, row: int, column: str) -> Optional[float]:
        value = self.get(row, column)
        return None if value is None else float(value)

    def to_dicts(self) -> list[dict]:
        return [dict(row) for row in self._rows]


class Database:
    """Thin wrapper over a sqlite3 connection with explicit transactions."""

    def __init__(self, path: str):
        self.path = path
        # Autocommit; execute_batch issues its own BEGIN/COMMIT around DDL too.
        self.connection = sqlite3.connect(path, isolation_level=None)
        self.connection.row_factory = sqlite3.Row

    def close(self):
        if self.connection is not None:
            self.connection.close()
            self.connection = None

    def execute(
        self,
        statement: Union[Statement, str],
        params: Sequence = (),
    ) -> RecordSet:
        """Execute a single statement and return its rows (possibly none)."""
        if isinstance(statement, str):
            sql, bound = statement, tuple(params)
        else:
            sql, bound = compile_statement(statement)
        cursor = self.connection.execute(sql, bound)
        try:
            columns = [d[0] for d in cursor.description or ()]
            return RecordSet(cursor.fetchall(), columns)
        finally:
            cursor.close()

    def execute_batch(self, statements: Iterable[Statement]) -> bool:
        """
        Execute statements as one transaction.

        Either every statement commits or none do. Any driver failure rolls
        the transaction back and is re-raised as TransactionError carrying
        the driver's message.
        """
        compiled = [compile_statement(s) for s in statements]
        cursor = self.connection.cursor()
        try:
            cursor.execute("BEGIN")
            for sql, bound in compiled:
                logger.debug("Executing %s", sql)
                cursor.execute(sql, bound)
            cursor.execute("COMMIT")
        except sqlite3.Error as exc:
            if self.connection.in_transaction:
                cursor.execute("ROLLBACK")
            logger.error("Batch of %d statements rolled back: %s", len(compiled), exc)
            raise TransactionError(str(exc)) from exc
        finally:
            cursor.close()
        return True

    def table_exists(self, table_name: str) -> bool:
        rows = self.execute(
            "SELECT 1 FROM sqlite_master "
            "WHERE type = 'table' AND name = ? COLLATE NOCASE",
            (table_name,),
        )
        return bool(rows)

    def table_info(self, table_name: str) -> list[ColumnInfo]:
        """Physical columns of ``table_name`` in table order (empty if absent)."""
        rows = self.execute(
            'SELECT name, type, "notnull", pk FROM pragma_table_info(?) ORDER BY cid',
            (table_name,),
        )
        return [
            ColumnInfo(
                name=row["name"],
                type=row["type"] or "",
                not_null=bool(row["notnull"]),
                primary_key=bool(row["pk"]),
            )
            for row in rows
        ]
