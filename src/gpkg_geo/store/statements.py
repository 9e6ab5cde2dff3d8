"""
Structured statement intents.

The feature layer never builds SQL text itself. It describes what should
happen (create a table, insert a row, drop a table) and the database
compiles these into parameterised SQL at the boundary.
"""

from typing import Any, Union

from pydantic import BaseModel, ConfigDict

from .exceptions import SchemaValidationError


class ColumnDef(BaseModel):
    """A physical column in a CREATE TABLE statement."""

    model_config = ConfigDict(frozen=True)

    name: str
    type: str
    primary_key: bool = False
    autoincrement: bool = False
    not_null: bool = False


class CreateTable(BaseModel):
    model_config = ConfigDict(frozen=True)

    table: str
    columns: tuple[ColumnDef, ...]


class Insert(BaseModel):
    model_config = ConfigDict(frozen=True)

    table: str
    values: dict[str, Any]


class DropTable(BaseModel):
    model_config = ConfigDict(frozen=True)

    table: str


Statement = Union[CreateTable, Insert, DropTable]


def quote_identifier(name: str) -> str:
    """Quote a table or column name for SQLite."""
    if not isinstance(name, str) or not name.strip():
        raise SchemaValidationError(f"Invalid identifier: {name!r}")
    if "\x00" in name or '"' in name:
        raise SchemaValidationError(f"Invalid character in identifier: {name!r}")
    return f'"{name}"'


def compile_statement(statement: Statement) -> tuple[str, tuple]:
    """Compile a statement intent into SQL text and bound parameters."""
    if isinstance(statement, CreateTable):
        if not statement.columns:
            raise SchemaValidationError(
                f"Table {statement.table} must define at least one column"
            )
        column_sql = []
        for column in statement.columns:
            parts = [quote_identifier(column.name), column.type]
            if column.primary_key:
                parts.append("PRIMARY KEY")
            if column.autoincrement:
                parts.append("AUTOINCREMENT")
            if column.not_null:
                parts.append("NOT NULL")
            column_sql.append(" ".join(parts))
        sql = (
            f"CREATE TABLE {quote_identifier(statement.table)} "
            f"({', '.join(column_sql)})"
        )
        return sql, ()

    if isinstance(statement, Insert):
        if not statement.values:
            raise SchemaValidationError(
                f"Insert into {statement.table} has no values"
            )
        columns = ", ".join(quote_identifier(c) for c in statement.values)
        placeholders = ", ".join("?" for _ in statement.values)
        sql = (
            f"INSERT INTO {quote_identifier(statement.table)} "
            f"({columns}) VALUES ({placeholders})"
        )
        return sql, tuple(statement.values.values())

    if isinstance(statement, DropTable):
        return f"DROP TABLE IF EXISTS {quote_identifier(statement.table)}", ()

    raise TypeError(f"Unsupported statement: {statement!r}")
