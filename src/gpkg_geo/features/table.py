"""
Vector feature tables.

A FeatureTable is created from a FeatureSchema in one transaction, or
discovered from an existing table's catalog rows. Its metadata (fields,
geometry info, extent, last change) is loaded lazily as a single unit
the first time any of it is asked for, and is only replaced by a full
reload.
"""

import logging
import re
import sqlite3
from typing import Optional, Sequence

import pyarrow as pa

from gpkg_geo.store.dates import parse_datetime
from gpkg_geo.store.exceptions import (
    GeoPackageError,
    MetadataDegradation,
    OrphanTableError,
    ReferenceIntegrityError,
    SchemaValidationError,
)
from gpkg_geo.store.geopackage import GeoPackage
from gpkg_geo.store.statements import DropTable, quote_identifier
from gpkg_geo.store.system_tables import (
    CONTENTS,
    DATA_COLUMNS,
    GEOMETRY_COLUMNS,
    SPATIAL_REF_SYS,
)
from gpkg_geo.store.types import arrow_type

from .geometry import decode_dimension
from .models import (
    Extent,
    FeatureSchema,
    FieldMetadata,
    GeometryInfo,
    TableMetadata,
)
from .translator import SchemaTranslator

logger = logging.getLogger(__name__)

_FORBIDDEN_KEYWORDS = re.compile(
    r"\b(DROP|DELETE|INSERT|UPDATE|CREATE|ALTER|REPLACE|UNION|"
    r"ATTACH|DETACH|PRAGMA|VACUUM|REINDEX|SELECT)\b",
    re.IGNORECASE,
)

_FORBIDDEN_PATTERNS = re.compile(r"(--|/\*|\*/|;)")


class FeatureTable:
    """A vector feature table within a GeoPackage."""

    def __init__(
        self,
        geopackage: GeoPackage,
        table_name: str,
        feature_id_field: Optional[str] = None,
        drop_orphans: Optional[bool] = None,
    ):
        """
        Note that the table is neither created in, nor populated from, the
        GeoPackage until create() or one of the accessors is called.

        table_name: spaces are replaced by '_'.
        feature_id_field: defaults to the container's feature id field.
        drop_orphans: defaults to the container's setting.
        """
        self.geopackage = geopackage
        self.table_name = table_name.replace(" ", "_")
        self.feature_id_field = feature_id_field or geopackage.feature_id_field
        self.drop_orphans = (
            geopackage.drop_orphans if drop_orphans is None else drop_orphans
        )
        self._translator = SchemaTranslator(geopackage)
        self._metadata: Optional[TableMetadata] = None

    def __repr__(self):
        return f"FeatureTable({self.table_name!r})"

    # ------------------------------------------------------------------ #
    #  Creation
    # ------------------------------------------------------------------ #

    def is_registered(self) -> bool:
        """True if gpkg_contents has a row for this table."""
        return bool(
            self.geopackage.catalog.query(CONTENTS, table_name=self.table_name)
        )

    def exists_in_database(self) -> bool:
        return self.geopackage.database.table_exists(self.table_name)

    def create(self, schema: FeatureSchema, extent) -> bool:
        """
        Create the table and register it in the catalog.

        Returns True if the table was created or is already registered in
        gpkg_contents under the same name. A name differing from a
        registered one only in case is a SchemaValidationError. A physical table with no gpkg_contents row is
        dropped and re-created in the same transaction when drop_orphans is
        set, otherwise OrphanTableError is raised.

        Raises SchemaValidationError or ReferenceIntegrityError before any
        statement runs, and TransactionError if the batch was rolled back.
        """
        self._translator.validate_geometry_type(schema)

        registered = self.geopackage.catalog.registered_name(self.table_name)
        if registered == self.table_name:
            logger.warning(
                "Table %s already defined in %s", self.table_name, CONTENTS
            )
            return True
        if registered is not None:
            # SQLite table names are case-insensitive
            raise SchemaValidationError(
                f"Table {self.table_name} clashes with registered table {registered}"
            )

        statements = self._translator.translate(
            self.table_name, self.feature_id_field, schema, extent
        )

        if self.exists_in_database():
            if not self.drop_orphans:
                raise OrphanTableError(
                    f"Table {self.table_name} exists but is not registered in "
                    f"{CONTENTS}; orphan replacement is disabled"
                )
            logger.warning(
                "Replacing table %s: it exists but is not registered in %s",
                self.table_name,
                CONTENTS,
            )
            statements.insert(0, DropTable(table=self.table_name))

        self.geopackage.database.execute_batch(statements)
        logger.info(
            "Created feature table %s in %s", self.table_name, self.geopackage.path
        )

        self.reload()
        return True

    # ------------------------------------------------------------------ #
    #  Metadata
    # ------------------------------------------------------------------ #

    def reload(self) -> TableMetadata:
        """Discard loaded metadata and read it again from the container."""
        self._metadata = None
        return self._load()

    def _load(self) -> TableMetadata:
        if self._metadata is not None:
            return self._metadata

        logger.debug("Loading metadata for %s", self.table_name)

        columns = self.geopackage.database.table_info(self.table_name)
        if not columns:
            raise ReferenceIntegrityError(
                f"Table {self.table_name} does not exist in {self.geopackage.path}"
            )

        extent, last_change, identifier, description = self._read_contents()
        data_columns = self._read_data_columns()
        geometry_info = self._resolve_geometry_info()

        fields = {}
        for column in columns:
            if column.primary_key:
                continue
            extended = data_columns.get(column.name)
            if extended is None:
                field = FieldMetadata(
                    column_name=column.name,
                    storage_type=column.type,
                    feature_id=column.name == self.feature_id_field,
                )
            else:
                field = extended.model_copy(update={"storage_type": column.type})
            if column.name == geometry_info.column_name:
                field = field.model_copy(update={"geometry": True})
            fields[column.name] = field

        self._metadata = TableMetadata(
            fields=fields,
            geometry_info=geometry_info,
            extent=extent,
            last_change=last_change,
            identifier=identifier,
            description=description,
        )
        return self._metadata

    def _read_contents(self):
        """Extent, last change, identifier and description from gpkg_contents.

        Failures here only leave the values unset.
        """
        try:
            rows = self.geopackage.catalog.query(CONTENTS, table_name=self.table_name)
            if not rows:
                raise MetadataDegradation(
                    f"Table {self.table_name} is not registered in {CONTENTS}"
                )
            bounds = [
                rows.get_float(0, name) for name in ("min_x", "min_y", "max_x", "max_y")
            ]
            extent = None if None in bounds else Extent.from_value(bounds)
            last_change = parse_datetime(rows.get_str(0, "last_change"))
            return (
                extent,
                last_change,
                rows.get_str(0, "identifier"),
                rows.get_str(0, "description"),
            )
        except (GeoPackageError, sqlite3.Error, ValueError, TypeError) as exc:
            logger.warning(
                "Bounds/last change unavailable for %s: %s", self.table_name, exc
            )
            return None, None, None, None

    def _read_data_columns(self) -> dict[str, FieldMetadata]:
        """gpkg_data_columns rows for this table keyed by column name.

        storage_type is a placeholder until merged with the physical column.
        """
        extended = {}
        try:
            rows = self.geopackage.catalog.query(
                DATA_COLUMNS, table_name=self.table_name
            )
        except sqlite3.Error as exc:
            raise ReferenceIntegrityError(
                f"Unable to read {DATA_COLUMNS} for {self.table_name}: {exc}"
            ) from exc
        for row in rows:
            name = row["column_name"]
            constraint_name = row["constraint_name"]
            constraint = None
            if constraint_name:
                constraint = self.geopackage.catalog.get_constraint(constraint_name)
                if constraint is None:
                    logger.warning(
                        "Constraint %s on %s.%s is not defined",
                        constraint_name,
                        self.table_name,
                        name,
                    )
            extended[name] = FieldMetadata(
                column_name=name,
                storage_type="TEXT",
                feature_id=name == self.feature_id_field,
                display_name=row["name"],
                title=row["title"],
                description=row["description"],
                mime_type=row["mime_type"],
                constraint_name=constraint_name,
                constraint=constraint,
            )
        return extended

    def _resolve_geometry_info(self) -> GeometryInfo:
        catalog = self.geopackage.catalog

        records = catalog.query(GEOMETRY_COLUMNS, table_name=self.table_name)
        if not records:
            raise ReferenceIntegrityError(
                f"No geometry field definition for {self.table_name}"
            )
        if len(records) > 1:
            raise ReferenceIntegrityError(
                f"{len(records)} geometry columns defined for {self.table_name}; "
                "only one is supported"
            )

        srs_id = records.get_int(0, "srs_id")
        try:
            z = decode_dimension(records.get(0, "z"))
            m = decode_dimension(records.get(0, "m"))
        except ValueError as exc:
            raise ReferenceIntegrityError(
                f"Invalid z/m flags for {self.table_name}: {exc}"
            ) from exc

        srs = catalog.query(SPATIAL_REF_SYS, srs_id=srs_id)
        if not srs or srs.get(0, "definition") is None:
            raise ReferenceIntegrityError(
                f"SRS {srs_id} not defined in GeoPackage"
            )

        return GeometryInfo(
            column_name=records.get_str(0, "column_name"),
            geometry_type_name=records.get_str(0, "geometry_type_name"),
            srs_id=srs_id,
            z=z,
            m=m,
            organization=srs.get_str(0, "organization"),
            definition=srs.get_str(0, "definition"),
        )

    def fields(self) -> tuple[FieldMetadata, ...]:
        """All columns except the surrogate key, in table order."""
        return tuple(self._load().fields.values())

    def field(self, column_name: str) -> Optional[FieldMetadata]:
        return self._load().fields.get(column_name)

    def geometry_info(self) -> GeometryInfo:
        return self._load().geometry_info

    def bounds(self) -> Optional[Extent]:
        """The gpkg_contents extent, or None if it cannot be read."""
        try:
            return self._load().extent
        except GeoPackageError as exc:
            logger.warning("Bounds unavailable for %s: %s", self.table_name, exc)
            return None

    def last_change(self):
        """The gpkg_contents last_change as a UTC datetime, or None."""
        try:
            return self._load().last_change
        except GeoPackageError as exc:
            logger.warning("Last change unavailable for %s: %s", self.table_name, exc)
            return None

    def description(self) -> Optional[str]:
        return self._load().description

    def arrow_schema(self) -> pa.Schema:
        """Arrow schema of the feature columns. Geometry is WKB-like binary."""
        metadata = self._load()
        geometry = metadata.geometry_info
        arrow_fields = []
        for field in metadata.fields.values():
            if field.geometry:
                arrow_fields.append(
                    pa.field(
                        field.column_name,
                        pa.large_binary(),
                        metadata={
                            "geometry_type": geometry.geometry_type_name,
                            "srs_id": str(geometry.srs_id),
                        },
                    )
                )
            else:
                arrow_fields.append(
                    pa.field(field.column_name, arrow_type(field.storage_type))
                )
        return pa.schema(arrow_fields)

    # ------------------------------------------------------------------ #
    #  Rows
    # ------------------------------------------------------------------ #

    def query(
        self,
        where: Optional[str] = None,
        params: Sequence = (),
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> pa.Table:
        """
        Read feature rows into an Arrow table shaped by arrow_schema().

        ``where`` is an SQL expression with ``?`` placeholders bound from
        ``params``; statement keywords, comments and ';' are rejected.
        """
        schema = self.arrow_schema()
        columns = ", ".join(quote_identifier(name) for name in schema.names)
        sql = f"SELECT {columns} FROM {quote_identifier(self.table_name)}"
        if where:
            sql += f" WHERE {_sanitize_where(where)}"
        if order_by:
            sql += f" ORDER BY {_sanitize_order(order_by, schema.names)}"
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
            if offset:
                sql += f" OFFSET {int(offset)}"
        elif offset:
            sql += f" LIMIT -1 OFFSET {int(offset)}"

        records = self.geopackage.database.execute(sql, params)
        rows = [_coerce_row(dict(row), schema) for row in records]
        return pa.Table.from_pylist(rows, schema=schema)


def _sanitize_where(where: str) -> str:
    """
    Screen an SQL WHERE expression.

    - Reject statement keywords and subqueries
    - Reject comments and statement terminators
    """
    if _FORBIDDEN_PATTERNS.search(where):
        raise ValueError(f"Forbidden pattern in WHERE clause: {where}")
    if _FORBIDDEN_KEYWORDS.search(where):
        raise ValueError(f"Forbidden keyword in WHERE clause: {where}")
    return where


def _sanitize_order(order_by: str, column_names: Sequence[str]) -> str:
    """Only allow known column names + ASC/DESC."""
    sanitized = []
    for part in order_by.split(","):
        tokens = part.split()
        if not tokens:
            continue
        if tokens[0] not in column_names:
            raise ValueError(f"Invalid column name in ORDER BY: {tokens[0]}")
        direction = tokens[1].upper() if len(tokens) > 1 else ""
        if direction not in ("", "ASC", "DESC") or len(tokens) > 2:
            raise ValueError(f"Invalid sort direction: {part.strip()}")
        sanitized.append(f"{quote_identifier(tokens[0])} {direction}".strip())
    return ", ".join(sanitized)


def _coerce_row(row: dict, schema: pa.Schema) -> dict:
    # SQLite stores BOOLEAN as 0/1 and may hand back ints for REAL columns
    for field in schema:
        value = row.get(field.name)
        if value is None:
            continue
        if pa.types.is_boolean(field.type):
            row[field.name] = bool(value)
        elif pa.types.is_floating(field.type):
            row[field.name] = float(value)
        elif pa.types.is_string(field.type) and not isinstance(value, str):
            row[field.name] = str(value)
    return row
