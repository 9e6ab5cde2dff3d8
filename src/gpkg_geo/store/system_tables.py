"""
GeoPackage system catalog (the gpkg_* tables).

Creates the catalog tables in a fresh container and offers
query-by-predicate access to them.
"""

import logging
from typing import Optional

from .database import Database, RecordSet
from .exceptions import ReferenceIntegrityError
from .models import ColumnConstraint, SpatialReference
from .statements import quote_identifier

logger = logging.getLogger(__name__)

SPATIAL_REF_SYS = "gpkg_spatial_ref_sys"
CONTENTS = "gpkg_contents"
GEOMETRY_COLUMNS = "gpkg_geometry_columns"
DATA_COLUMNS = "gpkg_data_columns"
DATA_COLUMN_CONSTRAINTS = "gpkg_data_column_constraints"

SYSTEM_TABLES = (
    SPATIAL_REF_SYS,
    CONTENTS,
    GEOMETRY_COLUMNS,
    DATA_COLUMNS,
    DATA_COLUMN_CONSTRAINTS,
)

GPKG_APPLICATION_ID = 0x47504B47  # "GPKG"
GPKG_USER_VERSION = 10200

_CREATE_SYSTEM_TABLES = (
    f"""
    CREATE TABLE IF NOT EXISTS {SPATIAL_REF_SYS} (
        srs_name TEXT NOT NULL,
        srs_id INTEGER NOT NULL PRIMARY KEY,
        organization TEXT NOT NULL,
        organization_coordsys_id INTEGER NOT NULL,
        definition TEXT NOT NULL,
        description TEXT
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {CONTENTS} (
        table_name TEXT NOT NULL PRIMARY KEY,
        data_type TEXT NOT NULL,
        identifier TEXT UNIQUE,
        description TEXT DEFAULT '',
        last_change DATETIME NOT NULL
            DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
        min_x DOUBLE,
        min_y DOUBLE,
        max_x DOUBLE,
        max_y DOUBLE,
        srs_id INTEGER,
        CONSTRAINT fk_gc_r_srs_id FOREIGN KEY (srs_id)
            REFERENCES {SPATIAL_REF_SYS}(srs_id)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {GEOMETRY_COLUMNS} (
        table_name TEXT NOT NULL,
        column_name TEXT NOT NULL,
        geometry_type_name TEXT NOT NULL,
        srs_id INTEGER NOT NULL,
        z TINYINT NOT NULL,
        m TINYINT NOT NULL,
        CONSTRAINT pk_geom_cols PRIMARY KEY (table_name, column_name),
        CONSTRAINT uk_gc_table_name UNIQUE (table_name),
        CONSTRAINT fk_gc_tn FOREIGN KEY (table_name)
            REFERENCES {CONTENTS}(table_name),
        CONSTRAINT fk_gc_srs FOREIGN KEY (srs_id)
            REFERENCES {SPATIAL_REF_SYS}(srs_id)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {DATA_COLUMNS} (
        table_name TEXT NOT NULL,
        column_name TEXT NOT NULL,
        name TEXT,
        title TEXT,
        description TEXT,
        mime_type TEXT,
        constraint_name TEXT,
        CONSTRAINT pk_gdc PRIMARY KEY (table_name, column_name),
        CONSTRAINT gdc_tn UNIQUE (table_name, name)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {DATA_COLUMN_CONSTRAINTS} (
        constraint_name TEXT NOT NULL,
        constraint_type TEXT NOT NULL,
        value TEXT,
        min NUMERIC,
        min_is_inclusive BOOLEAN,
        max NUMERIC,
        max_is_inclusive BOOLEAN,
        description TEXT,
        CONSTRAINT gdcc_ntv UNIQUE (constraint_name, constraint_type, value)
    )
    """,
)

WGS84_DEFINITION = (
    'GEOGCS["WGS 84",DATUM["WGS_1984",SPHEROID["WGS 84",6378137,298.257223563,'
    'AUTHORITY["EPSG","7030"]],AUTHORITY["EPSG","6326"]],PRIMEM["Greenwich",0,'
    'AUTHORITY["EPSG","8901"]],UNIT["degree",0.0174532925199433,'
    'AUTHORITY["EPSG","9122"]],AUTHORITY["EPSG","4326"]]'
)

# The three rows every GeoPackage must carry
DEFAULT_SPATIAL_REFERENCES = (
    SpatialReference(
        srs_id=4326,
        srs_name="WGS 84 geodetic",
        organization="EPSG",
        organization_coordsys_id=4326,
        definition=WGS84_DEFINITION,
        description="longitude/latitude coordinates in decimal degrees on the WGS 84 spheroid",
    ),
    SpatialReference(
        srs_id=-1,
        srs_name="Undefined cartesian SRS",
        organization="NONE",
        organization_coordsys_id=-1,
        definition="undefined",
        description="undefined cartesian coordinate reference system",
    ),
    SpatialReference(
        srs_id=0,
        srs_name="Undefined geographic SRS",
        organization="NONE",
        organization_coordsys_id=0,
        definition="undefined",
        description="undefined geographic coordinate reference system",
    ),
)


class SystemCatalog:
    """Read access to the gpkg_* tables of one container."""

    def __init__(self, database: Database):
        self.database = database

    def initialize(self):
        """Create any missing system tables and seed the mandatory SRS rows."""
        for ddl in _CREATE_SYSTEM_TABLES:
            self.database.execute(ddl)
        for srs in DEFAULT_SPATIAL_REFERENCES:
            self.database.execute(
                f"INSERT OR IGNORE INTO {SPATIAL_REF_SYS} "
                "(srs_name, srs_id, organization, organization_coordsys_id, "
                "definition, description) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    srs.srs_name,
                    srs.srs_id,
                    srs.organization,
                    srs.organization_coordsys_id,
                    srs.definition,
                    srs.description,
                ),
            )
        application_id = self.database.execute("PRAGMA application_id")[0][0]
        if application_id == 0:
            self.database.execute(f"PRAGMA application_id = {GPKG_APPLICATION_ID}")
            self.database.execute(f"PRAGMA user_version = {GPKG_USER_VERSION}")

    def query(self, table: str, **equals) -> RecordSet:
        """Rows of a system table matching every ``column=value`` predicate."""
        if table not in SYSTEM_TABLES:
            raise ValueError(f"{table} is not a GeoPackage system table")
        sql = f"SELECT * FROM {table}"
        if equals:
            predicates = " AND ".join(
                f"{quote_identifier(column)} = ?" for column in equals
            )
            sql += f" WHERE {predicates}"
        sql += " ORDER BY rowid"
        return self.database.execute(sql, tuple(equals.values()))

    def registered_name(self, table_name: str) -> Optional[str]:
        """gpkg_contents spelling of ``table_name``, compared case-insensitively."""
        rows = self.database.execute(
            f"SELECT table_name FROM {CONTENTS} WHERE table_name = ? COLLATE NOCASE",
            (table_name,),
        )
        return rows.get_str(0, "table_name") if rows else None

    def get_srs(self, srs_id: int) -> Optional[SpatialReference]:
        rows = self.query(SPATIAL_REF_SYS, srs_id=srs_id)
        if not rows:
            return None
        row = rows[0]
        return SpatialReference(
            srs_id=row["srs_id"],
            srs_name=row["srs_name"],
            organization=row["organization"],
            organization_coordsys_id=row["organization_coordsys_id"],
            definition=row["definition"],
            description=row["description"],
        )

    def srs_exists(self, srs_id: int) -> bool:
        return self.get_srs(srs_id) is not None

    def get_constraint(self, name: str) -> Optional[ColumnConstraint]:
        """Rebuild a named constraint from its rows, None if it is not defined."""
        rows = self.query(DATA_COLUMN_CONSTRAINTS, constraint_name=name)
        if not rows:
            return None

        kinds = {row["constraint_type"] for row in rows}
        if len(kinds) > 1:
            raise ReferenceIntegrityError(
                f"Constraint {name} is defined with several types: {sorted(kinds)}"
            )
        kind = kinds.pop()
        first = rows[0]

        if kind == "enum":
            return ColumnConstraint(
                name=name,
                constraint_type="enum",
                values=tuple(row["value"] for row in rows),
                description=first["description"],
            )
        if kind == "glob":
            return ColumnConstraint(
                name=name,
                constraint_type="glob",
                pattern=first["value"],
                description=first["description"],
            )
        return ColumnConstraint(
            name=name,
            constraint_type="range",
            min=rows.get_float(0, "min"),
            min_inclusive=bool(first["min_is_inclusive"]) if first["min_is_inclusive"] is not None else True,
            max=rows.get_float(0, "max"),
            max_inclusive=bool(first["max_is_inclusive"]) if first["max_is_inclusive"] is not None else True,
            description=first["description"],
        )
