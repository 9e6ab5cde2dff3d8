"""
The GeoPackage container.

Composes the SQLite database and the system catalog, and is the object
the feature layer talks to for type encoding, geometry type checks, SRS
and constraint registration.
"""

import logging
import os
from typing import Optional

import pyproj
from pyproj.exceptions import CRSError

from .database import Database
from .exceptions import ReferenceIntegrityError, SchemaValidationError
from .models import ColumnConstraint, SpatialReference
from .statements import Insert
from .system_tables import (
    CONTENTS,
    DATA_COLUMN_CONSTRAINTS,
    SPATIAL_REF_SYS,
    SystemCatalog,
)
from .types import encode_type

logger = logging.getLogger(__name__)

FEATURE_ID_FIELD_NAME = "feature_id"
TABLE_TYPE_FEATURES = "features"

# Core geometry types (GeoPackage 1.2 annex E)
GEOMETRY_TYPES = (
    "GEOMETRY",
    "POINT",
    "LINESTRING",
    "POLYGON",
    "MULTIPOINT",
    "MULTILINESTRING",
    "MULTIPOLYGON",
    "GEOMETRYCOLLECTION",
)


class GeoPackage:
    """An open GeoPackage file."""

    def __init__(
        self,
        path: str,
        feature_id_field: str = FEATURE_ID_FIELD_NAME,
        drop_orphans: bool = True,
    ):
        """
        Open (or create) the container at ``path``.

        feature_id_field: default feature-id column for feature tables.
        drop_orphans: whether feature tables may drop a physical table
            that has no gpkg_contents row before re-creating it.
        """
        if path != ":memory:":
            directory = os.path.dirname(os.path.abspath(path))
            os.makedirs(directory, exist_ok=True)
        self.path = path
        self.feature_id_field = feature_id_field
        self.drop_orphans = drop_orphans
        self.database = Database(path)
        self.catalog = SystemCatalog(self.database)
        self.catalog.initialize()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        self.database.close()

    def encode_type(self, binding) -> str:
        """Storage type name for an attribute binding."""
        return encode_type(binding)

    def is_geom_type_valid(self, geometry_type_name: Optional[str]) -> bool:
        if not geometry_type_name:
            return False
        return geometry_type_name.upper() in GEOMETRY_TYPES

    def add_srs(
        self,
        srs_id: int,
        organization: Optional[str] = None,
        definition: Optional[str] = None,
        srs_name: Optional[str] = None,
        organization_coordsys_id: Optional[int] = None,
        description: Optional[str] = None,
    ) -> SpatialReference:
        """
        Register a spatial reference system.

        When no definition is supplied, ``srs_id`` is treated as an EPSG code
        and name and WKT definition are taken from pyproj. Registering an
        id that already exists returns the stored row unchanged.
        """
        existing = self.catalog.get_srs(srs_id)
        if existing is not None:
            return existing

        if definition is None:
            try:
                crs = pyproj.CRS.from_epsg(srs_id)
            except CRSError as exc:
                raise ReferenceIntegrityError(
                    f"SRS {srs_id} is not a known EPSG code: {exc}"
                ) from exc
            definition = crs.to_wkt("WKT1_GDAL") or crs.to_wkt()
            srs_name = srs_name or crs.name
            organization = organization or "EPSG"

        srs = SpatialReference(
            srs_id=srs_id,
            srs_name=srs_name or f"{organization or 'EPSG'}:{srs_id}",
            organization=organization or "EPSG",
            organization_coordsys_id=(
                srs_id if organization_coordsys_id is None else organization_coordsys_id
            ),
            definition=definition,
            description=description,
        )
        self.database.execute_batch(
            [Insert(table=SPATIAL_REF_SYS, values=srs.model_dump())]
        )
        logger.info("Registered SRS %s (%s)", srs.srs_id, srs.srs_name)
        return srs

    def add_data_column_constraint(self, constraint: ColumnConstraint) -> bool:
        """Persist a constraint so attributes can reference it by name."""
        if self.catalog.get_constraint(constraint.name) is not None:
            raise SchemaValidationError(f"Constraint {constraint.name} already exists")

        base = {
            "constraint_name": constraint.name,
            "constraint_type": constraint.constraint_type,
            "description": constraint.description,
        }
        if constraint.constraint_type == "enum":
            rows = [dict(base, value=value) for value in constraint.values]
        elif constraint.constraint_type == "glob":
            rows = [dict(base, value=constraint.pattern)]
        else:
            rows = [
                dict(
                    base,
                    value=None,
                    min=constraint.min,
                    min_is_inclusive=constraint.min_inclusive,
                    max=constraint.max,
                    max_is_inclusive=constraint.max_inclusive,
                )
            ]
        return self.database.execute_batch(
            [Insert(table=DATA_COLUMN_CONSTRAINTS, values=row) for row in rows]
        )

    def feature_table_names(self) -> list[str]:
        rows = self.catalog.query(CONTENTS, data_type=TABLE_TYPE_FEATURES)
        return [row["table_name"] for row in rows]

    def feature_table(self, table_name: str):
        """A FeatureTable for ``table_name`` using this container's defaults."""
        from gpkg_geo.features.table import FeatureTable

        return FeatureTable(self, table_name)
