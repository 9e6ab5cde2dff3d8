"""GeoPackage storage: SQLite container and system catalog access."""

from .catalog import get_geopackage, get_feature_table, list_feature_tables
from .exceptions import (
    GeoPackageError,
    MetadataDegradation,
    OrphanTableError,
    ReferenceIntegrityError,
    SchemaValidationError,
    TransactionError,
)
from .geopackage import GeoPackage
from .models import ColumnConstraint, SpatialReference

__all__ = [
    "get_geopackage",
    "get_feature_table",
    "list_feature_tables",
    "GeoPackage",
    "ColumnConstraint",
    "SpatialReference",
    "GeoPackageError",
    "MetadataDegradation",
    "OrphanTableError",
    "ReferenceIntegrityError",
    "SchemaValidationError",
    "TransactionError",
]
