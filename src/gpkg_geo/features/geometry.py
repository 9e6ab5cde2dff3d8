"""
Geometry type and dimensionality utilities.

Handles:
- Geometry type names from strings or Shapely geometry classes
- z/m dimensionality flags as stored in gpkg_geometry_columns
"""

from enum import IntEnum
from typing import Optional

from shapely.geometry.base import BaseGeometry

# Read from gpkg_geometry_columns.z/m when a flag was never specified
UNSET_DIMENSION = -1

SHAPELY_GEOMETRY_TYPE_MAP = {
    "Point": "POINT",
    "LineString": "LINESTRING",
    "Polygon": "POLYGON",
    "MultiPoint": "MULTIPOINT",
    "MultiLineString": "MULTILINESTRING",
    "MultiPolygon": "MULTIPOLYGON",
    "GeometryCollection": "GEOMETRYCOLLECTION",
    "BaseGeometry": "GEOMETRY",
}


class Dimension(IntEnum):
    """z/m values of gpkg_geometry_columns."""

    PROHIBITED = 0
    MANDATORY = 1
    OPTIONAL = 2


def geometry_type_name(value) -> str:
    """
    Normalise a geometry type to its GeoPackage name.

    Accepts a type name ("Point", "multipolygon"), a Shapely geometry
    class (shapely.geometry.Point) or a Shapely geometry instance.
    Unknown names are returned upper-cased; validity is checked by the
    container.
    """
    if isinstance(value, BaseGeometry):
        value = value.geom_type
    elif isinstance(value, type) and issubclass(value, BaseGeometry):
        value = value.__name__
    if value is None:
        return ""
    value = str(value).strip()
    return SHAPELY_GEOMETRY_TYPE_MAP.get(value, value.upper())


def decode_dimension(value) -> Optional[Dimension]:
    """Stored z/m value -> Dimension, None when not specified."""
    if value is None or int(value) == UNSET_DIMENSION:
        return None
    return Dimension(int(value))
