"""
Pydantic models for feature tables.

Input side: FeatureSchema (attributes + one geometry descriptor) and
Extent. Output side: FieldMetadata, GeometryInfo and the TableMetadata
unit the table loads in one go.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from shapely.geometry import box

from gpkg_geo.store.exceptions import SchemaValidationError
from gpkg_geo.store.models import ColumnConstraint

from .geometry import Dimension


class Extent(BaseModel):
    """An informative bounding box (not necessarily the minimum one)."""

    model_config = ConfigDict(frozen=True)

    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @model_validator(mode="after")
    def _check_order(self):
        if self.min_x > self.max_x or self.min_y > self.max_y:
            raise ValueError(
                f"Extent minimum ({self.min_x}, {self.min_y}) exceeds "
                f"maximum ({self.max_x}, {self.max_y})"
            )
        return self

    @classmethod
    def from_value(cls, value) -> "Extent":
        """Build from an Extent, a (min_x, min_y, max_x, max_y) sequence or a Shapely geometry."""
        if isinstance(value, cls):
            return value
        if hasattr(value, "bounds"):
            value = value.bounds
        try:
            min_x, min_y, max_x, max_y = value
            return cls(min_x=min_x, min_y=min_y, max_x=max_x, max_y=max_y)
        except (TypeError, ValueError, ValidationError) as exc:
            raise SchemaValidationError(f"Invalid extent {value!r}: {exc}") from exc

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (self.min_x, self.min_y, self.max_x, self.max_y)

    def to_box(self):
        """Shapely polygon covering this extent."""
        return box(*self.as_tuple())


class GeometryDescriptor(BaseModel):
    """The single geometry attribute of a feature schema."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    geometry_type: Any  # type name or Shapely geometry class
    srs_id: int
    z: Dimension = Dimension.OPTIONAL
    m: Dimension = Dimension.OPTIONAL


class AttributeSpec(BaseModel):
    """A non-geometry attribute and its optional gpkg_data_columns metadata."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    binding: Any  # Python class, pyarrow DataType or simple type name
    display_name: Optional[str] = None
    title: Optional[str] = None
    description: str = ""
    mime_type: Optional[str] = None
    constraint_name: Optional[str] = None


class FeatureSchema(BaseModel):
    """Ordered attributes plus exactly one geometry attribute."""

    model_config = ConfigDict(frozen=True)

    attributes: tuple[AttributeSpec, ...] = ()
    geometry: GeometryDescriptor
    description: str = ""


class FieldMetadata(BaseModel):
    """
    A physical column merged with its gpkg_data_columns row, if any.

    storage_type always comes from table introspection; the catalog only
    contributes the descriptive fields.
    """

    model_config = ConfigDict(frozen=True)

    column_name: str
    storage_type: str
    feature_id: bool = False
    geometry: bool = False
    display_name: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    mime_type: Optional[str] = None
    constraint_name: Optional[str] = None
    constraint: Optional[ColumnConstraint] = None


class GeometryInfo(BaseModel):
    """Geometry column details resolved from gpkg_geometry_columns and gpkg_spatial_ref_sys."""

    model_config = ConfigDict(frozen=True)

    column_name: str
    geometry_type_name: str
    srs_id: int
    z: Optional[Dimension] = None
    m: Optional[Dimension] = None
    organization: str
    definition: str


class TableMetadata(BaseModel):
    """Everything a refresh loads about one feature table."""

    model_config = ConfigDict(frozen=True)

    fields: dict[str, FieldMetadata] = Field(default_factory=dict)
    geometry_info: GeometryInfo
    extent: Optional[Extent] = None
    last_change: Optional[datetime] = None
    identifier: Optional[str] = None
    description: Optional[str] = None
