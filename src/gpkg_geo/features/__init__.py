"""Vector feature tables: schema translation and lazily loaded table metadata."""

from .geometry import Dimension
from .models import (
    AttributeSpec,
    Extent,
    FeatureSchema,
    FieldMetadata,
    GeometryDescriptor,
    GeometryInfo,
    TableMetadata,
)
from .table import FeatureTable
from .translator import SchemaTranslator

__all__ = [
    "AttributeSpec",
    "Dimension",
    "Extent",
    "FeatureSchema",
    "FeatureTable",
    "FieldMetadata",
    "GeometryDescriptor",
    "GeometryInfo",
    "SchemaTranslator",
    "TableMetadata",
]
