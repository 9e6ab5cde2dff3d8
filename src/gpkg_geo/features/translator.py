"""
Schema translator. Turns a FeatureSchema into the ordered batch of
statement intents that creates a feature table and registers it in the
GeoPackage catalog.

Every check runs before the first statement is produced, so a rejected
schema never touches the container.
"""

import logging
from datetime import datetime
from typing import Optional

from gpkg_geo.store.dates import serialize_datetime
from gpkg_geo.store.exceptions import ReferenceIntegrityError, SchemaValidationError
from gpkg_geo.store.geopackage import TABLE_TYPE_FEATURES, GeoPackage
from gpkg_geo.store.statements import ColumnDef, CreateTable, Insert, Statement
from gpkg_geo.store.system_tables import CONTENTS, DATA_COLUMNS, GEOMETRY_COLUMNS

from .geometry import geometry_type_name
from .models import Extent, FeatureSchema

logger = logging.getLogger(__name__)

PRIMARY_KEY_COLUMN = "id"
FEATURE_ID_LABEL = "FeatureID"


class SchemaTranslator:
    """Builds creation batches for one GeoPackage."""

    def __init__(self, geopackage: GeoPackage):
        self.geopackage = geopackage

    def validate_geometry_type(self, schema: FeatureSchema) -> str:
        """GeoPackage geometry type name of the schema, or SchemaValidationError."""
        type_name = geometry_type_name(schema.geometry.geometry_type)
        if not self.geopackage.is_geom_type_valid(type_name):
            raise SchemaValidationError(
                f"Invalid geometry type for table: {schema.geometry.geometry_type!r}"
            )
        return type_name

    def translate(
        self,
        table_name: str,
        feature_id_field: str,
        schema: FeatureSchema,
        extent,
        last_change: Optional[datetime] = None,
    ) -> list[Statement]:
        """
        Validate ``schema`` and return the creation batch.

        Statement order is fixed: table DDL, gpkg_geometry_columns,
        gpkg_contents, then one gpkg_data_columns row for the feature id,
        the geometry and each attribute in schema order.
        """
        type_name = self.validate_geometry_type(schema)

        geometry = schema.geometry
        geom_name = (geometry.name or "").strip()
        if not geom_name:
            raise SchemaValidationError("Unable to decode geometry attribute.")

        extent = Extent.from_value(extent)

        reserved = {PRIMARY_KEY_COLUMN, feature_id_field.lower(), geom_name.lower()}
        if len(reserved) != 3:
            raise SchemaValidationError(
                f"Geometry column {geom_name} clashes with a reserved column "
                f"({PRIMARY_KEY_COLUMN}, {feature_id_field})"
            )

        columns = [
            ColumnDef(
                name=PRIMARY_KEY_COLUMN,
                type="INTEGER",
                primary_key=True,
                autoincrement=True,
            ),
            ColumnDef(name=feature_id_field, type="TEXT"),
            ColumnDef(name=geom_name, type=type_name),
        ]
        seen = set()
        for attribute in schema.attributes:
            key = attribute.name.lower()
            if key in reserved or key in seen:
                raise SchemaValidationError(
                    f"Duplicate or reserved attribute name: {attribute.name}"
                )
            seen.add(key)
            columns.append(
                ColumnDef(
                    name=attribute.name,
                    type=self.geopackage.encode_type(attribute.binding),
                )
            )

        # gpkg_data_columns.name is unique per table
        labels = [geom_name] + [a.display_name or a.name for a in schema.attributes]
        taken = set()
        for label in labels:
            if label in taken:
                raise SchemaValidationError(f"Duplicate data column name: {label}")
            taken.add(label)
        feature_id_label = next(
            (label for label in (FEATURE_ID_LABEL, feature_id_field) if label not in taken),
            None,
        )
        if feature_id_label is None:
            raise SchemaValidationError(
                f"No free data column name for the feature id: both "
                f"{FEATURE_ID_LABEL} and {feature_id_field} are taken"
            )

        srs_id = geometry.srs_id
        if not self.geopackage.catalog.srs_exists(srs_id):
            raise ReferenceIntegrityError(
                f"SRS {srs_id} does not exist in the gpkg_spatial_ref_sys table"
            )

        for attribute in schema.attributes:
            if (
                attribute.constraint_name
                and self.geopackage.catalog.get_constraint(attribute.constraint_name) is None
            ):
                raise ReferenceIntegrityError(
                    f"Constraint {attribute.constraint_name} referenced by "
                    f"{attribute.name} is not defined"
                )

        statements: list[Statement] = [
            CreateTable(table=table_name, columns=tuple(columns)),
            Insert(
                table=GEOMETRY_COLUMNS,
                values={
                    "table_name": table_name,
                    "column_name": geom_name,
                    "geometry_type_name": type_name,
                    "srs_id": srs_id,
                    "z": int(geometry.z),
                    "m": int(geometry.m),
                },
            ),
            Insert(
                table=CONTENTS,
                values={
                    "table_name": table_name,
                    "data_type": TABLE_TYPE_FEATURES,
                    "identifier": table_name,
                    "description": schema.description or "",
                    "last_change": serialize_datetime(last_change),
                    "min_x": extent.min_x,
                    "min_y": extent.min_y,
                    "max_x": extent.max_x,
                    "max_y": extent.max_y,
                    "srs_id": srs_id,
                },
            ),
            # Always describe the feature id so ids can be re-created on read
            Insert(
                table=DATA_COLUMNS,
                values={
                    "table_name": table_name,
                    "column_name": feature_id_field,
                    "name": feature_id_label,
                    "title": FEATURE_ID_LABEL,
                },
            ),
            Insert(
                table=DATA_COLUMNS,
                values={
                    "table_name": table_name,
                    "column_name": geom_name,
                    "name": geom_name,
                    "title": "Feature Geometry",
                },
            ),
        ]

        for attribute in schema.attributes:
            statements.append(
                Insert(
                    table=DATA_COLUMNS,
                    values={
                        "table_name": table_name,
                        "column_name": attribute.name,
                        "name": attribute.display_name or attribute.name,
                        "title": attribute.title,
                        "description": attribute.description,
                        "mime_type": attribute.mime_type,
                        "constraint_name": attribute.constraint_name,
                    },
                )
            )

        logger.debug(
            "Translated %s into %d statements", table_name, len(statements)
        )
        return statements
