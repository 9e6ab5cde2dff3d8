#!/usr/bin/env python3
"""
Create sample feature tables in a GeoPackage for development.

Usage:
    python scripts/seed_test_data.py [path/to/output.gpkg]

Without an argument the GeoPackage from GPKG_CONFIG is used.
"""

import logging
import os
import random
import sys

import pyarrow as pa
from shapely.geometry import MultiPoint, Point, Polygon, box

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from gpkg_geo.features import AttributeSpec, FeatureSchema, GeometryDescriptor
from gpkg_geo.store import ColumnConstraint, GeoPackage
from gpkg_geo.store.catalog import get_geopackage


def seed_points(geopackage, table_name="sensor_observations"):
    """Create a point table covering random sensor locations."""
    random.seed(42)
    points = MultiPoint(
        [
            Point(random.uniform(-120, -70), random.uniform(25, 50))
            for _ in range(1000)
        ]
    )

    schema = FeatureSchema(
        geometry=GeometryDescriptor(name="location", geometry_type=Point, srs_id=4326),
        attributes=[
            AttributeSpec(name="sensor_id", binding=pa.string(), title="Sensor"),
            AttributeSpec(
                name="temperature",
                binding=pa.float64(),
                title="Temperature",
                description="Air temperature in degrees Celsius",
            ),
            AttributeSpec(name="humidity", binding=float, title="Relative humidity"),
        ],
        description="Random sensor observations",
    )
    table = geopackage.feature_table(table_name)
    table.create(schema, points)
    print(f"Created {table_name} with extent {table.bounds().as_tuple()}")


def seed_parcels(geopackage, table_name="parcels"):
    """Create a polygon table with a zoning enum constraint."""
    if geopackage.catalog.get_constraint("zoning_codes") is None:
        geopackage.add_data_column_constraint(
            ColumnConstraint(
                name="zoning_codes",
                constraint_type="enum",
                values=("R1", "R2", "C1", "C2", "I1"),
            )
        )

    schema = FeatureSchema(
        geometry=GeometryDescriptor(name="geometry", geometry_type=Polygon, srs_id=4326),
        attributes=[
            AttributeSpec(name="parcel_id", binding=str),
            AttributeSpec(name="area_sqm", binding="double"),
            AttributeSpec(name="zoning", binding=str, constraint_name="zoning_codes"),
            AttributeSpec(name="assessed_value", binding=pa.float64()),
        ],
    )
    table = geopackage.feature_table(table_name)
    table.create(schema, box(-120, 25, -70, 50))
    print(f"Created {table_name} with {len(table.fields())} fields")


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if len(sys.argv) > 1:
        geopackage = GeoPackage(sys.argv[1])
    else:
        geopackage = get_geopackage()
    with geopackage:
        seed_points(geopackage)
        seed_parcels(geopackage)
    print("Seed data complete!")


if __name__ == "__main__":
    main()
