"""
Shared test fixtures.

Creates a fresh GeoPackage per test and sample feature schemas
for testing all components.
"""

import pyarrow as pa
import pytest
from shapely.geometry import Point, Polygon

from gpkg_geo.features.models import AttributeSpec, FeatureSchema, GeometryDescriptor
from gpkg_geo.store.geopackage import GeoPackage


@pytest.fixture
def gpkg_path(tmp_path):
    return str(tmp_path / "test.gpkg")


@pytest.fixture
def geopackage(gpkg_path):
    """An empty GeoPackage with only the system catalog."""
    gpkg = GeoPackage(gpkg_path)
    yield gpkg
    gpkg.close()


@pytest.fixture(autouse=True)
def reset_singleton():
    """Never leak the configured GeoPackage between tests."""
    from gpkg_geo.store.catalog import reset_geopackage

    reset_geopackage()
    yield
    reset_geopackage()


@pytest.fixture
def points_schema():
    """{name: string, area: double} with a point geometry in EPSG:4326."""
    return FeatureSchema(
        geometry=GeometryDescriptor(name="points", geometry_type=Point, srs_id=4326),
        attributes=[
            AttributeSpec(name="name", binding=str, title="Name"),
            AttributeSpec(
                name="area",
                binding=pa.float64(),
                title="Area",
                description="Area in square metres",
            ),
        ],
        description="Sample points",
    )


@pytest.fixture
def parcels_schema():
    return FeatureSchema(
        geometry=GeometryDescriptor(
            name="geometry", geometry_type=Polygon, srs_id=4326, z=0, m=0
        ),
        attributes=[
            AttributeSpec(name="parcel_id", binding="string"),
            AttributeSpec(name="zoning", binding=str),
            AttributeSpec(name="floors", binding=pa.int32()),
            AttributeSpec(name="vacant", binding=bool),
        ],
    )


@pytest.fixture
def sample_extent():
    return (0.0, 0.0, 10.0, 10.0)


@pytest.fixture
def points_table(geopackage, points_schema, sample_extent):
    """A created 'sample points' feature table."""
    table = geopackage.feature_table("sample points")
    table.create(points_schema, sample_extent)
    return table


@pytest.fixture
def count_rows(geopackage):
    """Number of rows in a system table matching the predicates."""

    def _count(table, **equals):
        return len(geopackage.catalog.query(table, **equals))

    return _count
