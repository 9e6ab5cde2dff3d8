"""Tests for FeatureTable creation and lazily loaded metadata."""

import logging
import sqlite3
from datetime import datetime, timedelta, timezone

import pyarrow as pa
import pytest
from pydantic import ValidationError
from shapely import wkb as wkb_mod
from shapely.geometry import Point

from gpkg_geo.features.geometry import Dimension
from gpkg_geo.features.models import AttributeSpec, FeatureSchema, GeometryDescriptor
from gpkg_geo.features.table import FeatureTable
from gpkg_geo.store.database import RecordSet
from gpkg_geo.store.exceptions import (
    OrphanTableError,
    ReferenceIntegrityError,
    SchemaValidationError,
    TransactionError,
)
from gpkg_geo.store.models import ColumnConstraint
from gpkg_geo.store.system_tables import (
    CONTENTS,
    DATA_COLUMNS,
    GEOMETRY_COLUMNS,
)


def _with_geometry(schema, **changes):
    geometry = schema.geometry.model_copy(update=changes)
    return schema.model_copy(update={"geometry": geometry})


class TestCreate:
    """Test table creation and catalog registration."""

    def test_table_name_spaces_replaced(self, geopackage):
        table = FeatureTable(geopackage, "my sample table")
        assert table.table_name == "my_sample_table"

    def test_create_returns_true(self, geopackage, points_schema, sample_extent):
        table = geopackage.feature_table("sample_points")
        assert table.create(points_schema, sample_extent) is True
        assert table.is_registered()
        assert table.exists_in_database()

    def test_fields_after_create(self, points_table):
        names = [f.column_name for f in points_table.fields()]
        assert names == ["feature_id", "points", "name", "area"]

    def test_storage_types_after_create(self, points_table):
        types = {f.column_name: f.storage_type for f in points_table.fields()}
        assert types == {
            "feature_id": "TEXT",
            "points": "POINT",
            "name": "TEXT",
            "area": "DOUBLE",
        }

    def test_geometry_info_after_create(self, points_table):
        info = points_table.geometry_info()
        assert info.srs_id == 4326
        assert info.geometry_type_name == "POINT"
        assert info.column_name == "points"
        assert info.organization == "EPSG"
        assert "WGS 84" in info.definition
        assert info.z == Dimension.OPTIONAL
        assert info.m == Dimension.OPTIONAL

    def test_catalog_rows_written(self, points_table, count_rows):
        name = points_table.table_name
        assert count_rows(CONTENTS, table_name=name) == 1
        assert count_rows(GEOMETRY_COLUMNS, table_name=name) == 1
        # feature id + geometry + two attributes
        assert count_rows(DATA_COLUMNS, table_name=name) == 4

    def test_bounds_after_create(self, points_table):
        assert points_table.bounds().as_tuple() == (0.0, 0.0, 10.0, 10.0)
        assert points_table.bounds().to_box().area == 100.0

    def test_last_change_is_recent(self, points_table):
        last_change = points_table.last_change()
        assert last_change.tzinfo == timezone.utc
        assert datetime.now(timezone.utc) - last_change < timedelta(minutes=5)

    def test_description_stored(self, points_table):
        assert points_table.description() == "Sample points"

    def test_extent_from_shapely_geometry(self, geopackage, points_schema):
        table = geopackage.feature_table("from_geometry")
        table.create(points_schema, Point(3, 4).buffer(1))
        assert table.bounds().as_tuple() == pytest.approx((2.0, 3.0, 4.0, 5.0))

    def test_dimension_flags_stored(self, geopackage, parcels_schema):
        table = geopackage.feature_table("parcels")
        table.create(parcels_schema, (0, 0, 1, 1))
        info = table.geometry_info()
        assert info.geometry_type_name == "POLYGON"
        assert info.z == Dimension.PROHIBITED
        assert info.m == Dimension.PROHIBITED

    def test_custom_feature_id_field(self, geopackage, points_schema):
        table = FeatureTable(geopackage, "custom_ids", feature_id_field="fid_text")
        table.create(points_schema, (0, 0, 1, 1))
        fid = table.field("fid_text")
        assert fid.feature_id is True
        assert fid.display_name == "FeatureID"

    def test_attribute_named_feature_id_label(self, geopackage, points_schema):
        schema = points_schema.model_copy(
            update={"attributes": (AttributeSpec(name="FeatureID", binding=str),)}
        )
        table = geopackage.feature_table("labelled")
        assert table.create(schema, (0, 0, 1, 1)) is True
        assert table.field("FeatureID").display_name == "FeatureID"
        assert table.field("feature_id").display_name == "feature_id"
        assert table.field("feature_id").feature_id is True

    def test_geometry_named_feature_id_label(self, geopackage, points_schema):
        schema = _with_geometry(points_schema, name="FeatureID")
        table = geopackage.feature_table("labelled_geometry")
        assert table.create(schema, (0, 0, 1, 1)) is True
        assert table.geometry_info().column_name == "FeatureID"
        assert table.field("feature_id").display_name == "feature_id"

    def test_case_variant_of_orphan_replaced(self, geopackage, points_schema):
        geopackage.database.execute('CREATE TABLE "Legacy" (legacy INTEGER)')
        table = geopackage.feature_table("legacy")
        assert table.create(points_schema, (0, 0, 1, 1)) is True
        assert "legacy" not in [c.name for c in geopackage.database.table_info("legacy")]


class TestCreateIdempotence:
    """Test repeated creation and orphan handling."""

    def test_second_create_is_noop(self, points_table, points_schema, count_rows, caplog):
        with caplog.at_level(logging.WARNING):
            assert points_table.create(points_schema, (0, 0, 1, 1)) is True
        assert "already defined" in caplog.text
        assert count_rows(CONTENTS, table_name=points_table.table_name) == 1
        assert count_rows(DATA_COLUMNS, table_name=points_table.table_name) == 4
        # Extent of the first creation is kept
        assert points_table.bounds().as_tuple() == (0.0, 0.0, 10.0, 10.0)

    def test_second_instance_is_noop(self, points_table, geopackage, points_schema, count_rows):
        again = geopackage.feature_table("sample points")
        assert again.create(points_schema, (0, 0, 10, 10)) is True
        assert count_rows(GEOMETRY_COLUMNS, table_name="sample_points") == 1

    def test_orphan_table_replaced(self, geopackage, points_schema, count_rows, caplog):
        db = geopackage.database
        db.execute('CREATE TABLE "orphan" (legacy INTEGER)')
        db.execute('INSERT INTO "orphan" (legacy) VALUES (1)')

        table = geopackage.feature_table("orphan")
        with caplog.at_level(logging.WARNING):
            assert table.create(points_schema, (0, 0, 1, 1)) is True

        assert "Replacing table orphan" in caplog.text
        columns = [c.name for c in db.table_info("orphan")]
        assert "legacy" not in columns
        assert columns == ["id", "feature_id", "points", "name", "area"]
        assert len(db.execute('SELECT * FROM "orphan"')) == 0
        assert count_rows(CONTENTS, table_name="orphan") == 1

    def test_orphan_kept_when_replacement_disabled(self, geopackage, points_schema, count_rows):
        db = geopackage.database
        db.execute('CREATE TABLE "orphan" (legacy INTEGER)')
        db.execute('INSERT INTO "orphan" (legacy) VALUES (1)')

        table = FeatureTable(geopackage, "orphan", drop_orphans=False)
        with pytest.raises(OrphanTableError):
            table.create(points_schema, (0, 0, 1, 1))

        assert len(db.execute('SELECT * FROM "orphan"')) == 1
        assert count_rows(CONTENTS, table_name="orphan") == 0

    def test_container_default_for_orphans(self, gpkg_path, points_schema):
        from gpkg_geo.store.geopackage import GeoPackage

        with GeoPackage(gpkg_path, drop_orphans=False) as gpkg:
            gpkg.database.execute('CREATE TABLE "orphan" (legacy INTEGER)')
            with pytest.raises(OrphanTableError):
                gpkg.feature_table("orphan").create(points_schema, (0, 0, 1, 1))


class TestCreateFailures:
    """Test that rejected creations leave no trace."""

    def _assert_untouched(self, geopackage, count_rows, name):
        assert not geopackage.database.table_exists(name)
        assert count_rows(CONTENTS, table_name=name) == 0
        assert count_rows(GEOMETRY_COLUMNS, table_name=name) == 0
        assert count_rows(DATA_COLUMNS, table_name=name) == 0

    def test_unknown_srs(self, geopackage, points_schema, count_rows):
        schema = _with_geometry(points_schema, srs_id=3857)
        table = geopackage.feature_table("no_srs")
        with pytest.raises(ReferenceIntegrityError, match="3857"):
            table.create(schema, (0, 0, 1, 1))
        self._assert_untouched(geopackage, count_rows, "no_srs")

    def test_unknown_srs_never_reaches_database(self, geopackage, points_schema, monkeypatch):
        def fail(statements):
            raise AssertionError("batch must not be submitted")

        monkeypatch.setattr(geopackage.database, "execute_batch", fail)
        schema = _with_geometry(points_schema, srs_id=3857)
        with pytest.raises(ReferenceIntegrityError):
            geopackage.feature_table("no_srs").create(schema, (0, 0, 1, 1))

    def test_unsupported_geometry_type(self, geopackage, points_schema, count_rows, monkeypatch):
        def fail(statements):
            raise AssertionError("batch must not be submitted")

        monkeypatch.setattr(geopackage.database, "execute_batch", fail)
        schema = _with_geometry(points_schema, geometry_type="CIRCLE")
        with pytest.raises(SchemaValidationError, match="Invalid geometry type"):
            geopackage.feature_table("circles").create(schema, (0, 0, 1, 1))
        self._assert_untouched(geopackage, count_rows, "circles")

    def test_unsupported_geometry_checked_before_registration(self, points_table, points_schema):
        schema = _with_geometry(points_schema, geometry_type="CIRCLE")
        with pytest.raises(SchemaValidationError):
            points_table.create(schema, (0, 0, 1, 1))

    def test_empty_geometry_name(self, geopackage, points_schema, count_rows):
        schema = _with_geometry(points_schema, name="  ")
        with pytest.raises(SchemaValidationError, match="geometry attribute"):
            geopackage.feature_table("unnamed").create(schema, (0, 0, 1, 1))
        self._assert_untouched(geopackage, count_rows, "unnamed")

    def test_unknown_constraint(self, geopackage, count_rows):
        schema = FeatureSchema(
            geometry=GeometryDescriptor(name="geom", geometry_type="POINT", srs_id=4326),
            attributes=[AttributeSpec(name="code", binding=str, constraint_name="missing")],
        )
        with pytest.raises(ReferenceIntegrityError, match="missing"):
            geopackage.feature_table("codes").create(schema, (0, 0, 1, 1))
        self._assert_untouched(geopackage, count_rows, "codes")

    def _stale_data_column(self, geopackage, table_name):
        # Collides with the creation batch on PRIMARY KEY (table_name, column_name)
        geopackage.database.execute(
            f"INSERT INTO {DATA_COLUMNS} (table_name, column_name, name) VALUES (?, ?, ?)",
            (table_name, "name", "stale"),
        )

    def test_failed_statement_rolls_back(self, geopackage, points_schema, count_rows):
        self._stale_data_column(geopackage, "rolled_back")
        table = geopackage.feature_table("rolled_back")
        with pytest.raises(TransactionError, match="UNIQUE"):
            table.create(points_schema, (0, 0, 1, 1))
        assert not geopackage.database.table_exists("rolled_back")
        assert count_rows(CONTENTS, table_name="rolled_back") == 0
        assert count_rows(GEOMETRY_COLUMNS, table_name="rolled_back") == 0
        assert count_rows(DATA_COLUMNS, table_name="rolled_back") == 1

    def test_failed_orphan_replacement_keeps_orphan(self, geopackage, points_schema):
        db = geopackage.database
        db.execute('CREATE TABLE "orphan" (legacy INTEGER)')
        self._stale_data_column(geopackage, "orphan")
        with pytest.raises(TransactionError):
            geopackage.feature_table("orphan").create(points_schema, (0, 0, 1, 1))
        assert [c.name for c in db.table_info("orphan")] == ["legacy"]

    def test_duplicate_display_names(self, geopackage, points_schema, count_rows, monkeypatch):
        def fail(statements):
            raise AssertionError("batch must not be submitted")

        monkeypatch.setattr(geopackage.database, "execute_batch", fail)
        schema = points_schema.model_copy(
            update={
                "attributes": (
                    AttributeSpec(name="a", binding=str, display_name="x"),
                    AttributeSpec(name="b", binding=str, display_name="x"),
                )
            }
        )
        with pytest.raises(SchemaValidationError, match="Duplicate data column name"):
            geopackage.feature_table("labels").create(schema, (0, 0, 1, 1))
        self._assert_untouched(geopackage, count_rows, "labels")

    def test_case_variant_of_registered_table(self, geopackage, points_schema, count_rows):
        geopackage.feature_table("Roads").create(points_schema, (0, 0, 1, 1))
        with pytest.raises(SchemaValidationError, match="clashes with registered table Roads"):
            geopackage.feature_table("roads").create(points_schema, (0, 0, 1, 1))
        assert count_rows(CONTENTS, table_name="Roads") == 1
        assert count_rows(CONTENTS, table_name="roads") == 0

    def test_unset_dimension_rejected(self):
        with pytest.raises(ValidationError):
            GeometryDescriptor(name="geom", geometry_type="POINT", srs_id=4326, z=None)
        with pytest.raises(ValidationError):
            GeometryDescriptor(name="geom", geometry_type="POINT", srs_id=4326, m=-1)


class TestMetadataLoading:
    """Test lazy loading of table metadata from the catalog."""

    def test_discovered_table(self, points_table, geopackage):
        discovered = FeatureTable(geopackage, "sample_points")
        assert [f.column_name for f in discovered.fields()] == [
            "feature_id",
            "points",
            "name",
            "area",
        ]
        assert discovered.geometry_info().srs_id == 4326

    def test_loaded_once(self, points_table, geopackage, monkeypatch):
        discovered = FeatureTable(geopackage, "sample_points")
        calls = []
        real_query = geopackage.catalog.query

        def counting_query(table, **equals):
            calls.append(table)
            return real_query(table, **equals)

        monkeypatch.setattr(geopackage.catalog, "query", counting_query)

        discovered.fields()
        loaded = len(calls)
        discovered.bounds()
        discovered.last_change()
        discovered.geometry_info()
        discovered.field("area")
        assert loaded > 0
        assert len(calls) == loaded

    def test_reload_reads_again(self, points_table, geopackage):
        geopackage.database.execute(
            f"UPDATE {DATA_COLUMNS} SET title = 'Surface' "
            "WHERE table_name = 'sample_points' AND column_name = 'area'"
        )
        assert points_table.field("area").title == "Area"
        points_table.reload()
        assert points_table.field("area").title == "Surface"

    def test_extended_metadata_merged(self, points_table):
        area = points_table.field("area")
        assert area.title == "Area"
        assert area.description == "Area in square metres"
        assert area.display_name == "area"
        assert area.storage_type == "DOUBLE"
        assert area.feature_id is False

    def test_feature_id_and_geometry_marked(self, points_table):
        assert points_table.field("feature_id").feature_id is True
        geometry = points_table.field("points")
        assert geometry.geometry is True
        assert geometry.title == "Feature Geometry"

    def test_column_without_catalog_entry(self, points_table, geopackage):
        geopackage.database.execute('ALTER TABLE "sample_points" ADD COLUMN extra INTEGER')
        points_table.reload()
        extra = points_table.field("extra")
        assert extra.storage_type == "INTEGER"
        assert extra.title is None
        assert [f.column_name for f in points_table.fields()][-1] == "extra"

    def test_constraint_resolved(self, geopackage):
        geopackage.add_data_column_constraint(
            ColumnConstraint(
                name="zoning_codes",
                constraint_type="enum",
                values=("R1", "R2", "C1"),
            )
        )
        schema = FeatureSchema(
            geometry=GeometryDescriptor(name="geom", geometry_type="POLYGON", srs_id=4326),
            attributes=[AttributeSpec(name="zoning", binding=str, constraint_name="zoning_codes")],
        )
        table = geopackage.feature_table("zoned")
        table.create(schema, (0, 0, 1, 1))

        zoning = table.field("zoning")
        assert zoning.constraint_name == "zoning_codes"
        assert zoning.constraint.values == ("R1", "R2", "C1")
        assert zoning.constraint.allows("R2")
        assert not zoning.constraint.allows("I1")

    def test_missing_table(self, geopackage):
        table = geopackage.feature_table("nowhere")
        with pytest.raises(ReferenceIntegrityError, match="does not exist"):
            table.fields()
        with pytest.raises(ReferenceIntegrityError):
            table.geometry_info()
        assert table.bounds() is None
        assert table.last_change() is None


class TestGeometryInfoResolution:
    """Test hard failures while resolving geometry info."""

    def test_missing_geometry_row(self, points_table, geopackage):
        geopackage.database.execute(
            f"DELETE FROM {GEOMETRY_COLUMNS} WHERE table_name = 'sample_points'"
        )
        table = FeatureTable(geopackage, "sample_points")
        with pytest.raises(ReferenceIntegrityError, match="No geometry field"):
            table.geometry_info()
        with pytest.raises(ReferenceIntegrityError):
            table.fields()
        assert table.bounds() is None

    def test_dangling_srs(self, points_table, geopackage):
        geopackage.database.execute(
            f"UPDATE {GEOMETRY_COLUMNS} SET srs_id = 9999 WHERE table_name = 'sample_points'"
        )
        table = FeatureTable(geopackage, "sample_points")
        with pytest.raises(ReferenceIntegrityError, match="SRS 9999 not defined"):
            table.geometry_info()

    def test_ambiguous_geometry_rows(self, points_table, geopackage, monkeypatch):
        real_query = geopackage.catalog.query

        def doubled(table, **equals):
            rows = real_query(table, **equals)
            if table == GEOMETRY_COLUMNS:
                return RecordSet(list(rows) * 2, rows.columns)
            return rows

        monkeypatch.setattr(geopackage.catalog, "query", doubled)
        table = FeatureTable(geopackage, "sample_points")
        with pytest.raises(ReferenceIntegrityError, match="only one is supported"):
            table.geometry_info()

    def test_unset_dimension_flags(self, points_table, geopackage):
        geopackage.database.execute(
            f"UPDATE {GEOMETRY_COLUMNS} SET z = -1, m = 1 WHERE table_name = 'sample_points'"
        )
        info = points_table.reload().geometry_info
        assert info.z is None
        assert info.m == Dimension.MANDATORY

    def test_unreadable_data_columns(self, points_table, geopackage, monkeypatch):
        real_query = geopackage.catalog.query

        def broken(table, **equals):
            if table == DATA_COLUMNS:
                raise sqlite3.OperationalError("database disk image is malformed")
            return real_query(table, **equals)

        monkeypatch.setattr(geopackage.catalog, "query", broken)
        table = FeatureTable(geopackage, "sample_points")
        with pytest.raises(ReferenceIntegrityError, match="malformed") as excinfo:
            table.fields()
        assert isinstance(excinfo.value.__cause__, sqlite3.OperationalError)

    def test_failed_load_is_retried(self, points_table, geopackage):
        geopackage.database.execute(
            f"UPDATE {GEOMETRY_COLUMNS} SET srs_id = 9999 WHERE table_name = 'sample_points'"
        )
        table = FeatureTable(geopackage, "sample_points")
        with pytest.raises(ReferenceIntegrityError):
            table.fields()
        geopackage.database.execute(
            f"UPDATE {GEOMETRY_COLUMNS} SET srs_id = 4326 WHERE table_name = 'sample_points'"
        )
        assert len(table.fields()) == 4


class TestMetadataDegradation:
    """Test that extent/last change failures are logged, not raised."""

    def test_invalid_last_change(self, points_table, geopackage, caplog):
        geopackage.database.execute(
            f"UPDATE {CONTENTS} SET last_change = 'yesterday' WHERE table_name = 'sample_points'"
        )
        table = FeatureTable(geopackage, "sample_points")
        with caplog.at_level(logging.WARNING):
            assert len(table.fields()) == 4
        assert table.last_change() is None
        assert table.bounds() is None
        assert "Bounds/last change unavailable" in caplog.text

    def test_unregistered_table(self, points_table, geopackage, caplog):
        geopackage.database.execute(
            f"DELETE FROM {CONTENTS} WHERE table_name = 'sample_points'"
        )
        table = FeatureTable(geopackage, "sample_points")
        with caplog.at_level(logging.WARNING):
            info = table.geometry_info()
        assert info.srs_id == 4326
        assert table.bounds() is None
        assert "not registered" in caplog.text

    def test_null_extent(self, points_table, geopackage):
        geopackage.database.execute(
            f"UPDATE {CONTENTS} SET min_x = NULL WHERE table_name = 'sample_points'"
        )
        points_table.reload()
        assert points_table.bounds() is None
        assert points_table.last_change() is not None


class TestArrowSchema:
    """Test the Arrow view of the table."""

    def test_arrow_schema(self, points_table):
        schema = points_table.arrow_schema()
        assert schema.names == ["feature_id", "points", "name", "area"]
        assert schema.field("feature_id").type == pa.string()
        assert schema.field("points").type == pa.large_binary()
        assert schema.field("area").type == pa.float64()
        assert schema.field("points").metadata[b"geometry_type"] == b"POINT"
        assert schema.field("points").metadata[b"srs_id"] == b"4326"

    def test_integer_and_boolean_columns(self, geopackage, parcels_schema):
        table = geopackage.feature_table("parcels")
        table.create(parcels_schema, (0, 0, 1, 1))
        schema = table.arrow_schema()
        assert schema.field("floors").type == pa.int64()
        assert schema.field("vacant").type == pa.bool_()


class TestQuery:
    """Test reading feature rows."""

    @pytest.fixture
    def populated(self, points_table, geopackage):
        for i in range(10):
            geopackage.database.execute(
                'INSERT INTO "sample_points" (feature_id, points, name, area) '
                "VALUES (?, ?, ?, ?)",
                (f"pt.{i}", wkb_mod.dumps(Point(i, i)), f"P{i}", i),
            )
        return points_table

    def test_query_all(self, populated):
        result = populated.query()
        assert result.num_rows == 10
        assert result.schema.names == ["feature_id", "points", "name", "area"]
        assert result.column("area").to_pylist()[3] == 3.0

    def test_geometry_round_trip(self, populated):
        result = populated.query(where="feature_id = ?", params=("pt.4",))
        geom = wkb_mod.loads(result.column("points")[0].as_py())
        assert (geom.x, geom.y) == (4.0, 4.0)

    def test_where_with_params(self, populated):
        result = populated.query(where="area >= ?", params=(7,))
        assert sorted(result.column("name").to_pylist()) == ["P7", "P8", "P9"]

    def test_order_limit_offset(self, populated):
        result = populated.query(order_by="area DESC", limit=3, offset=1)
        assert result.column("name").to_pylist() == ["P8", "P7", "P6"]

    def test_empty_result_keeps_schema(self, populated):
        result = populated.query(where="area > ?", params=(100,))
        assert result.num_rows == 0
        assert result.schema == populated.arrow_schema()

    def test_where_rejects_statements(self, populated):
        with pytest.raises(ValueError, match="Forbidden"):
            populated.query(where="1=1; DROP TABLE sample_points")
        with pytest.raises(ValueError, match="Forbidden keyword"):
            populated.query(where="name IN (SELECT name FROM gpkg_contents)")

    def test_order_by_rejects_unknown_column(self, populated):
        with pytest.raises(ValueError, match="Invalid column"):
            populated.query(order_by="id DESC")
        with pytest.raises(ValueError, match="sort direction"):
            populated.query(order_by="area SIDEWAYS")
