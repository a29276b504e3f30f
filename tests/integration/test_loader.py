"""Integration tests for loading OSM files into the raw tables."""
import pytest

from osmgis.loader import drop_osm_tables, load
from osmgis.transform import extract_ways_as_polygons


class TestLoad:
    """Test the osmium based loader."""

    def test_counts(self, db, small_osm_file):
        result = load(db, "RAW", small_osm_file)
        assert result.ok
        assert result.table_name == "RAW"
        assert db.count("RAW_node") == 6
        assert db.count("RAW_node_tag") == 1
        assert db.count("RAW_way") == 2
        assert db.count("RAW_way_node") == 7
        assert db.count("RAW_way_tag") == 4
        assert db.count("RAW_relation") == 1
        assert db.count("RAW_way_member") == 1
        assert db.count("RAW_node_member") == 1
        assert db.count("RAW_relation_tag") == 1

    def test_node_geometry(self, db, small_osm_file):
        load(db, "RAW", small_osm_file)
        node = {f["id_node"]: f for f in db.features("RAW_node")}[2]
        assert node["the_geom"].x == pytest.approx(0.002)
        assert node["the_geom"].y == pytest.approx(0.001)

    def test_way_node_order(self, db, small_osm_file):
        load(db, "RAW", small_osm_file)
        rows = db.query("SELECT id_node, node_order FROM RAW_way_node WHERE id_way = 100 ORDER BY node_order")
        assert rows == [(1, 1), (2, 2), (3, 3), (4, 4), (1, 5)]

    def test_member_roles(self, db, small_osm_file):
        load(db, "RAW", small_osm_file)
        assert db.query("SELECT id_relation, id_way, role FROM RAW_way_member") == [(200, 100, "outer")]
        assert db.query("SELECT id_relation, id_node, role FROM RAW_node_member") == [(200, 6, "label")]

    def test_loaded_tables_transform(self, db, small_osm_file):
        """The loaded tables feed the transforms directly."""
        load(db, "RAW", small_osm_file)
        result = extract_ways_as_polygons(db, "RAW", 4326, {"building": None})
        assert result.ok
        assert [f["id"] for f in db.features(result.table_name)] == ["w100"]

    def test_missing_file(self, db, tmp_path):
        result = load(db, "RAW", tmp_path / "missing.osm")
        assert not result.ok
        assert result.error == "InvalidInput"
        assert not db.table_exists("RAW_node")

    def test_kept_tags(self, db, small_osm_file):
        """Only matching tags are stored, every element still is."""
        result = load(db, "RAW", small_osm_file, {"highway": None, "building": "yes"})
        assert result.ok
        assert db.query("SELECT tag_key, tag_value FROM RAW_way_tag ORDER BY tag_key") == [
            ("building", "yes"), ("highway", "primary")]
        assert db.count("RAW_node_tag") == 0
        assert db.count("RAW_relation_tag") == 0
        assert db.count("RAW_way") == 2
        assert db.count("RAW_node") == 6

    def test_malformed_tags(self, db, small_osm_file):
        result = load(db, "RAW", small_osm_file, "building")
        assert result.error == "InvalidSpecification"
        assert not db.table_exists("RAW_node")

    def test_bad_prefix(self, db, small_osm_file):
        assert load(db, "1RAW", small_osm_file).error == "InvalidInput"
        assert load(None, "RAW", small_osm_file).error == "InvalidInput"


class TestDropOsmTables:
    def test_drop(self, db, small_osm_file):
        load(db, "RAW", small_osm_file)
        assert drop_osm_tables(db, "RAW")
        assert not db.osm_tables_exist("RAW")
        assert not db.table_exists("RAW_node_member")

    def test_drop_needs_prefix(self, db):
        assert not drop_osm_tables(db, "")
        assert not drop_osm_tables(None, "RAW")
