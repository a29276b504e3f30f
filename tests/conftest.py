"""Pytest fixtures for osmgis tests."""
import pytest
from shapely.geometry import Point

PREFIX = "OSM_TEST"

NODES = {
    1: (0, 0), 2: (10, 0), 3: (0, 10), 4: (10, 10),
    # inner square of relation 2
    5: (2, 2), 6: (4, 2), 7: (4, 4), 8: (2, 4),
    # square outside relation 2
    9: (20, 20), 10: (22, 20), 11: (22, 22), 12: (20, 22),
    13: (30, 30), 14: (32, 30), 15: (32, 32), 16: (30, 32),
}

WAYS = {
    1: [1, 2, 4, 3, 1],
    2: [1, 2, 4],
    3: [4, 3, 1],
    4: [5, 6, 7, 8, 5],
    5: [9, 10, 11, 12, 9],
    6: [13, 14, 15, 16, 13],
    7: [1, 2],
    8: [3, 4],
}

NODE_TAGS = [
    (1, "building", "house"), (1, "material", "concrete"),
    (2, "material", "concrete"),
    (3, "water", "lake"),
    (4, "water", "lake"), (4, "building", "house"),
]

WAY_TAGS = [
    (1, "building", "house"), (1, "material", "concrete"), (1, "water", "lake"),
    (7, "highway", "primary"), (7, "maxspeed", "50 mph"), (7, "oneway", "yes"),
    (8, "highway", "residential"), (8, "maxspeed", "walk"), (8, "surface", "asphalt"),
]

RELATION_TAGS = [
    (1, "building", "house"), (1, "material", "concrete"), (1, "water", "lake"),
    (2, "landuse", "forest"),
    (3, "natural", "water"),
]

WAY_MEMBERS = [
    (1, 1, "outer"),
    (2, 2, "outer"), (2, 3, "outer"), (2, 4, "inner"), (2, 5, "inner"),
    (3, 4, "outer"), (3, 6, "outer"),
]


def fill_osm_tables(db, prefix=PREFIX):
    db.create_osm_tables(prefix)
    db.insert_rows(f"{prefix}_node", ["id_node", "the_geom"],
                   [(i, Point(xy).wkb) for i, xy in NODES.items()])
    db.insert_rows(f"{prefix}_way", ["id_way"], [(i,) for i in WAYS])
    db.insert_rows(f"{prefix}_way_node", ["id_way", "id_node", "node_order"],
                   [(w, n, order) for w, refs in WAYS.items() for order, n in enumerate(refs, start=1)])
    db.insert_rows(f"{prefix}_relation", ["id_relation"], [(1,), (2,), (3,)])
    db.insert_rows(f"{prefix}_way_member", ["id_relation", "id_way", "role"], WAY_MEMBERS)
    db.insert_rows(f"{prefix}_node_tag", ["id_node", "tag_key", "tag_value"], NODE_TAGS)
    db.insert_rows(f"{prefix}_way_tag", ["id_way", "tag_key", "tag_value"], WAY_TAGS)
    db.insert_rows(f"{prefix}_relation_tag", ["id_relation", "tag_key", "tag_value"], RELATION_TAGS)
    return prefix


@pytest.fixture
def db(tmp_path):
    """Empty spatial database in a temporary directory."""
    from osmgis.database import SpatialDatabase
    return SpatialDatabase(str(tmp_path / "test.db"))


@pytest.fixture
def osm_db(db):
    """Database holding the sample raw OSM tables under ``PREFIX``."""
    fill_osm_tables(db)
    return db


@pytest.fixture
def small_osm_file(tmp_path):
    """Minimal OSM XML file around (0.005, 0.005)."""
    content = '''<?xml version="1.0" encoding="UTF-8"?>
<osm version="0.6">
  <node id="1" lat="0.001" lon="0.001"/>
  <node id="2" lat="0.001" lon="0.002"/>
  <node id="3" lat="0.002" lon="0.002"/>
  <node id="4" lat="0.002" lon="0.001"/>
  <node id="5" lat="0.003" lon="0.000"/>
  <node id="6" lat="0.003" lon="0.009">
    <tag k="amenity" v="bench"/>
  </node>
  <way id="100">
    <nd ref="1"/><nd ref="2"/><nd ref="3"/><nd ref="4"/><nd ref="1"/>
    <tag k="building" v="yes"/>
    <tag k="building:levels" v="3"/>
  </way>
  <way id="101">
    <nd ref="5"/><nd ref="6"/>
    <tag k="highway" v="primary"/>
    <tag k="maxspeed" v="70"/>
  </way>
  <relation id="200">
    <member type="way" ref="100" role="outer"/>
    <member type="node" ref="6" role="label"/>
    <tag k="type" v="multipolygon"/>
  </relation>
</osm>'''
    file = tmp_path / "small.osm"
    file.write_text(content)
    return file


@pytest.fixture
def building_mapping():
    """Ordered type mapping with one negated rule."""
    return {
        "residential": {"building": ["house", "residential"]},
        "commercial": {"building": ["retail"], "shop": ["!no"]},
        "building": {"building": ["yes"]},
    }
