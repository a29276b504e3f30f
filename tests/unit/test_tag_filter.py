"""Tests for tag specifications and their SQL predicates."""
import pytest

from osmgis.errors import InvalidSpecification
from osmgis.tag_filter import TagFilter


class TestTagFilterForms:
    """Test accepted and rejected specifications."""

    def test_none_is_vacuous(self):
        """No specification selects everything."""
        f = TagFilter(None)
        assert f.is_empty
        assert f.where_clause() == ("", [])
        assert f.matches("anything", "at all")

    def test_empty_mapping_is_vacuous(self):
        """An empty map behaves like no specification."""
        assert TagFilter({}).is_empty
        assert TagFilter([]).is_empty

    def test_key_list(self):
        """A list of keys ignores values."""
        sql, params = TagFilter(["building", "landcover"]).where_clause()
        assert sql == "tag_key IN (?, ?)"
        assert params == ["building", "landcover"]

    def test_mapping_with_values(self):
        """Mapping values become an IN clause per key."""
        sql, params = TagFilter({"building": ["yes", "house"], "landcover": "grass"}).where_clause()
        assert sql == "(tag_key = ? AND tag_value IN (?, ?)) OR (tag_key = ? AND tag_value IN (?))"
        assert params == ["building", "yes", "house", "landcover", "grass"]

    def test_mapping_key_only(self):
        """None, True or an empty list mean any value of the key."""
        sql, params = TagFilter({"amenity": None, "shop": [], "office": True}).where_clause()
        assert sql == "(tag_key = ?) OR (tag_key = ?) OR (tag_key = ?)"
        assert params == ["amenity", "shop", "office"]

    def test_duplicate_values_collapse(self):
        """Repeated values are listed once."""
        f = TagFilter({"building": ["yes", "yes"]})
        assert f.rules == {"building": ("yes",)}

    @pytest.mark.parametrize("spec", ["building", 42, {"building": {"nested": "map"}},
                                      {"building": 3}, {"": "yes"}, [1, 2], {"building": False}])
    def test_malformed_specification(self, spec):
        """Anything else is rejected."""
        with pytest.raises(InvalidSpecification):
            TagFilter(spec)


class TestTagFilterMatches:
    """Test the Python predicate."""

    def test_union_of_keys(self):
        """Rules on different keys are OR-ed."""
        f = TagFilter({"building": "house", "water": None})
        assert f.matches("building", "house")
        assert f.matches("water", "river")
        assert not f.matches("building", "garage")
        assert not f.matches("material", "concrete")

    def test_keys_only_ignores_value(self):
        f = TagFilter(["building"])
        assert f.matches("building", "anything")
        assert not f.matches("water", "lake")


class TestTagFilterQueries:
    """Test queries against the sample tag tables."""

    def test_count_mapping(self, osm_db):
        """Two node tags are building=house."""
        assert TagFilter({"building": "house"}).count(osm_db, "OSM_TEST_node_tag") == 2

    def test_count_no_match(self, osm_db):
        assert TagFilter({"toto": "tata"}).count(osm_db, "OSM_TEST_node_tag") == 0

    def test_count_vacuous(self, osm_db):
        """The vacuous filter counts every tag row."""
        assert TagFilter({}).count(osm_db, "OSM_TEST_node_tag") == 6

    def test_sql_and_python_agree(self, osm_db):
        """Both predicates select the same tag rows."""
        f = TagFilter({"building": "house", "water": None})
        rows = osm_db.query("SELECT tag_key, tag_value FROM OSM_TEST_node_tag")
        expected = sum(1 for key, value in rows if f.matches(key, value))
        assert f.count(osm_db, "OSM_TEST_node_tag") == expected

    def test_selected_keys_restricted(self, osm_db):
        """Only filter keys and kept columns that exist become columns."""
        keys = TagFilter({"building": "house"}).selected_keys(osm_db, "OSM_TEST_node_tag", ["water", "missing"])
        assert keys == ["building", "water"]

    def test_selected_keys_all(self, osm_db):
        """Without keys every tag key is selected."""
        keys = TagFilter([]).selected_keys(osm_db, "OSM_TEST_node_tag")
        assert keys == ["building", "material", "water"]

    def test_select_ids_and_pivot(self, osm_db):
        """Qualifying ids are copied and pivoted into flat records."""
        f = TagFilter({"building": "house"})
        with osm_db.staging_table() as ids:
            assert f.select_ids(osm_db, "OSM_TEST_node_tag", "id_node", ids) == 2
            records = TagFilter.pivot(osm_db, "OSM_TEST_node_tag", "id_node", ids, ["building", "water"])
        assert records == {
            1: {"building": "house", "water": None},
            4: {"building": "house", "water": "lake"},
        }

    def test_pivot_last_write_wins(self, osm_db):
        """A key repeated on one entity keeps the last stored value."""
        osm_db.insert_rows("OSM_TEST_node_tag", ["id_node", "tag_key", "tag_value"], [(1, "building", "garage")])
        f = TagFilter(["building"])
        with osm_db.staging_table() as ids:
            f.select_ids(osm_db, "OSM_TEST_node_tag", "id_node", ids)
            records = TagFilter.pivot(osm_db, "OSM_TEST_node_tag", "id_node", ids, ["building"])
        assert records[1]["building"] == "garage"

    def test_pivot_keys_differing_by_case(self, osm_db):
        """Tags spelled with another case fill the same column."""
        osm_db.insert_rows("OSM_TEST_node_tag", ["id_node", "tag_key", "tag_value"], [(2, "Building", "yes")])
        f = TagFilter(["material"])
        with osm_db.staging_table() as ids:
            f.select_ids(osm_db, "OSM_TEST_node_tag", "id_node", ids)
            records = TagFilter.pivot(osm_db, "OSM_TEST_node_tag", "id_node", ids, ["building"])
        assert records == {1: {"building": "house"}, 2: {"building": "yes"}}
