"""Tests for type/use classification."""
from osmgis.classifier import TagClassifier, classify, classify_value, token_matches


class TestTokenMatches:
    def test_exact(self):
        assert token_matches("house", "house")
        assert not token_matches("house", "garage")

    def test_negated(self):
        """!token matches any present value except token."""
        assert token_matches("!no", "yes")
        assert not token_matches("!no", "no")

    def test_negated_requires_value(self):
        assert not token_matches("!no", None)

    def test_negated_with_space(self):
        assert not token_matches("! no", "no")


class TestClassify:
    """Test (type, use) resolution."""

    def test_use_falls_back_to_type(self):
        """A single matching rule gives type == use."""
        row = {"building": "house", "material": "concrete"}
        mapping = {"residential": {"building": ["house"]}}
        assert classify(row, ["building", "material"], mapping) == ("residential", "residential")

    def test_nothing_matches(self):
        assert classify({"building": "garage"}, ["building"], {"residential": {"building": ["house"]}}) == (None, None)

    def test_definition_order_wins(self, building_mapping):
        """The first label in mapping order becomes the type."""
        row = {"building": "retail", "shop": "bakery"}
        assert classify(row, ["building", "shop"], building_mapping) == ("commercial", "commercial")

    def test_second_label_becomes_use(self, building_mapping):
        row = {"building": "house", "shop": "bakery"}
        assert classify(row, ["building", "shop"], building_mapping) == ("residential", "commercial")

    def test_use_is_first_distinct_label(self):
        """Later matches do not overwrite the use."""
        mapping = {
            "a": {"k1": ["v"]},
            "b": {"k2": ["v"]},
            "c": {"k3": ["v"]},
        }
        row = {"k1": "v", "k2": "v", "k3": "v"}
        assert classify(row, ["k1", "k2", "k3"], mapping) == ("a", "b")

    def test_key_must_be_available(self, building_mapping):
        """Keys missing from the available columns are ignored."""
        row = {"building": "house", "shop": "bakery"}
        assert classify(row, ["building"], building_mapping) == ("residential", "residential")

    def test_columns_are_case_insensitive(self, building_mapping):
        row = {"BUILDING": "house"}
        assert classify(row, ["BUILDING"], building_mapping) == ("residential", "residential")

    def test_negation_skips_excluded_value(self, building_mapping):
        row = {"shop": "no"}
        assert classify(row, ["shop"], building_mapping) == (None, None)


class TestClassifyValue:
    def test_first_match_only(self):
        mapping = {"paved": {"surface": ["asphalt"]}, "unpaved": {"surface": ["gravel"]}}
        assert classify_value({"surface": "asphalt"}, ["surface"], mapping) == "paved"
        assert classify_value({"surface": "mud"}, ["surface"], mapping) is None


class TestTagClassifier:
    def test_default_type(self):
        """The default type applies only when nothing matched."""
        classifier = TagClassifier({"Main road": {"highway": ["primary"]}}, default_type="Small main road")
        assert classifier.classify({"highway": "primary"}, ["highway"]) == ("Main road", "Main road")
        assert classifier.classify({"highway": "track"}, ["highway"]) == ("Small main road", None)
