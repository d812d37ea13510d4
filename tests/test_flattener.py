"""Tests for tree flattening."""

from eregs.services.flattener import extract_roots, flatten

PROCEDURE_LINK = {"rel": "procedure", "href": "/Procedures/3"}


def by_id(records):
    return {record.id: record for record in records}


class TestFlatten:
    def test_three_level_paths(self):
        tree = [
            {
                "id": 1,
                "name": "A",
                "subMenus": [
                    {
                        "id": 2,
                        "name": "B",
                        "subMenus": [{"id": 3, "name": "C", "links": [PROCEDURE_LINK]}],
                    }
                ],
            }
        ]

        records = by_id(flatten(tree))

        assert records[3].full_path == "A > B > C"
        assert records[3].parent_path == "A > B"
        assert records[1].full_path == "A"
        assert records[1].parent_path is None

    def test_leaf_resource_requires_procedure_link(self):
        tree = [
            {"id": 1, "name": "Category", "links": [{"rel": "objective"}]},
            {"id": 2, "name": "Procedure", "links": [PROCEDURE_LINK]},
            {"id": 3, "name": "Bare"},
        ]

        records = by_id(flatten(tree))

        assert not records[1].is_leaf_resource
        assert records[2].is_leaf_resource
        assert not records[3].is_leaf_resource

    def test_walks_both_child_slots(self):
        tree = [
            {
                "id": 1,
                "name": "Root",
                "subMenus": [{"id": 2, "name": "From subMenus"}],
                "childs": [{"id": 3, "name": "From childs"}],
            }
        ]

        records = by_id(flatten(tree))

        assert set(records) == {1, 2, 3}
        assert records[3].parent_path == "Root"

    def test_drops_node_without_numeric_id_but_keeps_siblings(self):
        tree = [
            {
                "id": 1,
                "name": "Root",
                "subMenus": [
                    {"name": "No id"},
                    {"id": "7", "name": "String id"},
                    {"id": 4, "name": "Good"},
                    "not a record",
                    None,
                ],
            }
        ]

        records = flatten(tree)

        assert [record.id for record in records] == [1, 4]

    def test_children_of_dropped_node_are_kept(self):
        tree = [{"name": "Group", "childs": [{"id": 9, "name": "Inner"}]}]

        records = flatten(tree)

        assert len(records) == 1
        assert records[0].full_path == "Group > Inner"

    def test_sorted_by_full_path(self):
        tree = [
            {"id": 1, "name": "Zoning", "subMenus": [{"id": 2, "name": "Appeal"}]},
            {"id": 3, "name": "Import"},
        ]

        assert [record.full_path for record in flatten(tree)] == [
            "Import",
            "Zoning",
            "Zoning > Appeal",
        ]

    def test_integral_float_id_is_accepted(self):
        records = flatten([{"id": 725.0, "name": "Import"}, {"id": 7.5, "name": "Half"}])

        assert [record.id for record in records] == [725]
        assert isinstance(records[0].id, int)

    def test_unnamed_record_gets_placeholder_name(self):
        records = flatten([{"id": 5, "name": None}])

        assert records[0].name == "Unnamed #5"

    def test_keeps_extra_fields_but_not_children(self):
        tree = [
            {
                "id": 1,
                "name": "Root",
                "description": "Top level",
                "subMenus": [{"id": 2, "name": "Child"}],
            }
        ]

        root = by_id(flatten(tree))[1]

        assert root.model_extra["description"] == "Top level"
        assert "subMenus" not in root.model_dump()

    def test_non_list_input_yields_empty(self):
        assert flatten({"id": 1, "name": "x"}) == []


class TestExtractRoots:
    def test_list_is_used_directly(self):
        assert extract_roots([{"id": 1}]) == [{"id": 1}]

    def test_finds_wrapped_list(self):
        assert extract_roots({"total": 1, "items": [{"id": 1}]}) == [{"id": 1}]

    def test_single_object_becomes_single_root(self):
        assert extract_roots({"id": 1, "name": "x"}) == [{"id": 1, "name": "x"}]

    def test_scalar_yields_nothing(self):
        assert extract_roots("nope") == []
