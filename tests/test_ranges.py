"""Tests for pkgsmith.ranges subpackage replication."""

import pytest

from pkgsmith.errors import ConfigError, RangeError
from pkgsmith.ranges import expand_ranges
from pkgsmith.schemas import Recipe


def _recipe(subpackages, data=None):
    return Recipe.from_dict({
        "package": {"name": "py", "version": "1.0"},
        "pipeline": [{"runs": "true"}],
        "subpackages": subpackages,
        "data": data or [],
    })


class TestExpandRanges:
    """Tests range expansion over data tables."""

    def test_one_replica_per_row_in_key_order(self):
        recipe = _recipe(
            [{"name": "py-${{range.key}}", "range": "versions", "pipeline": [{"runs": "echo ${{range.value}}"}]}],
            [{"name": "versions", "items": {"b": "2", "a": "1", "c": "3"}}],
        )
        expanded = expand_ranges(recipe)
        assert [sp.name for sp in expanded.subpackages] == ["py-a", "py-b", "py-c"]
        assert [sp.pipeline[0].runs for sp in expanded.subpackages] == ["echo 1", "echo 2", "echo 3"]

    def test_no_range_or_data_left(self):
        recipe = _recipe(
            [{"name": "x-${{range.key}}", "range": "t"}],
            [{"name": "t", "items": {"a": "1"}}],
        )
        expanded = expand_ranges(recipe)
        assert expanded.data == ()
        assert all(sp.range == "" for sp in expanded.subpackages)

    def test_description_and_nested_steps_substituted(self):
        recipe = _recipe(
            [{
                "name": "lib-${{range.key}}",
                "description": "Library ${{ range.value }}",
                "range": "libs",
                "pipeline": [{"pipeline": [{"runs": "install ${{range.key}}"}]}],
            }],
            [{"name": "libs", "items": {"foo": "Foo"}}],
        )
        replica = expand_ranges(recipe).subpackages[0]
        assert replica.description == "Library Foo"
        assert replica.pipeline[0].pipeline[0].runs == "install foo"

    def test_non_runs_fields_copied_verbatim(self):
        recipe = _recipe(
            [{
                "name": "p-${{range.key}}",
                "range": "t",
                "pipeline": [{
                    "uses": "fetch",
                    "with": {"uri": "https://example.com/${{range.key}}"},
                    "label": "${{range.key}}",
                    "if": "${{range.value}} == 1",
                }],
            }],
            [{"name": "t", "items": {"a": "1"}}],
        )
        step = expand_ranges(recipe).subpackages[0].pipeline[0]
        assert step.with_map == {"uri": "https://example.com/${{range.key}}"}
        assert step.label == "${{range.key}}"
        assert step.if_ == "${{range.value}} == 1"

    def test_plain_subpackages_keep_their_position(self):
        recipe = _recipe(
            [
                {"name": "first"},
                {"name": "r-${{range.key}}", "range": "t"},
                {"name": "last"},
            ],
            [{"name": "t", "items": {"a": "1", "b": "2"}}],
        )
        names = [sp.name for sp in expand_ranges(recipe).subpackages]
        assert names == ["first", "r-a", "r-b", "last"]

    def test_undefined_range(self):
        recipe = _recipe([{"name": "x", "range": "missing"}])
        with pytest.raises(RangeError) as exc_info:
            expand_ranges(recipe)
        assert isinstance(exc_info.value, ConfigError)
        assert "missing" in str(exc_info.value)

    def test_empty_table_produces_no_replicas(self):
        recipe = _recipe([{"name": "x-${{range.key}}", "range": "t"}], [{"name": "t", "items": {}}])
        assert expand_ranges(recipe).subpackages == ()
