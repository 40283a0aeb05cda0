"""Tests for pkgsmith.config recipe loading and build dates."""

from datetime import datetime, timezone
from pathlib import Path

import pytest
import yaml

from pkgsmith.config import find_recipe, load_recipe, parse_build_date, source_date_epoch
from pkgsmith.errors import ConfigError, RangeError


def _write_yaml(path: Path, data: dict):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.dump(data, f)


RECIPE = {
    "package": {"name": "hello", "version": "1.0"},
    "environment": {"environment": {"CC": "clang", "HOME": "/root"}},
    "pipeline": [{"runs": "make"}],
}


class TestFindRecipe:
    def test_precedence(self, tmp_path):
        (tmp_path / "pkgsmith.yml").write_text("")
        (tmp_path / "pkgsmith.yaml").write_text("")
        assert find_recipe(tmp_path).name == "pkgsmith.yaml"
        (tmp_path / ".pkgsmith.yaml").write_text("")
        assert find_recipe(tmp_path).name == ".pkgsmith.yaml"

    def test_missing(self, tmp_path):
        with pytest.raises(ConfigError, match="missing"):
            find_recipe(tmp_path)


class TestLoadRecipe:
    def test_build_account_added(self, tmp_path):
        recipe = load_recipe(_write_yaml_recipe(tmp_path, RECIPE))
        accounts = recipe.environment["accounts"]
        assert accounts["users"] == [{"username": "build", "uid": 1000, "gid": 1000}]
        assert accounts["groups"][0]["gid"] == 1000

    def test_home_and_gopath_forced(self, tmp_path):
        variables = load_recipe(_write_yaml_recipe(tmp_path, RECIPE)).environment_variables()
        assert variables["HOME"] == "/home/build"
        assert variables["GOPATH"] == "/home/build/.cache/go"
        assert variables["CC"] == "clang"

    def test_env_file_merged_beneath_recipe(self, tmp_path):
        env_file = tmp_path / "build.env"
        env_file.write_text("CC=gcc\nCFLAGS=-O2\n")
        variables = load_recipe(_write_yaml_recipe(tmp_path, RECIPE), env_file=env_file).environment_variables()
        assert variables["CC"] == "clang"
        assert variables["CFLAGS"] == "-O2"

    def test_missing_env_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_recipe(_write_yaml_recipe(tmp_path, RECIPE), env_file=tmp_path / "nope.env")

    def test_ranges_expanded(self, tmp_path):
        data = dict(RECIPE)
        data["subpackages"] = [{"name": "hello-${{range.key}}", "range": "t"}]
        data["data"] = [{"name": "t", "items": {"a": "1", "b": "2"}}]
        recipe = load_recipe(_write_yaml_recipe(tmp_path, data))
        assert [sp.name for sp in recipe.subpackages] == ["hello-a", "hello-b"]
        assert recipe.data == ()

    def test_dangling_range(self, tmp_path):
        data = dict(RECIPE)
        data["subpackages"] = [{"name": "x", "range": "missing"}]
        with pytest.raises(RangeError):
            load_recipe(_write_yaml_recipe(tmp_path, data))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "pkgsmith.yaml"
        path.write_text("package: [\n")
        with pytest.raises(ConfigError):
            load_recipe(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_recipe(tmp_path / "pkgsmith.yaml")


def _write_yaml_recipe(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "pkgsmith.yaml"
    _write_yaml(path, data)
    return path


class TestBuildDate:
    def test_empty_is_epoch(self):
        assert parse_build_date("") == datetime(1970, 1, 1, tzinfo=timezone.utc)

    def test_rfc3339(self):
        assert parse_build_date("2023-05-01T12:00:00Z") == datetime(2023, 5, 1, 12, tzinfo=timezone.utc)

    def test_invalid(self):
        with pytest.raises(ConfigError):
            parse_build_date("yesterday")

    def test_source_date_epoch_overrides(self, monkeypatch):
        monkeypatch.setenv("SOURCE_DATE_EPOCH", "1700000000")
        result = source_date_epoch(parse_build_date("2023-05-01T12:00:00Z"))
        assert result == datetime.fromtimestamp(1700000000, timezone.utc)

    def test_source_date_epoch_unset(self):
        default = parse_build_date("")
        assert source_date_epoch(default) is default

    @pytest.mark.parametrize("value", ["abc", "1.5", "", " 12", "1_000"])
    def test_source_date_epoch_malformed(self, monkeypatch, value):
        monkeypatch.setenv("SOURCE_DATE_EPOCH", value)
        with pytest.raises(ConfigError):
            source_date_epoch(parse_build_date(""))

    @pytest.mark.parametrize("value", ["99999999999999999999", "-99999999999999999999"])
    def test_source_date_epoch_out_of_range(self, monkeypatch, value):
        monkeypatch.setenv("SOURCE_DATE_EPOCH", value)
        with pytest.raises(ConfigError, match="out of range"):
            source_date_epoch(parse_build_date(""))


class TestMalformedRecipe:
    def _recipe(self, tmp_path, **changes):
        data = dict(RECIPE)
        data.update(changes)
        return _write_yaml_recipe(tmp_path, data)

    def test_required_steps_not_an_integer(self, tmp_path):
        path = self._recipe(tmp_path, pipeline=[{"assertions": {"required-steps": "two"},
                                                 "pipeline": [{"runs": "make"}]}])
        with pytest.raises(ConfigError, match="required-steps"):
            load_recipe(path)

    def test_step_needs_not_a_mapping(self, tmp_path):
        path = self._recipe(tmp_path, pipeline=[{"runs": "make", "needs": ["gcc"]}])
        with pytest.raises(ConfigError, match="needs"):
            load_recipe(path)

    def test_environment_variables_not_a_mapping(self, tmp_path):
        path = self._recipe(tmp_path, environment={"environment": ["CC=gcc"]})
        with pytest.raises(ConfigError, match="environment.environment"):
            load_recipe(path)

    def test_accounts_not_a_mapping(self, tmp_path):
        path = self._recipe(tmp_path, environment={"accounts": ["build"]})
        with pytest.raises(ConfigError, match="accounts"):
            load_recipe(path)

    def test_document_not_a_mapping(self, tmp_path):
        path = tmp_path / "pkgsmith.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigError):
            load_recipe(path)
