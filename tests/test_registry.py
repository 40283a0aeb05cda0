"""Tests for pkgsmith.registry.

Tests TemplateRegistry lookup, search order, caching and listing.
"""

from pathlib import Path

import pytest
import yaml

from pkgsmith.errors import ConfigError, TemplateNotFoundError
from pkgsmith.registry import BUILTIN_PIPELINE_DIR, TemplateRegistry


def _write_yaml(path: Path, data: dict):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.dump(data, f)


@pytest.fixture
def pipeline_dir(tmp_path):
    _write_yaml(tmp_path / "hello.yaml", {"name": "Say hello", "runs": "echo hello"})
    _write_yaml(tmp_path / "group" / "nested.yml", {"name": "Nested", "pipeline": [{"runs": "true"}]})
    return tmp_path


class TestLoad:
    def test_load_from_user_dir(self, pipeline_dir):
        registry = TemplateRegistry(pipeline_dir, builtin_dir=None)
        template = registry.load("hello")
        assert template.ref == "hello"
        assert template.name == "Say hello"
        assert template.runs == "echo hello"

    def test_load_nested_yml(self, pipeline_dir):
        registry = TemplateRegistry(pipeline_dir, builtin_dir=None)
        assert registry.load("group/nested").pipeline[0].runs == "true"

    def test_builtin_templates(self):
        registry = TemplateRegistry()
        template = registry.load("go/build")
        assert "go" in template.needs
        assert dict(template.inputs)["packages"].required

    def test_user_dir_shadows_builtin(self, tmp_path):
        _write_yaml(tmp_path / "fetch.yaml", {"name": "custom fetch", "runs": "true"})
        registry = TemplateRegistry(tmp_path)
        assert registry.load("fetch").name == "custom fetch"

    def test_not_found(self, pipeline_dir):
        registry = TemplateRegistry(pipeline_dir, builtin_dir=None)
        with pytest.raises(TemplateNotFoundError):
            registry.load("missing")

    def test_path_traversal_rejected(self, pipeline_dir):
        registry = TemplateRegistry(pipeline_dir / "group", builtin_dir=None)
        with pytest.raises(TemplateNotFoundError):
            registry.load("../hello")

    def test_invalid_yaml(self, tmp_path):
        (tmp_path / "broken.yaml").write_text("name: [unclosed\n")
        registry = TemplateRegistry(tmp_path, builtin_dir=None)
        with pytest.raises(ConfigError):
            registry.load("broken")

    def test_cached(self, pipeline_dir):
        registry = TemplateRegistry(pipeline_dir, builtin_dir=None)
        first = registry.load("hello")
        (pipeline_dir / "hello.yaml").unlink()
        assert registry.load("hello") is first

    def test_cache_is_per_registry(self, pipeline_dir):
        TemplateRegistry(pipeline_dir, builtin_dir=None).load("hello")
        (pipeline_dir / "hello.yaml").unlink()
        with pytest.raises(TemplateNotFoundError):
            TemplateRegistry(pipeline_dir, builtin_dir=None).load("hello")


class TestListing:
    def test_list_templates(self, pipeline_dir):
        registry = TemplateRegistry(pipeline_dir, builtin_dir=None)
        assert registry.list_templates() == ["group/nested", "hello"]

    def test_builtins_listed(self):
        refs = TemplateRegistry().list_templates()
        assert "fetch" in refs
        assert "go/build" in refs
        assert "autoconf/configure" in refs

    def test_search_path_order(self, tmp_path):
        registry = TemplateRegistry(tmp_path)
        assert registry.search_path == (tmp_path, BUILTIN_PIPELINE_DIR)
