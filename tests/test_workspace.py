"""Tests for pkgsmith.workspace preparation helpers."""

import os
import stat

import pytest

from pkgsmith.errors import ResourceError
from pkgsmith.workspace import (
    GUEST_CACHE_DIR,
    IgnoreRules,
    overlay_bin_sh,
    populate_cache,
    populate_workspace,
)


class TestIgnoreRules:
    def test_comments_and_blank_lines(self):
        rules = IgnoreRules.from_lines(["# comment", "", "*.o"])
        assert len(rules.rules) == 1

    def test_basename_patterns_match_at_any_depth(self):
        rules = IgnoreRules.from_lines(["*.o"])
        assert rules.ignored("main.o")
        assert rules.ignored("src/lib/util.o")
        assert not rules.ignored("main.c")

    def test_anchored_patterns(self):
        rules = IgnoreRules.from_lines(["build/*.log"])
        assert rules.ignored("build/out.log")
        assert not rules.ignored("src/build/out.log")

    def test_directory_only(self):
        rules = IgnoreRules.from_lines(["cache/"])
        assert rules.ignored("cache", is_dir=True)
        assert not rules.ignored("cache", is_dir=False)

    def test_negation_last_match_wins(self):
        rules = IgnoreRules.from_lines(["*.txt", "!keep.txt"])
        assert rules.ignored("drop.txt")
        assert not rules.ignored("keep.txt")

    def test_missing_file(self, tmp_path):
        assert IgnoreRules.from_file(tmp_path / ".pkgsmithignore").rules == []


class TestPopulateWorkspace:
    @pytest.fixture
    def source(self, tmp_path):
        src = tmp_path / "src"
        (src / "lib").mkdir(parents=True)
        (src / "node_modules" / "dep").mkdir(parents=True)
        (src / "main.c").write_text("int main;")
        (src / "lib" / "util.o").write_text("obj")
        (src / "lib" / "util.c").write_text("util")
        (src / "node_modules" / "dep" / "index.js").write_text("js")
        script = src / "configure"
        script.write_text("#!/bin/sh\n")
        script.chmod(0o755)
        (src / ".pkgsmithignore").write_text("*.o\nnode_modules/\n")
        return src

    def test_copies_and_honours_ignore_file(self, source, tmp_path):
        ws = tmp_path / "ws"
        populate_workspace(source, ws)
        assert (ws / "main.c").read_text() == "int main;"
        assert (ws / "lib" / "util.c").exists()
        assert not (ws / "lib" / "util.o").exists()
        assert not (ws / "node_modules").exists()

    def test_permissions_preserved(self, source, tmp_path):
        ws = tmp_path / "ws"
        populate_workspace(source, ws)
        assert stat.S_IMODE((ws / "configure").stat().st_mode) == 0o755

    def test_custom_ignore_file_name(self, source, tmp_path):
        (source / "custom-ignore").write_text("*.c\n")
        ws = tmp_path / "ws"
        populate_workspace(source, ws, ignore_file="custom-ignore")
        assert not (ws / "main.c").exists()
        assert (ws / "lib" / "util.o").exists()

    def test_symlinks_recreated(self, source, tmp_path):
        os.symlink("main.c", source / "link.c")
        ws = tmp_path / "ws"
        populate_workspace(source, ws)
        assert os.readlink(ws / "link.c") == "main.c"

    def test_workspace_inside_source_not_copied(self, source):
        ws = source / "ws"
        ws.mkdir()
        populate_workspace(source, ws)
        assert (ws / "main.c").exists()
        assert not (ws / "ws").exists()

    def test_missing_source(self, tmp_path):
        with pytest.raises(ResourceError):
            populate_workspace(tmp_path / "missing", tmp_path / "ws")


class TestPopulateCache:
    def test_only_content_addressed_files(self, tmp_path):
        cache = tmp_path / "cache"
        (cache / "nested").mkdir(parents=True)
        (cache / "sha256:abc").write_text("a")
        (cache / "nested" / "sha512:def").write_text("b")
        (cache / "random.tar.gz").write_text("c")
        guest = tmp_path / "guest"

        assert populate_cache(cache, guest) == 2
        target = guest / GUEST_CACHE_DIR
        assert (target / "sha256:abc").read_text() == "a"
        assert (target / "nested" / "sha512:def").exists()
        assert not (target / "random.tar.gz").exists()

    def test_missing_cache_dir(self, tmp_path):
        assert populate_cache(tmp_path / "missing", tmp_path / "guest") == 0


class TestOverlayBinSh:
    def test_replaces_existing_shell(self, tmp_path):
        guest = tmp_path / "guest"
        (guest / "bin").mkdir(parents=True)
        os.symlink("busybox", guest / "bin" / "sh")
        shell = tmp_path / "mysh"
        shell.write_text("#!shell")
        shell.chmod(0o600)

        target = overlay_bin_sh(shell, guest)
        assert target == guest / "bin" / "sh"
        assert not target.is_symlink()
        assert target.read_text() == "#!shell"
        assert stat.S_IMODE(target.stat().st_mode) == 0o755

    def test_missing_shell(self, tmp_path):
        with pytest.raises(ResourceError):
            overlay_bin_sh(tmp_path / "missing", tmp_path / "guest")
