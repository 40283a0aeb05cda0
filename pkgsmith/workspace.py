"""
Workspace preparation - populate the guest and workspace before a build.

- populate_cache: copy content-addressed source downloads into the guest
- populate_workspace: copy the source tree into the workspace, honouring
  the ignore file
- overlay_bin_sh: replace the guest's /bin/sh with a host-provided shell

Every failure is raised as ResourceError.
"""

import fnmatch
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from pkgsmith.errors import ResourceError
from pkgsmith.utils import copy_file


DEFAULT_IGNORE_FILE = ".pkgsmithignore"

# Guest-side location of the source cache
GUEST_CACHE_DIR = Path("var/cache/pkgsmith")

CACHE_PREFIXES = ("sha256:", "sha512:")


@dataclass(frozen=True)
class IgnoreRule:
    pattern: str
    negated: bool = False
    directory_only: bool = False
    anchored: bool = False

    @classmethod
    def parse(cls, line: str) -> Optional["IgnoreRule"]:
        line = line.strip()
        if not line or line.startswith("#"):
            return None

        negated = line.startswith("!")
        if negated:
            line = line[1:]
        directory_only = line.endswith("/")
        line = line.rstrip("/")
        anchored = "/" in line
        line = line.lstrip("/")
        if not line:
            return None
        return cls(pattern=line, negated=negated, directory_only=directory_only, anchored=anchored)

    def matches(self, rel_path: str, is_dir: bool) -> bool:
        if self.directory_only and not is_dir:
            return False
        if self.anchored:
            return fnmatch.fnmatchcase(rel_path, self.pattern)
        return fnmatch.fnmatchcase(rel_path.rsplit("/", 1)[-1], self.pattern)


class IgnoreRules:
    """
    Ordered ignore patterns; the last matching rule decides.

    Patterns without a slash match a file or directory name at any depth.
    Patterns with a slash match the path relative to the source root.
    A trailing slash restricts a pattern to directories, a leading ``!``
    re-includes what an earlier pattern excluded.
    """

    def __init__(self, rules: Iterable[IgnoreRule] = ()):
        self.rules = list(rules)

    @classmethod
    def from_lines(cls, lines: Iterable[str]) -> "IgnoreRules":
        return cls(rule for rule in map(IgnoreRule.parse, lines) if rule is not None)

    @classmethod
    def from_file(cls, path: Path) -> "IgnoreRules":
        if not path.is_file():
            return cls()
        try:
            with open(path) as f:
                return cls.from_lines(f)
        except OSError as e:
            raise ResourceError(f"Failed to read ignore file {path}: {e}")

    def ignored(self, rel_path: str, is_dir: bool = False) -> bool:
        result = False
        for rule in self.rules:
            if rule.matches(rel_path, is_dir):
                result = not rule.negated
        return result


def populate_workspace(
    source_dir: Path,
    workspace_dir: Path,
    ignore_file: str = DEFAULT_IGNORE_FILE,
    logger: Optional[logging.Logger | logging.LoggerAdapter] = None,
) -> int:
    """
    Copy the source tree into the workspace.

    Regular files are copied with their permission bits, symlinks are
    recreated as symlinks and other file types are skipped. Ignored
    directories are not descended into. A workspace located inside the
    source tree is never copied into itself.

    Args:
        source_dir: Tree to copy from
        workspace_dir: Build workspace
        ignore_file: Name of the ignore file inside ``source_dir``
        logger: Session logger

    Returns:
        Number of entries copied

    Raises:
        ResourceError: If the source tree cannot be read or copied
    """
    logger = logger or logging.getLogger(__name__)
    source_dir = Path(source_dir).resolve()
    workspace_dir = Path(workspace_dir).resolve()
    rules = IgnoreRules.from_file(source_dir / ignore_file)

    if not source_dir.is_dir():
        raise ResourceError(f"Source directory does not exist: {source_dir}")

    logger.info("populating workspace %s from %s", workspace_dir, source_dir)
    copied = 0
    try:
        for root, dirs, files in os.walk(source_dir):
            root_path = Path(root)
            rel_root = root_path.relative_to(source_dir)

            kept_dirs = []
            for name in sorted(dirs):
                dir_path = root_path / name
                rel = (rel_root / name).as_posix()
                if dir_path == workspace_dir or rules.ignored(rel, is_dir=True):
                    continue
                if dir_path.is_symlink():
                    files.append(name)
                    continue
                kept_dirs.append(name)
            dirs[:] = kept_dirs

            for name in sorted(files):
                rel_path = rel_root / name
                if rules.ignored(rel_path.as_posix()):
                    continue
                src = source_dir / rel_path
                if src.is_symlink():
                    dest = workspace_dir / rel_path
                    dest.parent.mkdir(parents=True, exist_ok=True)
                    os.symlink(os.readlink(src), dest)
                elif src.is_file():
                    copy_file(source_dir, rel_path, workspace_dir, mode=src.stat().st_mode & 0o7777)
                else:
                    continue
                copied += 1
    except OSError as e:
        raise ResourceError(f"Failed to populate workspace from {source_dir}: {e}")

    logger.debug("copied %d entries into the workspace", copied)
    return copied


def populate_cache(
    cache_dir: Path,
    guest_dir: Path,
    logger: Optional[logging.Logger | logging.LoggerAdapter] = None,
) -> int:
    """
    Copy content-addressed downloads from the host cache into the guest.

    Only regular files whose name starts with ``sha256:`` or ``sha512:``
    are copied; the relative layout is kept. A missing cache directory is
    not an error.

    Returns:
        Number of files copied

    Raises:
        ResourceError: If a cache file cannot be copied
    """
    logger = logger or logging.getLogger(__name__)
    cache_dir = Path(cache_dir)
    if not cache_dir.is_dir():
        logger.debug("cache directory %s does not exist, skipping", cache_dir)
        return 0

    target = Path(guest_dir) / GUEST_CACHE_DIR
    copied = 0
    try:
        for root, _dirs, files in os.walk(cache_dir):
            for name in sorted(files):
                path = Path(root) / name
                if not name.startswith(CACHE_PREFIXES) or path.is_symlink() or not path.is_file():
                    continue
                copy_file(cache_dir, path.relative_to(cache_dir), target, mode=path.stat().st_mode & 0o7777)
                copied += 1
    except OSError as e:
        raise ResourceError(f"Failed to populate cache from {cache_dir}: {e}")

    logger.info("populated %d cached downloads from %s", copied, cache_dir)
    return copied


def overlay_bin_sh(shell_path: Path, guest_dir: Path) -> Path:
    """
    Replace ``<guest>/bin/sh`` with a copy of ``shell_path``, mode 0755.

    Raises:
        ResourceError: If the shell cannot be copied
    """
    shell_path = Path(shell_path)
    target = Path(guest_dir) / "bin" / "sh"
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.exists() or target.is_symlink():
            target.unlink()
        with open(shell_path, "rb") as in_f, open(target, "wb") as out_f:
            shutil.copyfileobj(in_f, out_f)
        os.chmod(target, 0o755)
    except OSError as e:
        raise ResourceError(f"Failed to overlay /bin/sh with {shell_path}: {e}")
    return target
