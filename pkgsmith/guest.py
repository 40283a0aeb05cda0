"""
Guest builders - materialize the guest filesystem a build runs in.

The recipe's ``environment`` section is owned by the guest builder: it is
passed through as-is, with the resolved build-time packages already merged
into ``contents.packages``.
"""

import logging
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

import yaml

from pkgsmith.arch import Architecture
from pkgsmith.errors import DelegatedError


class GuestBuilder(ABC):
    """Abstract base class for guest builders."""

    def __init__(self, logger: Optional[logging.Logger | logging.LoggerAdapter] = None):
        self.logger = logger or logging.getLogger(__name__)

    @abstractmethod
    def build(
        self,
        guest_dir: Path,
        environment: Mapping[str, Any],
        arch: Architecture,
        use_proot: bool = False,
        extra_keys: Sequence[str] = (),
        extra_repos: Sequence[str] = (),
    ) -> None:
        """
        Populate ``guest_dir`` with a root filesystem.

        Raises:
            DelegatedError: If the guest cannot be built
        """
        pass


class ApkoGuestBuilder(GuestBuilder):
    """Build the guest with ``apko build-minirootfs``."""

    def __init__(self, executable: str = "apko", logger: Optional[logging.Logger | logging.LoggerAdapter] = None):
        super().__init__(logger)
        self.executable = executable

    def command(
        self,
        config_path: Path,
        guest_dir: Path,
        arch: Architecture,
        use_proot: bool = False,
        extra_keys: Sequence[str] = (),
        extra_repos: Sequence[str] = (),
    ) -> list[str]:
        argv = [self.executable, "build-minirootfs", str(config_path), str(guest_dir), "--arch", arch.to_package()]
        for key in extra_keys:
            argv += ["--keyring-append", key]
        for repo in extra_repos:
            argv += ["--repository-append", repo]
        if use_proot:
            argv.append("--use-proot")
        return argv

    def build(self, guest_dir, environment, arch, use_proot=False, extra_keys=(), extra_repos=()):
        guest_dir = Path(guest_dir)
        config_path = guest_dir.parent / f"{guest_dir.name}.apko.yaml"
        try:
            with open(config_path, "w") as f:
                yaml.safe_dump(dict(environment), f, sort_keys=False)

            argv = self.command(config_path, guest_dir, arch, use_proot, extra_keys, extra_repos)
            self.logger.info("building guest in %s", guest_dir, extra={"event": "guest_build"})
            result = subprocess.run(argv, capture_output=True, text=True)
        except OSError as e:
            raise DelegatedError("unable to build guest", e)
        finally:
            config_path.unlink(missing_ok=True)

        for line in (result.stdout + result.stderr).splitlines():
            self.logger.debug("apko: %s", line)
        if result.returncode != 0:
            raise DelegatedError(
                "unable to build guest",
                RuntimeError(f"{self.executable} exited with status {result.returncode}: {result.stderr.strip()}"),
            )


class LocalGuestBuilder(GuestBuilder):
    """
    Materialize an empty guest root.

    Used with HostRunner, where commands run on the host and the guest only
    receives the cache, the SBOMs and an optional /bin/sh overlay.
    """

    def build(self, guest_dir, environment, arch, use_proot=False, extra_keys=(), extra_repos=()):
        try:
            for sub in ("bin", "etc", "tmp", "var/lib/db/sbom"):
                (Path(guest_dir) / sub).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DelegatedError("unable to build guest", e)
        self.logger.debug("created empty guest root %s for %s", guest_dir, arch)


def build_flavor(guest_dir: Path) -> str:
    """C library flavor of a guest: "gnu" when glibc is present, else "musl"."""
    if any(Path(guest_dir).glob("lib*/libc.so.6")):
        return "gnu"
    return "musl"
