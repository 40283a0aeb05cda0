"""
Runners - execute one leaf step's command inside the build guest.

Every runner executes a shell script synchronously and streams its combined
output, line by line, to the session logger. Runners differ in how the guest
is entered:

- BubblewrapRunner: bwrap bind-mounts the guest as / and the workspace as
  /home/build (default)
- ProotRunner: proot emulates the same layout without privileges
- HostRunner: no isolation; runs in the workspace directory on the host.
  Used with LocalGuestBuilder and in tests
"""

import logging
import os
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Mapping, Optional

from pkgsmith.errors import ConfigError


# Where the workspace is mounted inside the guest
GUEST_WORKSPACE = "/home/build"

RUNNER_KINDS = ("bubblewrap", "proot", "host")


def wrap_script(script: str, workdir: str) -> str:
    """Prelude shared by every runner: fail fast and start in the workspace."""
    return (
        "set -e\n"
        f"[ -d '{workdir}' ] || mkdir -p '{workdir}'\n"
        f"cd '{workdir}'\n"
        f"{script}\n"
        "exit 0\n"
    )


class Runner(ABC):
    """
    Abstract base class for guest command runners.

    Attributes:
        guest_dir: Root of the guest filesystem on the host
        workspace_dir: Build workspace on the host
    """

    def __init__(self, guest_dir: Path, workspace_dir: Path, logger: Optional[logging.Logger | logging.LoggerAdapter] = None):
        self.guest_dir = Path(guest_dir)
        self.workspace_dir = Path(workspace_dir)
        self.logger = logger or logging.getLogger(__name__)

    @property
    def workspace_path(self) -> str:
        """Path of the workspace as seen by commands run through this runner."""
        return GUEST_WORKSPACE

    @abstractmethod
    def command(self, script: str, env: Mapping[str, str]) -> tuple[list[str], dict[str, str], Optional[Path]]:
        """
        Build the host command line for a script.

        Returns:
            (argv, host environment, host working directory)
        """
        pass

    def run(self, script: str, env: Mapping[str, str]) -> int:
        """
        Run a script to completion.

        Args:
            script: Shell script body
            env: Environment variables for the script

        Returns:
            The exit status
        """
        argv, host_env, cwd = self.command(wrap_script(script, self.workspace_path), env)
        self.logger.debug("exec: %s", " ".join(argv[:3]))

        try:
            with subprocess.Popen(
                argv,
                cwd=cwd,
                env=host_env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
            ) as proc:
                for line in proc.stdout or ():
                    self.logger.info("%s", line.rstrip("\n"))
                return proc.wait()
        except FileNotFoundError as e:
            raise ConfigError(f"Runner executable not found: {argv[0]} ({e})")


class BubblewrapRunner(Runner):
    """Run commands in the guest through bubblewrap."""

    def command(self, script, env):
        argv = [
            "bwrap",
            "--bind", str(self.guest_dir), "/",
            "--bind", str(self.workspace_dir), GUEST_WORKSPACE,
            "--ro-bind", "/etc/resolv.conf", "/etc/resolv.conf",
            "--dev", "/dev",
            "--proc", "/proc",
            "--chdir", GUEST_WORKSPACE,
            "--clearenv",
            "--new-session",
            "--unshare-pid",
        ]
        for key, value in sorted(env.items()):
            argv += ["--setenv", key, value]
        argv += ["/bin/sh", "-c", script]
        return argv, dict(os.environ), None


class ProotRunner(Runner):
    """Run commands in the guest through proot (no privileges required)."""

    def command(self, script, env):
        argv = [
            "proot",
            "-r", str(self.guest_dir),
            "-b", f"{self.workspace_dir}:{GUEST_WORKSPACE}",
            "-b", "/dev",
            "-b", "/proc",
            "-b", "/etc/resolv.conf",
            "-w", GUEST_WORKSPACE,
            "/usr/bin/env", "-i",
        ]
        argv += [f"{key}={value}" for key, value in sorted(env.items())]
        argv += ["/bin/sh", "-c", script]
        return argv, dict(os.environ), None


class HostRunner(Runner):
    """Run commands directly on the host, inside the workspace directory."""

    @property
    def workspace_path(self) -> str:
        return str(self.workspace_dir)

    def command(self, script, env):
        host_env = {"PATH": os.environ.get("PATH", "/usr/bin:/bin")}
        host_env.update(env)
        host_env["HOME"] = str(self.workspace_dir)
        return ["/bin/sh", "-c", script], host_env, self.workspace_dir


def create_runner(
    kind: str,
    guest_dir: Path,
    workspace_dir: Path,
    logger: Optional[logging.Logger | logging.LoggerAdapter] = None,
) -> Runner:
    """
    Create a runner by kind.

    Raises:
        ConfigError: If the kind is unknown
    """
    if kind == "bubblewrap":
        return BubblewrapRunner(guest_dir, workspace_dir, logger)
    if kind == "proot":
        return ProotRunner(guest_dir, workspace_dir, logger)
    if kind == "host":
        return HostRunner(guest_dir, workspace_dir, logger)
    raise ConfigError(f"Unknown runner: {kind!r} (expected one of {', '.join(RUNNER_KINDS)})")
