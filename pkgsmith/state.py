"""
Session state - persist a build stopped at a breakpoint.

A suspended build keeps its guest and workspace on disk. The state file
records where the guest lives and which recipe was running, so a later
invocation with a continue label can reattach without rebuilding the guest
or repopulating the workspace.

Storage:
    workspace_dir/
        .pkgsmith-session.json
"""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pkgsmith.errors import ConfigError, ResourceError


STATE_FILENAME = ".pkgsmith-session.json"


@dataclass(frozen=True)
class SuspendedSession:
    """
    A build session stopped at a breakpoint.

    Attributes:
        package: Main package name
        arch: Target architecture
        guest_dir: Guest filesystem kept from the stopped build
        breakpoint_label: Label the build stopped at
        recipe_sha256: Fingerprint of the recipe pipelines
        suspended_at: When the build stopped
        breakpoint_package: Package whose pipeline was running
        breakpoint_path: Child indexes from the pipeline root to the step
            the build stopped at
    """
    package: str
    arch: str
    guest_dir: str
    breakpoint_label: str
    recipe_sha256: str
    suspended_at: datetime
    breakpoint_package: str = ""
    breakpoint_path: tuple[int, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "package": self.package,
            "arch": self.arch,
            "guest_dir": self.guest_dir,
            "breakpoint_label": self.breakpoint_label,
            "recipe_sha256": self.recipe_sha256,
            "suspended_at": self.suspended_at.isoformat(),
            **({"breakpoint_package": self.breakpoint_package} if self.breakpoint_package else {}),
            **({"breakpoint_path": list(self.breakpoint_path)} if self.breakpoint_path else {}),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SuspendedSession":
        return cls(
            package=data["package"],
            arch=data["arch"],
            guest_dir=data["guest_dir"],
            breakpoint_label=data.get("breakpoint_label", ""),
            recipe_sha256=data.get("recipe_sha256", ""),
            suspended_at=datetime.fromisoformat(data["suspended_at"]),
            breakpoint_package=data.get("breakpoint_package", ""),
            breakpoint_path=tuple(int(i) for i in data.get("breakpoint_path") or ()),
        )


class SessionStateStore:
    """JSON state file kept inside a workspace directory."""

    def __init__(self, workspace_dir: Path | str):
        self._workspace_dir = Path(workspace_dir)

    @property
    def path(self) -> Path:
        return self._workspace_dir / STATE_FILENAME

    def save(
        self,
        package: str,
        arch: str,
        guest_dir: Path | str,
        breakpoint_label: str,
        recipe_sha256: str,
        breakpoint_package: str = "",
        breakpoint_path: tuple[int, ...] = (),
    ) -> SuspendedSession:
        """
        Record a suspended session.

        Raises:
            ResourceError: If the state file cannot be written
        """
        session = SuspendedSession(
            package=package,
            arch=arch,
            guest_dir=str(guest_dir),
            breakpoint_label=breakpoint_label,
            recipe_sha256=recipe_sha256,
            suspended_at=datetime.now(timezone.utc),
            breakpoint_package=breakpoint_package,
            breakpoint_path=tuple(breakpoint_path),
        )
        try:
            self._workspace_dir.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w") as f:
                json.dump(session.to_dict(), f, indent=2)
        except OSError as e:
            raise ResourceError(f"Failed to write session state {self.path}: {e}")
        return session

    def load(self) -> Optional[SuspendedSession]:
        """
        Load the suspended session, if any.

        Raises:
            ConfigError: If the state file exists but is unreadable
        """
        if not self.path.exists():
            return None
        try:
            with open(self.path) as f:
                data = json.load(f)
            return SuspendedSession.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise ConfigError(f"Corrupt session state {self.path}: {e}")

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
