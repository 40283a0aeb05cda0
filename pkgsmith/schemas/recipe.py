"""
Recipe schema - the declarative build document.

A Recipe is the whole of a ``pkgsmith.yaml`` file:

    package:      metadata for the main package
    environment:  guest image configuration, passed to the guest builder as-is
    pipeline:     root step list
    subpackages:  additional packages split out of the same build
    data:         named tables used by subpackage ``range`` replication

Recipes are immutable. Range expansion and needs resolution return new
Recipe instances via ``dataclasses.replace``.
"""

import copy
import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Optional

from pkgsmith.errors import ConfigError

from .data import DataTable
from .step import Step, mapping, string_list, steps_from_list


def _entries(value: Any, what: str) -> list[Any]:
    if not value:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"{what} must be a list, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class Copyright:
    paths: tuple[str, ...] = field(default_factory=tuple)
    attestation: str = ""
    license: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Copyright":
        data = mapping(data, "Copyright entry")
        return cls(
            paths=string_list(data.get("paths"), "Copyright 'paths'"),
            attestation=str(data.get("attestation") or ""),
            license=str(data.get("license") or ""),
        )


@dataclass(frozen=True)
class Dependencies:
    runtime: tuple[str, ...] = field(default_factory=tuple)
    provides: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "Dependencies":
        data = mapping(data, "'dependencies'")
        return cls(
            runtime=string_list(data.get("runtime"), "'dependencies.runtime'"),
            provides=string_list(data.get("provides"), "'dependencies.provides'"),
        )


@dataclass(frozen=True)
class PackageOptions:
    """Per-package switches that suppress automatic metadata generation."""
    no_provides: bool = False
    no_depends: bool = False
    no_commands: bool = False

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "PackageOptions":
        data = mapping(data, "'options'")
        return cls(
            no_provides=bool(data.get("no-provides", False)),
            no_depends=bool(data.get("no-depends", False)),
            no_commands=bool(data.get("no-commands", False)),
        )


@dataclass(frozen=True)
class Trigger:
    script: str = ""
    paths: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Scriptlets:
    """Lifecycle scripts installed alongside the package."""
    trigger: Trigger = field(default_factory=Trigger)
    pre_install: str = ""
    post_install: str = ""
    pre_deinstall: str = ""
    post_deinstall: str = ""
    pre_upgrade: str = ""
    post_upgrade: str = ""

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "Scriptlets":
        data = mapping(data, "'scriptlets'")
        trigger = mapping(data.get("trigger"), "'scriptlets.trigger'")
        return cls(
            trigger=Trigger(
                script=str(trigger.get("script") or ""),
                paths=string_list(trigger.get("paths"), "'scriptlets.trigger.paths'"),
            ),
            pre_install=str(data.get("pre-install") or ""),
            post_install=str(data.get("post-install") or ""),
            pre_deinstall=str(data.get("pre-deinstall") or ""),
            post_deinstall=str(data.get("post-deinstall") or ""),
            pre_upgrade=str(data.get("pre-upgrade") or ""),
            post_upgrade=str(data.get("post-upgrade") or ""),
        )

    def scripts(self) -> dict[str, str]:
        """Non-empty lifecycle scripts keyed by their control-file name."""
        named = {
            ".pre-install": self.pre_install,
            ".post-install": self.post_install,
            ".pre-deinstall": self.pre_deinstall,
            ".post-deinstall": self.post_deinstall,
            ".pre-upgrade": self.pre_upgrade,
            ".post-upgrade": self.post_upgrade,
            ".trigger": self.trigger.script,
        }
        return {k: v for k, v in named.items() if v}


@dataclass(frozen=True)
class Package:
    """
    Main package metadata.

    Attributes:
        name: Package name
        version: Upstream version
        epoch: Package revision, rendered as ``-r{epoch}``
        description: Free text description
        target_architecture: Architectures this recipe may be built for
        copyright: License and attestation records
        dependencies: Declared runtime dependencies and provides
        options: Auto-metadata suppression switches
        scriptlets: Lifecycle scripts
    """
    name: str
    version: str
    epoch: int = 0
    description: str = ""
    target_architecture: tuple[str, ...] = field(default_factory=tuple)
    copyright: tuple[Copyright, ...] = field(default_factory=tuple)
    dependencies: Dependencies = field(default_factory=Dependencies)
    options: PackageOptions = field(default_factory=PackageOptions)
    scriptlets: Scriptlets = field(default_factory=Scriptlets)

    @property
    def full_version(self) -> str:
        return f"{self.version}-r{self.epoch}"

    def license_expression(self) -> str:
        """SPDX expression formed by OR-ing every declared license."""
        return " OR ".join(cp.license for cp in self.copyright)

    def full_copyright(self) -> str:
        """All copyright attestations, one per line."""
        return "".join(cp.attestation + "\n" for cp in self.copyright)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Package":
        if not isinstance(data, dict):
            raise ConfigError("Recipe is missing the 'package' section")
        if not data.get("name"):
            raise ConfigError("Package name is required")
        try:
            epoch = int(data.get("epoch", 0) or 0)
        except (TypeError, ValueError):
            raise ConfigError(f"Package epoch must be an integer: {data.get('epoch')!r}")
        if epoch < 0:
            raise ConfigError(f"Package epoch must not be negative: {epoch}")

        return cls(
            name=str(data["name"]),
            version=str(data.get("version") or ""),
            epoch=epoch,
            description=str(data.get("description") or ""),
            target_architecture=string_list(data.get("target-architecture"), "'target-architecture'"),
            copyright=tuple(Copyright.from_dict(c) for c in _entries(data.get("copyright"), "'copyright'")),
            dependencies=Dependencies.from_dict(data.get("dependencies")),
            options=PackageOptions.from_dict(data.get("options")),
            scriptlets=Scriptlets.from_dict(data.get("scriptlets")),
        )


@dataclass(frozen=True)
class Subpackage:
    """
    A package split out of the main build.

    ``range`` names a data table; when set, the subpackage is replicated once
    per table row during loading and the replicas carry an empty ``range``.
    """
    name: str
    description: str = ""
    range: str = ""
    pipeline: tuple[Step, ...] = field(default_factory=tuple)
    dependencies: Dependencies = field(default_factory=Dependencies)
    options: PackageOptions = field(default_factory=PackageOptions)
    scriptlets: Scriptlets = field(default_factory=Scriptlets)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Subpackage":
        if not isinstance(data, dict) or not data.get("name"):
            raise ConfigError("Subpackage name is required")
        return cls(
            name=str(data["name"]),
            description=str(data.get("description") or ""),
            range=str(data.get("range") or ""),
            pipeline=steps_from_list(data.get("pipeline")),
            dependencies=Dependencies.from_dict(data.get("dependencies")),
            options=PackageOptions.from_dict(data.get("options")),
            scriptlets=Scriptlets.from_dict(data.get("scriptlets")),
        )


@dataclass(frozen=True)
class Recipe:
    """
    A complete recipe document.

    The environment is kept as a plain mapping; it is owned by the guest
    builder and only touched here to add accounts, variables and packages.
    """
    package: Package
    environment: dict[str, Any] = field(default_factory=dict, hash=False)
    pipeline: tuple[Step, ...] = field(default_factory=tuple)
    subpackages: tuple[Subpackage, ...] = field(default_factory=tuple)
    data: tuple[DataTable, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Recipe":
        """Deserialize from a parsed YAML document."""
        if not isinstance(data, dict):
            raise ConfigError("Recipe document must be a mapping")

        environment = mapping(data.get("environment"), "'environment'")

        return cls(
            package=Package.from_dict(data.get("package")),
            environment=copy.deepcopy(environment),
            pipeline=steps_from_list(data.get("pipeline")),
            subpackages=tuple(Subpackage.from_dict(sp) for sp in _entries(data.get("subpackages"), "'subpackages'")),
            data=tuple(DataTable.from_dict(d) for d in _entries(data.get("data"), "'data'")),
        )

    def get_table(self, name: str) -> Optional[DataTable]:
        for table in self.data:
            if table.name == name:
                return table
        return None

    def environment_variables(self) -> dict[str, str]:
        return dict(self.environment.get("environment") or {})

    def fingerprint(self) -> str:
        """
        SHA256 over the canonical JSON form of the pipelines.

        Used to notice a recipe that changed between a breakpoint and its
        continuation.
        """
        canonical = json.dumps(
            {
                "package": [self.package.name, self.package.full_version],
                "pipeline": [s.to_dict() for s in self.pipeline],
                "subpackages": [
                    [sp.name, [s.to_dict() for s in sp.pipeline]] for sp in self.subpackages
                ],
            },
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha256(canonical.encode()).hexdigest()
