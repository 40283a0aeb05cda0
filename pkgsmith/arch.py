"""
Target architecture names and toolchain triplets.

Accepts both Go/OCI style names (amd64, arm64, arm/v7) and distribution
style names (x86_64, aarch64, armv7) and normalizes them.
"""

import platform
from dataclasses import dataclass

from pkgsmith.errors import ConfigError


# alias -> canonical package architecture
_ALIASES = {
    "amd64": "x86_64",
    "x86_64": "x86_64",
    "arm64": "aarch64",
    "aarch64": "aarch64",
    "386": "x86",
    "i386": "x86",
    "i686": "x86",
    "x86": "x86",
    "arm/v7": "armv7",
    "armv7": "armv7",
    "armv7l": "armv7",
    "arm/v6": "armhf",
    "armhf": "armhf",
    "armv6l": "armhf",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
    "riscv64": "riscv64",
}

# canonical -> (gnu cpu, rust cpu)
_TRIPLET_CPUS = {
    "x86_64": ("x86_64", "x86_64"),
    "aarch64": ("aarch64", "aarch64"),
    "x86": ("i586", "i586"),
    "armv7": ("armv7", "armv7"),
    "armhf": ("arm", "arm"),
    "ppc64le": ("powerpc64le", "powerpc64le"),
    "s390x": ("s390x", "s390x"),
    "riscv64": ("riscv64", "riscv64gc"),
}


@dataclass(frozen=True)
class Architecture:
    """A normalized target architecture."""
    name: str

    @classmethod
    def parse(cls, value: str) -> "Architecture":
        canonical = _ALIASES.get(value.strip().lower())
        if canonical is None:
            raise ConfigError(f"Unsupported architecture: {value!r}")
        return cls(canonical)

    @classmethod
    def host(cls) -> "Architecture":
        return cls.parse(platform.machine() or "x86_64")

    def to_package(self) -> str:
        """Name used for output subdirectories and package metadata."""
        return self.name

    def _eabi(self, flavor: str) -> str:
        if self.name in ("armv7", "armhf"):
            return f"{flavor}eabihf"
        return flavor

    def to_triplet(self, flavor: str) -> str:
        """GNU autoconf triplet, e.g. ``x86_64-pc-linux-gnu``."""
        cpu, _ = _TRIPLET_CPUS[self.name]
        vendor = "pc" if self.name in ("x86_64", "x86") else "unknown"
        return f"{cpu}-{vendor}-linux-{self._eabi(flavor)}"

    def to_rust_triplet(self, flavor: str) -> str:
        """Rust/Cargo triplet, e.g. ``x86_64-unknown-linux-gnu``."""
        _, cpu = _TRIPLET_CPUS[self.name]
        return f"{cpu}-unknown-linux-{self._eabi(flavor)}"

    def __str__(self) -> str:
        return self.name
