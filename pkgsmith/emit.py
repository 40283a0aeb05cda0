"""
Package emission and repository indexing.

A package artifact is a gzipped tarball:

    .PKGINFO            control metadata (name, version, depends, provides)
    .pre-install ...    lifecycle scriptlets, when declared
    <files>             contents of the package's output directory

Entry ownership is normalized to root and modification times are clamped
to the build date, so identical inputs produce identical archives.
"""

import gzip
import io
import json
import logging
import os
import subprocess
import tarfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pkgsmith.errors import DelegatedError
from pkgsmith.schemas import Dependencies, PackageOptions, Scriptlets
from pkgsmith.utils import get_file_checksum


ARTIFACT_SUFFIX = ".pkg.tar.gz"
INDEX_FILENAME = "INDEX.json"
PASSPHRASE_ENV = "PKGSMITH_SIGNING_PASSPHRASE"

COMMAND_DIRS = ("bin", "sbin", "usr/bin", "usr/sbin")
LIBRARY_DIRS = ("lib", "usr/lib")


@dataclass(frozen=True)
class EmitSpec:
    """
    Everything needed to emit one package.

    Attributes:
        name: Package name
        version: Upstream version
        epoch: Package revision
        arch: Target architecture, package naming
        source_dir: Output directory holding the package's files
        description: Package description
        license: SPDX license expression
        origin: Name of the main package this one was built from
        strip_origin_name: Leave ``origin`` out of the control metadata
        dependencies: Declared runtime dependencies and provides
        options: Auto-metadata suppression switches
        scriptlets: Lifecycle scripts
        build_date: Reproducible build timestamp
    """
    name: str
    version: str
    epoch: int
    arch: str
    source_dir: Path
    description: str = ""
    license: str = ""
    origin: str = ""
    strip_origin_name: bool = False
    dependencies: Dependencies = field(default_factory=Dependencies)
    options: PackageOptions = field(default_factory=PackageOptions)
    scriptlets: Scriptlets = field(default_factory=Scriptlets)
    build_date: datetime = field(default_factory=lambda: datetime.fromtimestamp(0, timezone.utc))

    @property
    def full_version(self) -> str:
        return f"{self.version}-r{self.epoch}"

    @property
    def filename(self) -> str:
        return f"{self.name}-{self.full_version}{ARTIFACT_SUFFIX}"


class PackageEmitter(ABC):
    """Abstract base class for package emitters."""

    @abstractmethod
    def emit(self, spec: EmitSpec, out_dir: Path) -> Path:
        """
        Write the package artifact into ``out_dir``.

        Returns:
            Path of the artifact

        Raises:
            DelegatedError: If the artifact cannot be written
        """
        pass


class IndexGenerator(ABC):
    """Abstract base class for repository index generators."""

    @abstractmethod
    def generate(self, package_dir: Path, signing_key: Optional[Path] = None) -> Path:
        """
        Index every artifact in ``package_dir``, signing it when a key is given.

        Raises:
            DelegatedError: If the index cannot be written or signed
        """
        pass


def _shebang_interpreter(path: Path) -> str:
    """Command name of a script's interpreter, or "" for non-scripts."""
    with open(path, "rb") as f:
        head = f.read(256)
    if not head.startswith(b"#!"):
        return ""
    parts = head[2:].split(b"\n", 1)[0].decode(errors="replace").split()
    if not parts:
        return ""
    interpreter = os.path.basename(parts[0])
    if interpreter == "env" and len(parts) > 1:
        interpreter = parts[1]
    return interpreter


def _is_shared_library(name: str) -> bool:
    return name.endswith(".so") or ".so." in name


class TarballEmitter(PackageEmitter):
    """Emit packages as ``<name>-<version>-r<epoch>.pkg.tar.gz`` tarballs."""

    def __init__(self, logger: Optional[logging.Logger | logging.LoggerAdapter] = None):
        self.logger = logger or logging.getLogger(__name__)

    def scan(self, spec: EmitSpec) -> tuple[list[Path], set[str], set[str], int]:
        """
        Walk the package contents.

        Returns:
            (relative paths sorted, auto depends, auto provides, installed size)
        """
        paths: list[Path] = []
        depends: set[str] = set()
        provides: set[str] = set()
        size = 0
        source_dir = Path(spec.source_dir)
        if not source_dir.is_dir():
            return paths, depends, provides, size

        for root, dirs, files in os.walk(source_dir):
            dirs.sort()
            rel_root = Path(root).relative_to(source_dir)
            for name in dirs:
                paths.append(rel_root / name)
            for name in sorted(files):
                rel = rel_root / name
                full = source_dir / rel
                paths.append(rel)
                if full.is_symlink() or not full.is_file():
                    continue

                st = full.stat()
                size += st.st_size
                executable = bool(st.st_mode & 0o111)
                parent = rel_root.as_posix()

                if executable and not spec.options.no_depends:
                    interpreter = _shebang_interpreter(full)
                    if interpreter:
                        depends.add(f"cmd:{interpreter}")
                if spec.options.no_provides:
                    continue
                if executable and parent in COMMAND_DIRS and not spec.options.no_commands:
                    provides.add(f"cmd:{name}={spec.full_version}")
                if parent in LIBRARY_DIRS and _is_shared_library(name):
                    provides.add(f"so:{name}={spec.full_version}")

        paths.sort(key=lambda p: p.as_posix())
        return paths, depends, provides, size

    def pkginfo(self, spec: EmitSpec, depends: set[str], provides: set[str], size: int) -> str:
        lines = [
            "# Generated by pkgsmith",
            f"pkgname = {spec.name}",
            f"pkgver = {spec.full_version}",
            f"arch = {spec.arch}",
            f"size = {size}",
            f"pkgdesc = {spec.description}",
        ]
        if not spec.strip_origin_name:
            lines.append(f"origin = {spec.origin or spec.name}")
        lines.append(f"builddate = {int(spec.build_date.timestamp())}")
        if spec.license:
            lines.append(f"license = {spec.license}")
        for dep in sorted(set(spec.dependencies.runtime) | depends):
            lines.append(f"depend = {dep}")
        for prov in sorted(set(spec.dependencies.provides) | provides):
            lines.append(f"provides = {prov}")
        if spec.scriptlets.trigger.paths:
            lines.append(f"triggers = {' '.join(spec.scriptlets.trigger.paths)}")
        return "\n".join(lines) + "\n"

    def emit(self, spec: EmitSpec, out_dir: Path) -> Path:
        out_dir = Path(out_dir)
        target = out_dir / spec.filename
        build_ts = int(spec.build_date.timestamp())

        def control_member(name: str, body: str, mode: int) -> tuple[tarfile.TarInfo, io.BytesIO]:
            data = body.encode()
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = mode
            info.mtime = build_ts
            info.uname = info.gname = "root"
            return info, io.BytesIO(data)

        try:
            paths, depends, provides, size = self.scan(spec)
            out_dir.mkdir(parents=True, exist_ok=True)

            with open(target, "wb") as raw, \
                    gzip.GzipFile(fileobj=raw, mode="wb", mtime=build_ts, filename="") as gz, \
                    tarfile.open(fileobj=gz, mode="w", format=tarfile.PAX_FORMAT) as tar:
                tar.addfile(*control_member(".PKGINFO", self.pkginfo(spec, depends, provides, size), 0o644))
                for name, body in sorted(spec.scriptlets.scripts().items()):
                    tar.addfile(*control_member(name, body, 0o755))

                for rel in paths:
                    full = Path(spec.source_dir) / rel
                    info = tar.gettarinfo(str(full), arcname=rel.as_posix())
                    info.uid = info.gid = 0
                    info.uname = info.gname = "root"
                    info.mtime = min(int(info.mtime), build_ts)
                    if info.isreg():
                        with open(full, "rb") as f:
                            tar.addfile(info, f)
                    else:
                        tar.addfile(info)
        except OSError as e:
            raise DelegatedError(f"unable to emit package {spec.name}", e)

        self.logger.info(
            "wrote %s", target,
            extra={"event": "package_emitted", "metadata": {"package": spec.name, "size": size}},
        )
        return target


def read_pkginfo(artifact: Path) -> dict[str, Any]:
    """Parse the ``.PKGINFO`` member of an artifact into a mapping."""
    with tarfile.open(artifact, "r:gz") as tar:
        member = tar.extractfile(".PKGINFO")
        if member is None:
            raise ValueError(f"{artifact.name} has no .PKGINFO")
        with member:
            text = member.read().decode()

    info: dict[str, Any] = {}
    for line in text.splitlines():
        if not line or line.startswith("#") or " = " not in line:
            continue
        key, value = line.split(" = ", 1)
        if key in ("depend", "provides"):
            info.setdefault(key, []).append(value)
        else:
            info[key] = value
    return info


def write_dependency_log(log_path: Path, artifacts: list[Path]) -> Path:
    """
    Record the resolved depends and provides of every emitted package.

    The log is a JSON mapping of package name to its version, ``depends``
    and ``provides`` as written into ``.PKGINFO``.

    Raises:
        DelegatedError: If an artifact cannot be read or the log written
    """
    log_path = Path(log_path)
    try:
        log: dict[str, Any] = {}
        for artifact in artifacts:
            info = read_pkginfo(artifact)
            log[info.get("pkgname", "")] = {
                "version": info.get("pkgver", ""),
                "depends": info.get("depend", []),
                "provides": info.get("provides", []),
            }
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "w") as f:
            json.dump(log, f, indent=2, sort_keys=True)
    except (OSError, ValueError, tarfile.TarError) as e:
        raise DelegatedError("unable to write dependency log", e)
    return log_path


class JsonIndexGenerator(IndexGenerator):
    """
    Write ``INDEX.json`` and, given a key, a detached ``INDEX.json.sig``.

    A passphrase for the key reaches openssl through the environment
    (``-passin env:...``), never through its argument list.
    """

    def __init__(
        self,
        logger: Optional[logging.Logger | logging.LoggerAdapter] = None,
        signing_passphrase: str = "",
    ):
        self.logger = logger or logging.getLogger(__name__)
        self.signing_passphrase = signing_passphrase

    def entries(self, package_dir: Path) -> list[dict[str, Any]]:
        entries = []
        for artifact in sorted(Path(package_dir).glob(f"*{ARTIFACT_SUFFIX}")):
            info = read_pkginfo(artifact)
            entries.append({
                "name": info.get("pkgname", ""),
                "version": info.get("pkgver", ""),
                "file": artifact.name,
                "size": artifact.stat().st_size,
                "sha256": get_file_checksum(artifact),
                **({"depends": info["depend"]} if info.get("depend") else {}),
                **({"provides": info["provides"]} if info.get("provides") else {}),
            })
        return entries

    def sign(self, index_path: Path, signing_key: Path) -> Path:
        sig_path = index_path.with_name(index_path.name + ".sig")
        argv = ["openssl", "dgst", "-sha256", "-sign", str(signing_key)]
        env = None
        if self.signing_passphrase:
            argv += ["-passin", f"env:{PASSPHRASE_ENV}"]
            env = {**os.environ, PASSPHRASE_ENV: self.signing_passphrase}
        argv += ["-out", str(sig_path), str(index_path)]
        try:
            result = subprocess.run(argv, capture_output=True, text=True, env=env)
        except OSError as e:
            raise DelegatedError("unable to sign index", e)
        if result.returncode != 0:
            raise DelegatedError("unable to sign index", RuntimeError(result.stderr.strip()))
        return sig_path

    def generate(self, package_dir: Path, signing_key: Optional[Path] = None) -> Path:
        package_dir = Path(package_dir)
        index_path = package_dir / INDEX_FILENAME
        try:
            index = {"packages": self.entries(package_dir)}
            with open(index_path, "w") as f:
                json.dump(index, f, indent=2)
        except (OSError, ValueError, tarfile.TarError) as e:
            raise DelegatedError("unable to generate index", e)

        self.logger.info(
            "indexed %d packages in %s", len(index["packages"]), index_path,
            extra={"event": "index_generated"},
        )
        if signing_key is not None:
            sig_path = self.sign(index_path, signing_key)
            self.logger.info("signed index %s", sig_path, extra={"event": "index_signed"})
        return index_path
