"""
BuildSession - Build every package described by one recipe.

The session is the single owner of build state. A build:
1. Resolves needs for every pipeline and merges them into the guest environment
2. Builds the guest and prepares the workspace (skipped when continuing)
3. Runs the main pipeline, then each subpackage pipeline
4. Generates one SBOM per package
5. Emits one artifact per package into ``<out>/<arch>/``
6. Removes the guest and workspace
7. Optionally indexes (and signs) ``<out>/<arch>/``

A breakpoint stops the build with guest and workspace intact and records
the session in the workspace; a later build with a matching continue label
reattaches to it.

Usage:
    session = BuildSession.from_options(SessionOptions(source_dir=Path(".")))
    result = session.build()
"""

import logging
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from pkgsmith.arch import Architecture
from pkgsmith.config import find_recipe, load_recipe, parse_build_date, source_date_epoch
from pkgsmith.emit import (
    EmitSpec,
    IndexGenerator,
    JsonIndexGenerator,
    PackageEmitter,
    TarballEmitter,
    write_dependency_log,
)
from pkgsmith.errors import ConfigError, ExecutionError, ResourceError
from pkgsmith.executor import PACKAGE_OUTPUT_DIR, BreakpointReached, PipelineContext, PipelineExecutor, collect_languages
from pkgsmith.guest import ApkoGuestBuilder, GuestBuilder, LocalGuestBuilder, build_flavor
from pkgsmith.needs import apply_needs
from pkgsmith.registry import TemplateRegistry
from pkgsmith.runners import RUNNER_KINDS, create_runner
from pkgsmith.sbom import SBOMGenerator, SBOMSpec, SpdxJsonGenerator
from pkgsmith.schemas import Recipe
from pkgsmith.state import SessionStateStore
from pkgsmith.utils import SessionLogger, format_duration
from pkgsmith.workspace import DEFAULT_IGNORE_FILE, overlay_bin_sh, populate_cache, populate_workspace


DEFAULT_CACHE_DIR = Path("/var/cache/pkgsmith")

GUEST_BUILDERS = ("apko", "local")


@dataclass
class SessionOptions:
    """
    Options for one build session.

    Attributes:
        recipe_path: Recipe file (auto-detected in ``source_dir`` when None)
        source_dir: Tree copied into the workspace
        workspace_dir: Workspace root; arch-qualified unless continuing,
            a temporary directory when None
        guest_dir: Guest root; a temporary directory when None
        out_dir: Artifacts are written to ``<out_dir>/<arch>``
        cache_dir: Host cache of content-addressed downloads
        pipeline_dir: Extra step-template directory, searched first
        arch: Target architecture (host architecture when None)
        build_date: RFC 3339 timestamp; SOURCE_DATE_EPOCH overrides it
        signing_key: Private key used to sign the index
        generate_index: Write INDEX.json after emission
        use_proot: Run the guest through proot
        empty_workspace: Do not copy the source tree
        workspace_ignore: Ignore file name inside ``source_dir``
        extra_keys: Additional keyring entries for the guest
        extra_repos: Additional repositories for the guest
        overlay_bin_sh: Host shell copied over ``<guest>/bin/sh``
        breakpoint_label: Stop before the step carrying this label
        continue_label: Resume a suspended build at this label
        env_file: dotenv file merged beneath the recipe environment
        runner: Runner kind (bubblewrap, proot or host)
        guest_builder: Guest builder kind (apko or local)
        signing_passphrase: Passphrase of the signing key
        dependency_log: File the resolved depends/provides of every package
            are written to
        strip_origin_name: Leave the origin out of generated packages
    """
    recipe_path: Optional[Path] = None
    source_dir: Path = Path(".")
    workspace_dir: Optional[Path] = None
    guest_dir: Optional[Path] = None
    out_dir: Path = Path(".")
    cache_dir: Path = DEFAULT_CACHE_DIR
    pipeline_dir: Optional[Path] = None
    arch: Optional[str] = None
    build_date: str = ""
    signing_key: Optional[Path] = None
    generate_index: bool = True
    use_proot: bool = False
    empty_workspace: bool = False
    workspace_ignore: str = DEFAULT_IGNORE_FILE
    extra_keys: tuple[str, ...] = field(default_factory=tuple)
    extra_repos: tuple[str, ...] = field(default_factory=tuple)
    overlay_bin_sh: Optional[Path] = None
    breakpoint_label: str = ""
    continue_label: str = ""
    env_file: Optional[Path] = None
    runner: str = "bubblewrap"
    guest_builder: str = "apko"
    signing_passphrase: str = ""
    dependency_log: Optional[Path] = None
    strip_origin_name: bool = False


@dataclass
class BuildResult:
    """Outcome of a build session."""
    status: str  # "completed" or "suspended"
    package: str
    arch: str
    workspace_dir: Path
    guest_dir: Path
    artifacts: list[Path] = field(default_factory=list)
    index_path: Optional[Path] = None
    breakpoint_label: str = ""
    duration_seconds: float = 0.0

    @property
    def suspended(self) -> bool:
        return self.status == "suspended"

    def summarize(self) -> str:
        if self.suspended:
            return (
                f"{self.package}/{self.arch} suspended at '{self.breakpoint_label}' "
                f"(workspace: {self.workspace_dir}, guest: {self.guest_dir})"
            )
        lines = [f"{self.package}/{self.arch}: {len(self.artifacts)} package(s) in {format_duration(self.duration_seconds)}"]
        lines += [f"  {artifact}" for artifact in self.artifacts]
        if self.index_path:
            lines.append(f"  index: {self.index_path}")
        return "\n".join(lines)


class BuildSession:
    """
    A single build of a recipe for one architecture.

    Collaborators (guest builder, SBOM generator, emitter, index generator)
    default from the options and may be injected for testing.
    """

    def __init__(
        self,
        options: SessionOptions,
        recipe: Recipe,
        arch: Architecture,
        build_date: datetime,
        registry: TemplateRegistry,
        logger: logging.Logger | logging.LoggerAdapter,
        guest_builder: Optional[GuestBuilder] = None,
        sbom_generator: Optional[SBOMGenerator] = None,
        emitter: Optional[PackageEmitter] = None,
        index_generator: Optional[IndexGenerator] = None,
    ):
        if not recipe.pipeline:
            raise ConfigError("No pipeline has been configured, check the recipe for indentation errors")
        if options.runner not in RUNNER_KINDS:
            raise ConfigError(f"Unknown runner: {options.runner!r}")

        self.options = options
        self.recipe = recipe
        self.arch = arch
        self.build_date = build_date
        self.registry = registry
        self.logger = logger

        self.workspace_dir = self._resolve_workspace()
        self.guest_dir = Path(options.guest_dir) if options.guest_dir else None
        # Temporary directories created by this session, removed on setup failure
        self._temp_dirs: list[Path] = []
        self._resume_at: Optional[tuple[str, tuple[int, ...]]] = None

        self.guest_builder = guest_builder or self._default_guest_builder()
        self.sbom_generator = sbom_generator or SpdxJsonGenerator(logger)
        self.emitter = emitter or TarballEmitter(logger)
        self.index_generator = index_generator or JsonIndexGenerator(
            logger, signing_passphrase=options.signing_passphrase,
        )

    @classmethod
    def from_options(
        cls,
        options: SessionOptions,
        logger: Optional[logging.Logger] = None,
        **collaborators,
    ) -> "BuildSession":
        """
        Load the recipe and set up a session.

        Raises:
            ConfigError: If the recipe, architecture, build date or
                SOURCE_DATE_EPOCH is invalid
        """
        recipe_path = options.recipe_path or find_recipe(options.source_dir)
        recipe = load_recipe(recipe_path, env_file=options.env_file)

        arch = Architecture.parse(options.arch) if options.arch else Architecture.host()
        build_date = source_date_epoch(parse_build_date(options.build_date))
        registry = TemplateRegistry(options.pipeline_dir)

        base_logger = logger or logging.getLogger("pkgsmith")
        session_logger = SessionLogger(base_logger, recipe.package.name, arch.to_package())
        session_logger.debug("loaded recipe %s", recipe_path, extra={"event": "recipe_loaded"})

        return cls(options, recipe, arch, build_date, registry, session_logger, **collaborators)

    @property
    def package_dir(self) -> Path:
        """Directory artifacts for this architecture are written to."""
        return Path(self.options.out_dir) / self.arch.to_package()

    @property
    def state_store(self) -> SessionStateStore:
        if self.workspace_dir is None:
            raise ConfigError("The workspace directory has not been created yet")
        return SessionStateStore(self.workspace_dir)

    def _resolve_workspace(self) -> Optional[Path]:
        if not self.options.workspace_dir:
            if self.options.continue_label:
                raise ConfigError("A workspace directory is required to continue a build")
            # Created in _prepare
            return None
        if self.options.continue_label:
            return Path(self.options.workspace_dir)
        return Path(self.options.workspace_dir) / self.arch.to_package()

    def _default_guest_builder(self) -> GuestBuilder:
        if self.options.guest_builder == "apko":
            return ApkoGuestBuilder(logger=self.logger)
        if self.options.guest_builder == "local":
            return LocalGuestBuilder(logger=self.logger)
        raise ConfigError(
            f"Unknown guest builder: {self.options.guest_builder!r} "
            f"(expected one of {', '.join(GUEST_BUILDERS)})"
        )

    def _runner_kind(self) -> str:
        if self.options.use_proot and self.options.runner == "bubblewrap":
            return "proot"
        return self.options.runner

    def build(self) -> BuildResult:
        """
        Run the build.

        Returns:
            BuildResult with status "completed", or "suspended" when a
            breakpoint was reached

        Raises:
            ConfigError: Invalid recipe, template or continuation
            ExecutionError: A step failed, an assertion was not met or the
                continue label was never reached
            ResourceError: Workspace or guest preparation failed
            DelegatedError: A collaborator failed
        """
        started = time.monotonic()
        try:
            self.recipe = apply_needs(self.recipe, self.registry)
            if self.options.continue_label:
                self._reattach()
            else:
                self._prepare()
        except Exception:
            self._remove_temp_dirs()
            raise

        runner = create_runner(self._runner_kind(), self.guest_dir, self.workspace_dir, self.logger)
        executor = PipelineExecutor(
            self.registry,
            runner,
            self.logger,
            breakpoint_label=self.options.breakpoint_label,
            continue_label=self.options.continue_label,
            resume_at=self._resume_at,
        )

        keep = False
        try:
            languages = self._run_pipelines(executor)
            if not executor.continuation_found:
                keep = True
                raise ExecutionError(
                    self.options.continue_label,
                    "continue label was never reached",
                )
            self._generate_sboms(languages)
            artifacts = self._emit_packages()
            if self.options.dependency_log:
                write_dependency_log(Path(self.options.dependency_log), artifacts)
        except BreakpointReached as bp:
            return self._suspend(bp, started)
        except Exception:
            if not keep:
                self.cleanup()
            raise

        self.state_store.clear()
        self.cleanup()

        index_path = None
        if self.options.generate_index:
            index_path = self.index_generator.generate(self.package_dir, self.options.signing_key)

        return BuildResult(
            status="completed",
            package=self.recipe.package.name,
            arch=self.arch.to_package(),
            workspace_dir=self.workspace_dir,
            guest_dir=self.guest_dir,
            artifacts=artifacts,
            index_path=index_path,
            duration_seconds=time.monotonic() - started,
        )

    def _prepare(self) -> None:
        """Build the guest and populate the cache and workspace."""
        try:
            if self.workspace_dir is None:
                self.workspace_dir = Path(tempfile.mkdtemp(prefix="pkgsmith-workspace-"))
                self._temp_dirs.append(self.workspace_dir)
            self.workspace_dir.mkdir(parents=True, exist_ok=True)
            if self.guest_dir is None:
                self.guest_dir = Path(tempfile.mkdtemp(prefix="pkgsmith-guest-"))
                self._temp_dirs.append(self.guest_dir)
            self.guest_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ResourceError(f"Unable to create build directories: {e}")

        self.logger.info("building guest for %s", self.arch, extra={"event": "guest_build"})
        self.guest_builder.build(
            self.guest_dir,
            self.recipe.environment,
            self.arch,
            use_proot=self.options.use_proot,
            extra_keys=self.options.extra_keys,
            extra_repos=self.options.extra_repos,
        )

        if self.options.overlay_bin_sh:
            self.logger.info("overlaying /bin/sh with %s", self.options.overlay_bin_sh)
            overlay_bin_sh(Path(self.options.overlay_bin_sh), self.guest_dir)

        populate_cache(Path(self.options.cache_dir), self.guest_dir, self.logger)

        if self.options.empty_workspace:
            self.logger.info("empty workspace requested")
        else:
            populate_workspace(
                Path(self.options.source_dir),
                self.workspace_dir,
                ignore_file=self.options.workspace_ignore,
                logger=self.logger,
            )

        try:
            for name in [self.recipe.package.name] + [sp.name for sp in self.recipe.subpackages]:
                (self.workspace_dir / PACKAGE_OUTPUT_DIR / name).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ResourceError(f"Unable to create package output directories: {e}")

    def _reattach(self) -> None:
        """Pick up the guest of a suspended session."""
        suspended = self.state_store.load()
        if suspended is None:
            raise ConfigError(
                f"No suspended build in {self.workspace_dir}; nothing to continue"
            )
        if suspended.recipe_sha256 != self.recipe.fingerprint():
            self.logger.warning("recipe changed since the build was suspended")
        if self.guest_dir is not None and self.guest_dir != Path(suspended.guest_dir):
            self.logger.warning("ignoring guest dir %s, reusing %s", self.guest_dir, suspended.guest_dir)

        self.guest_dir = Path(suspended.guest_dir)
        if suspended.breakpoint_package and suspended.breakpoint_label == self.options.continue_label:
            self._resume_at = (suspended.breakpoint_package, suspended.breakpoint_path)
        self.logger.info(
            "continuing build suspended at %s on %s",
            suspended.breakpoint_label, suspended.suspended_at.isoformat(),
            extra={"event": "session_reattached"},
        )

    def _run_pipelines(self, executor: PipelineExecutor) -> dict[str, list[str]]:
        """Run the main pipeline, then each subpackage's; return language hints per package."""
        env = self.recipe.environment_variables()
        flavor = build_flavor(self.guest_dir)
        package = self.recipe.package

        self.logger.info("running the main pipeline", extra={"event": "pipeline_started"})
        executor.run(self.recipe.pipeline, PipelineContext(package, self.arch, env, build_flavor=flavor))
        languages = {package.name: collect_languages(self.recipe.pipeline)}

        for subpackage in self.recipe.subpackages:
            self.logger.info("running pipeline for subpackage %s", subpackage.name,
                             extra={"event": "pipeline_started"})
            context = PipelineContext(package, self.arch, env, subpackage=subpackage, build_flavor=flavor)
            executor.run(subpackage.pipeline, context)
            languages[subpackage.name] = collect_languages(subpackage.pipeline)

        return languages

    def _generate_sboms(self, languages: dict[str, list[str]]) -> None:
        package = self.recipe.package
        for name in [package.name] + [sp.name for sp in self.recipe.subpackages]:
            self.sbom_generator.generate(SBOMSpec(
                path=self.workspace_dir / PACKAGE_OUTPUT_DIR / name,
                package_name=name,
                package_version=package.full_version,
                languages=tuple(languages.get(name, ())),
                license=package.license_expression(),
                copyright=package.full_copyright(),
                build_date=self.build_date,
            ))

    def _emit_packages(self) -> list[Path]:
        package = self.recipe.package
        out_root = self.workspace_dir / PACKAGE_OUTPUT_DIR
        common = dict(
            version=package.version,
            epoch=package.epoch,
            arch=self.arch.to_package(),
            license=package.license_expression(),
            origin=package.name,
            strip_origin_name=self.options.strip_origin_name,
            build_date=self.build_date,
        )

        specs = [EmitSpec(
            name=package.name,
            source_dir=out_root / package.name,
            description=package.description,
            dependencies=package.dependencies,
            options=package.options,
            scriptlets=package.scriptlets,
            **common,
        )]
        specs += [EmitSpec(
            name=sp.name,
            source_dir=out_root / sp.name,
            description=sp.description,
            dependencies=sp.dependencies,
            options=sp.options,
            scriptlets=sp.scriptlets,
            **common,
        ) for sp in self.recipe.subpackages]

        return [self.emitter.emit(spec, self.package_dir) for spec in specs]

    def _suspend(self, bp: BreakpointReached, started: float) -> BuildResult:
        label = bp.label
        self.state_store.save(
            package=self.recipe.package.name,
            arch=self.arch.to_package(),
            guest_dir=self.guest_dir,
            breakpoint_label=label,
            recipe_sha256=self.recipe.fingerprint(),
            breakpoint_package=bp.package,
            breakpoint_path=bp.path,
        )
        self.logger.info(
            "stopped at breakpoint %s; continue with --continue-label %s --workspace-dir %s",
            label, label, self.workspace_dir,
            extra={"event": "session_suspended"},
        )
        return BuildResult(
            status="suspended",
            package=self.recipe.package.name,
            arch=self.arch.to_package(),
            workspace_dir=self.workspace_dir,
            guest_dir=self.guest_dir,
            breakpoint_label=label,
            duration_seconds=time.monotonic() - started,
        )

    def cleanup(self) -> None:
        """Remove the guest and workspace; failures are logged, not raised."""
        for label, path in (("guest", self.guest_dir), ("workspace", self.workspace_dir)):
            if path is None or not path.exists():
                continue
            try:
                shutil.rmtree(path)
            except OSError as e:
                self.logger.warning("unable to remove %s %s: %s", label, path, e)

    def _remove_temp_dirs(self) -> None:
        """Remove the temporary directories this session created."""
        for path in self._temp_dirs:
            try:
                shutil.rmtree(path)
            except FileNotFoundError:
                continue
            except OSError as e:
                self.logger.warning("unable to remove %s: %s", path, e)
        self._temp_dirs = []
