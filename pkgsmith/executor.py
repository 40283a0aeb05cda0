"""
Executor - Walk a step tree and run it inside the build guest.

For each step, depth-first in document order, the executor:
1. Applies the breakpoint/continuation protocol to the step's label
2. Evaluates the ``if`` guard against the active scope (false skips the
   step and everything below it)
3. Expands ``uses`` into the template body, with the step's inputs as the
   new ``inputs.*`` scope
4. Runs a literal ``runs`` command through the runner and waits for it
5. Runs child steps in order and checks ``assertions.required-steps``

Breakpoint/continuation:
- With a continue label, the executor starts suspended. Suspended steps are
  walked but nothing runs until a step carrying the continue label is
  reached; from there on execution is normal.
- With a breakpoint label, BreakpointReached is raised just before the step
  carrying that label would run. Nothing is cleaned up; the session persists
  its state so a later invocation can continue from the same label.
- BreakpointReached carries the package name and step path (child indexes
  from the pipeline root). Passed back as ``resume_at``, it selects the
  occurrence to resume at when range replicas repeat a label.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional

from pkgsmith.arch import Architecture
from pkgsmith.conditions import evaluate
from pkgsmith.errors import AssertionFailedError, StepFailedError
from pkgsmith.registry import TemplateRegistry
from pkgsmith.runners import Runner
from pkgsmith.schemas import Package, Step, Subpackage
from pkgsmith.substitution import Replacer


# Per-package output directories live under <workspace>/<PACKAGE_OUTPUT_DIR>/<name>
PACKAGE_OUTPUT_DIR = "pkgsmith-out"


class BreakpointReached(Exception):
    """Raised to stop execution cleanly at a breakpoint label."""

    def __init__(self, label: str, package: str = "", path: tuple[int, ...] = ()):
        self.label = label
        self.package = package
        self.path = path
        super().__init__(f"stopping execution at breakpoint: {label}")


@dataclass
class PipelineContext:
    """
    What a pipeline runs for: the package (or subpackage) and the target.

    Attributes:
        package: The main package metadata
        arch: Target architecture
        env: Environment variables for every command
        subpackage: Set while running a subpackage pipeline
        build_flavor: "gnu" or "musl", used for triplets
    """
    package: Package
    arch: Architecture
    env: dict[str, str] = field(default_factory=dict)
    subpackage: Optional[Subpackage] = None
    build_flavor: str = "musl"

    @property
    def name(self) -> str:
        return self.subpackage.name if self.subpackage else self.package.name

    def variables(self, workspace_path: str) -> dict[str, str]:
        """Base substitution variables, available to every step."""
        out_dir = f"{workspace_path}/{PACKAGE_OUTPUT_DIR}"
        variables = {
            "package.name": self.package.name,
            "package.version": self.package.version,
            "package.epoch": str(self.package.epoch),
            "package.full-version": self.package.full_version,
            "package.description": self.package.description,
            "targets.destdir": f"{out_dir}/{self.package.name}",
            "context.name": self.name,
            "build.arch": self.arch.to_package(),
            "host.triplet.gnu": self.arch.to_triplet(self.build_flavor),
            "host.triplet.rust": self.arch.to_rust_triplet(self.build_flavor),
        }
        if self.subpackage is not None:
            variables["targets.subpkgdir"] = f"{out_dir}/{self.subpackage.name}"
        return variables


@dataclass(frozen=True)
class StepScope:
    """
    Variables visible to a step.

    ``base`` holds package/target variables and never changes during a run.
    ``inputs`` holds the current template instantiation's inputs and is
    replaced, not merged, when entering another template.
    """
    base: tuple[tuple[str, str], ...]
    inputs: tuple[tuple[str, str], ...] = ()

    @classmethod
    def from_mapping(cls, base: Mapping[str, str]) -> "StepScope":
        return cls(base=tuple(base.items()))

    def with_inputs(self, inputs: Mapping[str, str]) -> "StepScope":
        return StepScope(base=self.base, inputs=tuple(inputs.items()))

    @property
    def variables(self) -> dict[str, str]:
        variables = dict(self.base)
        variables.update({f"inputs.{k}": v for k, v in self.inputs})
        return variables

    def replacer(self) -> Replacer:
        return Replacer.from_variables(self.variables)


class PipelineExecutor:
    """
    Execution engine for step trees.

    One executor is used for a whole build session so that the suspension
    state carries from the root pipeline into subpackage pipelines.

    Usage:
        executor = PipelineExecutor(registry, runner, logger)
        executor.run(recipe.pipeline, PipelineContext(recipe.package, arch))
    """

    def __init__(
        self,
        registry: TemplateRegistry,
        runner: Runner,
        logger: Optional[logging.Logger | logging.LoggerAdapter] = None,
        breakpoint_label: str = "",
        continue_label: str = "",
        resume_at: Optional[tuple[str, tuple[int, ...]]] = None,
    ):
        """
        Initialize the executor.

        Args:
            registry: Registry used to expand ``uses`` references
            runner: Runner that executes leaf commands in the guest
            logger: Session logger
            breakpoint_label: Stop before the step carrying this label
            continue_label: Stay suspended until the step carrying this label
            resume_at: Package name and step path of the occurrence of the
                continue label to resume at; any occurrence when None
        """
        self._registry = registry
        self._runner = runner
        self.logger = logger or logging.getLogger(__name__)
        self.breakpoint_label = breakpoint_label
        self.continue_label = continue_label
        self.resume_at = resume_at
        self.suspended = bool(continue_label)

    @property
    def continuation_found(self) -> bool:
        """True once the continue label was reached (or none was given)."""
        return not self.suspended

    def run(self, steps: Iterable[Step], context: PipelineContext) -> int:
        """
        Run a step sequence for a package.

        Args:
            steps: Top-level steps of the package pipeline
            context: Package and target information

        Returns:
            Number of top-level steps that executed

        Raises:
            BreakpointReached: When the breakpoint label is reached
            StepFailedError: When a command exits non-zero
            AssertionFailedError: When a container runs too few children
            ConfigError: On missing templates, inputs or bad guards
        """
        scope = StepScope.from_mapping(context.variables(self._runner.workspace_path))
        return self._run_sequence(steps, scope, context, ())

    def _run_sequence(
        self, steps: Iterable[Step], scope: StepScope, context: PipelineContext, path: tuple[int, ...],
    ) -> int:
        executed = 0
        for index, step in enumerate(steps):
            if self._run_step(step, scope, context, path + (index,)):
                executed += 1
        return executed

    def _check_label(self, step: Step, context: PipelineContext, path: tuple[int, ...]) -> None:
        if not step.label:
            return
        if self.suspended:
            if step.label == self.continue_label and self.resume_at in (None, (context.name, path)):
                self.suspended = False
                self.logger.info(
                    "continuing execution at label %s", step.label,
                    extra={"event": "continuation_found", "step": step.label},
                )
        elif self.breakpoint_label and step.label == self.breakpoint_label:
            raise BreakpointReached(step.label, context.name, path)

    def _run_step(self, step: Step, scope: StepScope, context: PipelineContext, path: tuple[int, ...]) -> bool:
        """
        Run one step and its subtree.

        Returns:
            True if the step executed in this invocation, False if it was
            skipped by its guard or walked while suspended
        """
        self._check_label(step, context, path)
        entered_suspended = self.suspended

        if not entered_suspended and step.if_:
            guard = scope.replacer().replace(step.if_)
            if not evaluate(guard):
                self.logger.info(
                    "skipping step %s (condition %r is false)", step.identity(), guard,
                    extra={"event": "step_skipped", "step": step.identity()},
                )
                return False

        if step.is_template_reference:
            children, child_scope = self._expand_template(step, scope)
        else:
            children, child_scope = step.pipeline, scope
            if step.runs and not entered_suspended:
                self._execute(step, scope, context)

        executed = self._run_sequence(children, child_scope, context, path)

        if step.required_steps and not entered_suspended and executed < step.required_steps:
            raise AssertionFailedError(step.identity(), step.required_steps, executed)

        return not entered_suspended

    def _expand_template(self, step: Step, scope: StepScope) -> tuple[tuple[Step, ...], StepScope]:
        template = self._registry.load(step.uses)
        replacer = scope.replacer()

        provided = {k: replacer.replace(v) for k, v in step.with_}
        inputs = {k: replacer.replace(v) for k, v in template.resolve_inputs(provided).items()}

        self.logger.debug(
            "expanding %s with inputs %s", step.uses, inputs,
            extra={"event": "template_expanded", "step": step.identity()},
        )
        return template.body, scope.with_inputs(inputs)

    def _execute(self, step: Step, scope: StepScope, context: PipelineContext) -> None:
        script = scope.replacer().replace(step.runs)
        identity = step.identity()

        self.logger.info(
            "running step %s", identity,
            extra={"event": "step_started", "step": identity},
        )
        started = time.monotonic()
        returncode = self._runner.run(script, context.env)
        duration = time.monotonic() - started

        if returncode != 0:
            self.logger.error(
                "step %s exited with status %d", identity, returncode,
                extra={"event": "step_failed", "step": identity,
                       "metadata": {"returncode": returncode}},
            )
            raise StepFailedError(identity, returncode)

        self.logger.debug(
            "step %s completed in %.2fs", identity, duration,
            extra={"event": "step_completed", "step": identity,
                   "metadata": {"duration_seconds": duration}},
        )


def collect_languages(steps: Iterable[Step]) -> list[str]:
    """SBOM language hints declared anywhere in a step tree, first-seen order."""
    languages: list[str] = []
    for step in steps:
        if step.sbom_language and step.sbom_language not in languages:
            languages.append(step.sbom_language)
        for language in collect_languages(step.pipeline):
            if language not in languages:
                languages.append(language)
    return languages
