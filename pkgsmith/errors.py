"""
Error classes for pkgsmith builds.

These error types map to the phases of a build session:
- ConfigError: Load/pre-flight problems, raised before any sandbox work
- ExecutionError: A step failed or an assertion was not met
- ResourceError: Directory or file operations failed during setup
- DelegatedError: An external collaborator (guest builder, SBOM generator,
  package emitter, index generator) failed

Error handling contract:
- Configuration errors are always fatal and raised as early as possible
- Execution errors abort the remaining pipeline; cleanup is still attempted
- Teardown failures are logged as warnings, never raised
"""

from typing import Optional


class PkgsmithError(Exception):
    """Base exception for pkgsmith."""
    pass


class ConfigError(PkgsmithError):
    """
    Configuration error - the build cannot start.

    Examples:
    - Recipe document missing or unparseable
    - Empty root pipeline
    - Malformed SOURCE_DATE_EPOCH
    - Dangling range or template reference
    - Missing required template input
    """
    pass


class RangeError(ConfigError):
    """A subpackage references a data table that is not declared."""
    pass


class TemplateNotFoundError(ConfigError):
    """A step references a step-template that cannot be found."""
    pass


class TemplateInputError(ConfigError):
    """A template instantiation is missing a required input."""

    def __init__(self, template: str, input_name: str):
        self.template = template
        self.input_name = input_name
        super().__init__(
            f"Template '{template}': required input '{input_name}' has no value and no default"
        )


class ExecutionError(PkgsmithError):
    """Raised when a step fails during pipeline execution."""

    def __init__(self, step: str, message: str, cause: Optional[Exception] = None):
        self.step = step
        self.cause = cause
        super().__init__(f"Step '{step}' failed: {message}")


class StepFailedError(ExecutionError):
    """A leaf step's command exited with a non-zero status."""

    def __init__(self, step: str, returncode: int):
        self.returncode = returncode
        super().__init__(step, f"command exited with status {returncode}")


class AssertionFailedError(ExecutionError):
    """A container step executed fewer children than it requires."""

    def __init__(self, step: str, required: int, executed: int):
        self.required = required
        self.executed = executed
        super().__init__(
            step,
            f"assertion failed: {required} steps required but only {executed} ran",
        )


class ResourceError(PkgsmithError):
    """A directory or file operation failed while preparing the build."""
    pass


class DelegatedError(PkgsmithError):
    """
    Failure surfaced from an external collaborator.

    The original exception is kept as ``cause`` and the message is prefixed
    with the operation that triggered it.
    """

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation}: {cause}")
