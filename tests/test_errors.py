"""Tests for pkgsmith.errors."""

from pkgsmith.errors import (
    AssertionFailedError,
    ConfigError,
    DelegatedError,
    ExecutionError,
    PkgsmithError,
    RangeError,
    ResourceError,
    StepFailedError,
    TemplateInputError,
    TemplateNotFoundError,
)


class TestHierarchy:
    def test_config_errors(self):
        for cls in (RangeError, TemplateNotFoundError):
            assert issubclass(cls, ConfigError)
        assert isinstance(TemplateInputError("t", "i"), ConfigError)
        assert issubclass(ConfigError, PkgsmithError)

    def test_execution_errors(self):
        assert isinstance(StepFailedError("s", 1), ExecutionError)
        assert isinstance(AssertionFailedError("s", 2, 1), ExecutionError)

    def test_resource_and_delegated(self):
        assert issubclass(ResourceError, PkgsmithError)
        assert isinstance(DelegatedError("op", ValueError("x")), PkgsmithError)


class TestMessages:
    def test_execution_error(self):
        cause = OSError("disk full")
        error = ExecutionError("make", "could not write", cause)
        assert str(error) == "Step 'make' failed: could not write"
        assert error.step == "make"
        assert error.cause is cause

    def test_step_failed(self):
        error = StepFailedError("make", 2)
        assert error.returncode == 2
        assert "exited with status 2" in str(error)

    def test_assertion_failed(self):
        error = AssertionFailedError("group", 2, 1)
        assert "2 steps required but only 1 ran" in str(error)

    def test_template_input(self):
        error = TemplateInputError("go/build", "packages")
        assert "go/build" in str(error)
        assert "packages" in str(error)

    def test_delegated(self):
        cause = RuntimeError("apko exited with status 1")
        error = DelegatedError("unable to build guest", cause)
        assert str(error) == "unable to build guest: apko exited with status 1"
        assert error.cause is cause
