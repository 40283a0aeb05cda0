import logging
from pathlib import Path

import pytest

from pkgsmith.runners import Runner


class RecordingRunner(Runner):
    """Runner that records scripts instead of executing them."""

    def __init__(self, workspace_dir: Path = Path("/ws"), returncodes=None):
        super().__init__(Path("/guest"), workspace_dir)
        self.scripts: list[str] = []
        self.envs: list[dict] = []
        self._returncodes = dict(returncodes or {})

    @property
    def workspace_path(self) -> str:
        return str(self.workspace_dir)

    def command(self, script, env):
        return ["/bin/true"], dict(env), None

    def run(self, script, env):
        self.scripts.append(script)
        self.envs.append(dict(env))
        for marker, code in self._returncodes.items():
            if marker in script:
                return code
        return 0


@pytest.fixture
def recording_runner():
    return RecordingRunner()


@pytest.fixture
def runner_factory():
    return RecordingRunner


@pytest.fixture(autouse=True)
def reset_pkgsmith_logger():
    """setup_logging() detaches the package logger; restore it after each test."""
    yield
    logger = logging.getLogger("pkgsmith")
    logger.handlers = []
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture(autouse=True)
def no_source_date_epoch(monkeypatch):
    monkeypatch.delenv("SOURCE_DATE_EPOCH", raising=False)

