# ruff: noqa: E402

import sys
from pathlib import Path

import pytest
from _pytest.doctest import DoctestModule

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import baton.log as baton_log

DOCTEST_MODULES = {
    ROOT / "src" / "baton" / "io.py",
    ROOT / "src" / "baton" / "config.py",
    ROOT / "src" / "baton" / "models.py",
    ROOT / "src" / "baton" / "protocol" / "shell.py",
    ROOT / "src" / "baton" / "protocol" / "adapters.py",
    ROOT / "src" / "baton" / "protocol" / "executor.py",
    ROOT / "src" / "baton" / "protocol" / "guidance.py",
    ROOT / "src" / "baton" / "protocol" / "render.py",
    ROOT / "src" / "baton" / "protocol" / "mutex.py",
    ROOT / "src" / "baton" / "protocol" / "exit_policy.py",
    ROOT / "src" / "baton" / "protocol" / "review.py",
}


@pytest.fixture(autouse=True)
def _reset_log_state(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(baton_log, "_configured_level", None)
    monkeypatch.setattr(baton_log, "_no_color_override", None)
    monkeypatch.delenv("BATON_LOG_LEVEL", raising=False)
    monkeypatch.delenv("AGENT", raising=False)
    monkeypatch.delenv("BOTBUS_AGENT", raising=False)


def pytest_collect_file(
    parent: pytest.Collector, file_path: Path
) -> DoctestModule | None:
    path = file_path if isinstance(file_path, Path) else Path(str(file_path))
    if path in DOCTEST_MODULES:
        return DoctestModule.from_parent(parent, path=path)
    return None
