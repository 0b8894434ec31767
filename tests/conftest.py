from __future__ import annotations

import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = ROOT / "src"
for entry in (SRC_ROOT, ROOT):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))

import pytest  # noqa: E402

from flightcov import presets  # noqa: E402
from flightcov.logging_utils import HumanFormatter, JsonFormatter  # noqa: E402


def pytest_collection_modifyitems(config, items) -> None:
    """Skip integration tests unless explicitly selected via -m integration."""
    markexpr = config.option.markexpr or ""
    if "integration" in markexpr:
        return
    skip_integration = pytest.mark.skip(reason="integration tests run only with -m integration")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


@pytest.fixture(autouse=True)
def _isolate_camera_presets(monkeypatch, tmp_path) -> None:
    """Prevent local camera preset files from bleeding into tests."""
    monkeypatch.setenv(presets.ENV_CAMERAS_PATH, str(tmp_path / "missing_cameras.json"))
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


@pytest.fixture(autouse=True)
def _reset_logging():
    """Drop handlers installed by `configure_logging` after each test."""
    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler.formatter, (HumanFormatter, JsonFormatter)):
            root.removeHandler(handler)
            handler.close()
