"""Pytest configuration ensuring project root is importable.

Adds repository root (``hub``) and ``src`` (``mirrorhub``) to sys.path
explicitly to avoid interpreter/path quirks.
"""
from __future__ import annotations

import sys
from pathlib import Path
import os
import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
SRC = ROOT / "src"
if SRC.exists() and str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture(autouse=True)
def _isolate_config_env(tmp_path):  # noqa: D401
    """Ensure global config/env side effects do not leak between tests.

    - Point HUB_CONFIG_DIR at an empty temp dir (defaults only)
    - Clear aggregated config cache between tests
    - Restore HUB_CONFIG_DIR to original value
    """
    from hub.config import clear_config_cache  # local import

    prev = os.environ.get("HUB_CONFIG_DIR")
    os.environ["HUB_CONFIG_DIR"] = str(tmp_path / "configs")
    clear_config_cache()
    try:
        yield
    finally:
        clear_config_cache()
        if prev is None:
            os.environ.pop("HUB_CONFIG_DIR", None)
        else:
            os.environ["HUB_CONFIG_DIR"] = prev


@pytest.fixture(autouse=True)
def _isolate_telemetry():  # noqa: D401
    """Fresh metrics + only the built-in collector subscribed."""
    from hub import metrics
    from hub.events import reset_listeners_for_tests

    metrics.reset_for_tests()
    reset_listeners_for_tests()
    yield
    reset_listeners_for_tests()
