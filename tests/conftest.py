"""
Global test configuration: environment isolation, markers and shared fixtures.
"""

from collections.abc import Generator
from contextlib import contextmanager
import logging
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from place_intel.reference import ReferenceData, load_reference_data
from tests.helpers import make_config


# --- Environment Isolation (Autouse) ---
@pytest.fixture(autouse=True)
def isolate_place_intel_env(request, monkeypatch):
    """Ensure a clean PLACE_INTEL_* environment for each test.

    Escape hatch: @pytest.mark.allow_env_pollution keeps the current env.
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return
    for key in list(os.environ.keys()):
        if key.startswith("PLACE_INTEL_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def neutral_config_files(request, monkeypatch, tmp_path):
    """Point the home and project config files at isolated temp paths.

    Prevents reading a developer's real ~/.config/place_intel.toml or the
    repository's pyproject.toml during tests.
    """
    if request.node.get_closest_marker("allow_real_home_config"):
        return
    fake_home_dir = tmp_path / "home_config_isolated"
    fake_home_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("PLACE_INTEL_CONFIG_HOME", str(fake_home_dir / "place_intel.toml"))
    monkeypatch.setenv("PLACE_INTEL_PYPROJECT_PATH", str(tmp_path / "no_pyproject.toml"))


@pytest.fixture
def isolated_config_sources(tmp_path):
    """Set up specific project, home and environment config sources.

    Returns a context manager factory; env var names get the PLACE_INTEL_
    prefix automatically.
    """

    @contextmanager
    def _setup(
        *,
        pyproject_content: str = "",
        home_content: str = "",
        env_vars: dict[str, str] | None = None,
    ) -> Generator[None]:
        clean_env = {
            k: v for k, v in os.environ.items() if not k.startswith("PLACE_INTEL_")
        }
        for key, value in (env_vars or {}).items():
            if not key.startswith("PLACE_INTEL_"):
                key = f"PLACE_INTEL_{key.upper()}"
            clean_env[key] = value

        project_dir = tmp_path / "project"
        project_dir.mkdir(exist_ok=True)
        pyproject_path = project_dir / "pyproject.toml"
        home_dir = tmp_path / "home"
        home_dir.mkdir(exist_ok=True)
        home_config_path = home_dir / "place_intel.toml"

        if pyproject_content:
            pyproject_path.write_text(pyproject_content, encoding="utf-8")
        if home_content:
            home_config_path.write_text(home_content, encoding="utf-8")

        clean_env["PLACE_INTEL_PYPROJECT_PATH"] = str(pyproject_path)
        clean_env["PLACE_INTEL_CONFIG_HOME"] = str(home_config_path)

        with patch.dict(os.environ, clean_env, clear=True):
            yield

    return _setup


# --- Logging Fixtures ---
@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Sets the log level for noisy external libraries to WARNING."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# --- Test Environment Markers ---
def pytest_configure(config):
    """Configure custom markers for test organization."""
    markers = [
        "unit: Fast, isolated unit tests",
        "contract: Protocol and invariant contract tests",
        "security: Secret handling tests",
        "slow: Tests that take >1 second",
        "allow_env_pollution: Keep PLACE_INTEL_* variables for this test",
        "allow_real_home_config: Read the real home configuration file",
    ]
    for marker in markers:
        config.addinivalue_line("markers", marker)


# --- Core Fixtures ---


@pytest.fixture(scope="session")
def reference() -> ReferenceData:
    """The packaged reference tables."""
    return load_reference_data()


@pytest.fixture
def config():
    """A frozen config with the mock adapter and short budgets."""
    return make_config()


@pytest.fixture
def reference_path() -> Path:
    return Path(__file__).parent / "fixtures" / "reference_small.toml"
