"""Pytest configuration and fixtures for tests."""

import logging
import os

import pytest

import qaskills.config
from qaskills.document import build_document
from qaskills.manifest import InstallStateTracker
from qaskills.writer import ArtifactWriter


@pytest.fixture
def project_dir(tmp_path):
    """Create an empty project directory.

    Args:
        tmp_path: Pytest's temporary directory fixture.

    Returns:
        Path to the project directory.
    """
    project = tmp_path / "project"
    project.mkdir()
    return project


@pytest.fixture
def home_dir(tmp_path, monkeypatch):
    """Create a fake home directory and point HOME at it.

    Returns:
        Path to the home directory.
    """
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture
def skill_document():
    """A minimal valid skill document."""
    return build_document(
        {
            "name": "playwright-e2e",
            "description": "Playwright end-to-end testing patterns",
            "version": "1.0.0",
            "author": "qa-team",
            "tags": ["e2e", "playwright"],
            "testingTypes": ["e2e"],
            "frameworks": ["playwright"],
        },
        body="# playwright-e2e\n\nUse web-first assertions.",
    )


@pytest.fixture
def tracker(project_dir):
    """Manifest tracker at the default per-project location."""
    return InstallStateTracker(project_dir / ".qaskills" / "manifest.json")


@pytest.fixture
def writer(project_dir, home_dir):
    """Artifact writer rooted at the temporary project and home."""
    return ArtifactWriter(project_dir, home_dir=home_dir)


@pytest.fixture(autouse=True)
def clean_env():
    """Clean environment variables before each test.

    This fixture ensures tests are not affected by environment variables
    set in the shell or by .env file. Sets TESTING=true to prevent
    load_dotenv() from running in config.py, and opts out of telemetry.
    Tests can set their own environment variables as needed.
    """
    # Set TESTING flag to prevent .env file loading
    os.environ["TESTING"] = "true"

    # Environment variables to clean for isolated testing
    env_vars_to_clean = [
        # Registry and telemetry
        "QASKILLS_API_URL",
        "QASKILLS_REQUEST_TIMEOUT",
        "QASKILLS_TELEMETRY",
        "QASKILLS_TELEMETRY_TIMEOUT",
        "DO_NOT_TRACK",
        # Install state
        "QASKILLS_MANIFEST_PATH",
        "QASKILLS_MAX_WORKERS",
        "LOG_LEVEL",
        # Agent detection markers
        "CLAUDECODE",
    ]

    # Store original values
    original_env = {}
    for var in env_vars_to_clean:
        if var in os.environ:
            original_env[var] = os.environ.pop(var)

    # Never send telemetry from tests
    os.environ["DO_NOT_TRACK"] = "1"
    qaskills.config._config = None

    yield

    # Restore original values
    os.environ.pop("DO_NOT_TRACK", None)
    for var, value in original_env.items():
        os.environ[var] = value
    qaskills.config._config = None

    # CLI tests bind the root handler to a captured stream
    logging.getLogger().handlers.clear()

    # Clean up TESTING flag
    if "TESTING" in os.environ:
        del os.environ["TESTING"]
