"""
Pytest configuration and fixtures for the test suite.

Defines markers for selective test execution:
    pytest -m unit          # Fast unit tests
    pytest -m integration   # Parse -> plan -> execute against the in-memory store
    pytest -m resilience    # Retry, token refresh and failure handling

Fixtures are centralized in tests/fixtures/ for reuse across all test modules.
"""

import json
import os
import sys

import pytest

# Add src to path for imports
src_dir = os.path.join(os.path.dirname(__file__), '..', 'src')
if src_dir not in sys.path:
    sys.path.insert(0, src_dir)

# Add tests directory to path for fixtures import
tests_dir = os.path.dirname(__file__)
if tests_dir not in sys.path:
    # Ensure src directory stays ahead of tests for module resolution
    sys.path.insert(1, tests_dir)

from fixtures import (
    CHOICE_REQUEST,
    SAMPLE_DATAVERSE_CONFIG,
    SAMPLE_REQUEST,
    SIMPLE_DIAGRAM,
    FakeClock,
    FakeMetadataStore,
)

from erd_deployer.formats.erd import ERDParser
from erd_deployer.shared.models.deployment import DeploymentRequest


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "integration: Multi-component tests against the in-memory store")
    config.addinivalue_line("markers", "resilience: Retry, backoff, token refresh and abort tests")


# =============================================================================
# Diagram Fixtures
# =============================================================================

@pytest.fixture
def simple_diagram():
    """Customer/Order diagram with one one-to-many relationship."""
    return SIMPLE_DIAGRAM


@pytest.fixture
def parser():
    """Parser without canonical detection."""
    return ERDParser()


@pytest.fixture
def simple_diagram_file(tmp_path, simple_diagram):
    """Write the simple diagram to a temporary .mmd file."""
    diagram_file = tmp_path / "sales.mmd"
    diagram_file.write_text(simple_diagram, encoding="utf-8")
    return str(diagram_file)


# =============================================================================
# Request / Config Fixtures
# =============================================================================

@pytest.fixture
def sample_request():
    """Deployment request for solution ContosoSales with prefix 'cts'."""
    return DeploymentRequest.from_dict(SAMPLE_REQUEST)


@pytest.fixture
def choice_request():
    """Request with one new global choice set and one existing one."""
    return DeploymentRequest.from_dict(CHOICE_REQUEST)


@pytest.fixture
def request_file(tmp_path):
    """Write the sample request to a temporary JSON file."""
    path = tmp_path / "request.json"
    path.write_text(json.dumps(SAMPLE_REQUEST), encoding="utf-8")
    return str(path)


@pytest.fixture
def config_file(tmp_path):
    """Write a Dataverse configuration to a temporary JSON file."""
    path = tmp_path / "config.json"
    path.write_text(json.dumps(SAMPLE_DATAVERSE_CONFIG), encoding="utf-8")
    return str(path)


# =============================================================================
# Fakes
# =============================================================================

@pytest.fixture
def fake_store():
    """Empty in-memory metadata store."""
    return FakeMetadataStore()


@pytest.fixture
def fake_clock():
    """Clock that never waits."""
    return FakeClock()
