"""
Centralized test fixtures for the ERD deployer test suite.

This package provides reusable fixtures for testing, including:
- Mermaid erDiagram samples
- Configuration and deployment request samples
- An in-memory metadata store and a deterministic clock

Usage:
    from fixtures import SIMPLE_DIAGRAM, FakeMetadataStore, FakeClock

Or use the pytest fixtures in conftest.py which import from here.
"""

from .config_fixtures import (
    CHOICE_REQUEST,
    PLACEHOLDER_DATAVERSE_CONFIG,
    SAMPLE_DATAVERSE_CONFIG,
    SAMPLE_REQUEST,
)
from .diagram_fixtures import (
    CHOICE_DIAGRAM,
    DUPLICATE_COLUMN_DIAGRAM,
    IMPLICIT_ENTITY_DIAGRAM,
    LOOKUP_DIAGRAM,
    MALFORMED_DIAGRAM,
    MANY_TO_MANY_DIAGRAM,
    MISSING_PK_DIAGRAM,
    SELF_REFERENCE_DIAGRAM,
    SIMPLE_DIAGRAM,
    SYSTEM_COLUMNS_DIAGRAM,
    THREE_COLUMN_DIAGRAM,
    THREE_TABLE_DIAGRAM,
)
from .fake_clock import FakeClock
from .fake_store import FakeMetadataStore, not_found

__all__ = [
    # Diagrams
    'SIMPLE_DIAGRAM',
    'THREE_TABLE_DIAGRAM',
    'THREE_COLUMN_DIAGRAM',
    'CHOICE_DIAGRAM',
    'LOOKUP_DIAGRAM',
    'MANY_TO_MANY_DIAGRAM',
    'SELF_REFERENCE_DIAGRAM',
    'DUPLICATE_COLUMN_DIAGRAM',
    'MISSING_PK_DIAGRAM',
    'SYSTEM_COLUMNS_DIAGRAM',
    'IMPLICIT_ENTITY_DIAGRAM',
    'MALFORMED_DIAGRAM',

    # Configuration
    'SAMPLE_DATAVERSE_CONFIG',
    'PLACEHOLDER_DATAVERSE_CONFIG',
    'SAMPLE_REQUEST',
    'CHOICE_REQUEST',

    # Fakes
    'FakeMetadataStore',
    'FakeClock',
    'not_found',
]
