"""
Canonical (CDM) entity support.

Components:
- CDMRegistry: Ordered catalog of standard table templates
- CDMMatcher: Detect diagram entities that correspond to standard tables
- MatchStrategy / DefaultMatchStrategy: Pluggable scoring
"""

from .cdm_registry import (
    CDM_TEMPLATES,
    CDMRegistry,
    CDMTemplate,
)
from .cdm_matcher import (
    CDMMatch,
    CDMMatcher,
    DefaultMatchStrategy,
    MatchScore,
    MatchStrategy,
    normalize_name,
)


__all__ = [
    'CDM_TEMPLATES',
    'CDMRegistry',
    'CDMTemplate',
    'CDMMatch',
    'CDMMatcher',
    'DefaultMatchStrategy',
    'MatchScore',
    'MatchStrategy',
    'normalize_name',
]
