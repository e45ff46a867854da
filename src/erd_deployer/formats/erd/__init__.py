"""
ERD (entity-relationship diagram) format support.

This package turns Mermaid-style ``erDiagram`` text into the typed model
used by the matcher, planner and executor.

Components:
- ERDParser: Parse diagram text into a ParseResult
- ERDValidator: Semantic checks over the parsed model
- ERDCorrector: Rewrite a diagram so auto-fixable issues are resolved
- ERDTypeMapper: Map diagram type tokens onto column types
- Models: Entity, Attribute, Relationship, ChoiceSet, ValidationWarning, ...

Usage:
    from erd_deployer.formats.erd import ERDParser

    result = ERDParser().parse(text)
    print(result.validation.status)
    if result.corrected_diagram:
        print(result.corrected_diagram)
"""

from .erd_models import (
    Attribute,
    AttributeType,
    Cardinality,
    CascadeBehavior,
    ChoiceOption,
    ChoiceSet,
    Entity,
    ParseError,
    ParseResult,
    Relationship,
    Severity,
    ValidationSummary,
    ValidationWarning,
)
from .erd_type_mapper import ERDTypeMapper, TypeMapping, format_display_name, safe_name
from .erd_validator import ERDValidator
from .erd_corrector import ERDCorrector
from .erd_parser import ERDParser


__all__ = [
    # Models
    'Attribute',
    'AttributeType',
    'Cardinality',
    'CascadeBehavior',
    'ChoiceOption',
    'ChoiceSet',
    'Entity',
    'ParseError',
    'ParseResult',
    'Relationship',
    'Severity',
    'ValidationSummary',
    'ValidationWarning',
    # Components
    'ERDParser',
    'ERDValidator',
    'ERDCorrector',
    'ERDTypeMapper',
    'TypeMapping',
    'format_display_name',
    'safe_name',
]
