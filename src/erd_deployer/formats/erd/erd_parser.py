"""
ERD Parser.

This module parses Mermaid-style ``erDiagram`` text into typed entities,
attributes and relationships.

Supported syntax:
- ``erDiagram`` header and ``%%`` comments
- Entity blocks: ``Customer { string name PK "Customer name" }``
- Attribute lines: ``type name [PK|FK|UK|NOT NULL|DEFAULT x] ["description"]``
- Inline choices and lookups: ``choice(Open,Closed) state``, ``lookup(Account) parent``
- Relationship lines: ``Customer ||--o{ Order : places``

Recoverable problems never raise. They are collected as
``ValidationWarning`` entries and, where possible, turned into a corrected
diagram. ``ParseError`` is raised only when nothing can be tokenized.

Usage:
    from erd_deployer.formats.erd import ERDParser

    parser = ERDParser()
    result = parser.parse(diagram_text)

    if result.is_valid:
        for entity in result.entities:
            print(entity.name, [a.name for a in entity.attributes])
    else:
        for issue in result.errors:
            print(f"Error: {issue.message}")
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ...constants import DataverseLimits
from .erd_corrector import ERDCorrector
from .erd_models import (
    Attribute,
    Cardinality,
    Entity,
    ParseError,
    ParseResult,
    Relationship,
    Severity,
    ValidationSummary,
    ValidationWarning,
)
from .erd_type_mapper import ERDTypeMapper, format_display_name
from .erd_validator import ERDValidator

logger = logging.getLogger(__name__)


# =============================================================================
# Line Patterns
# =============================================================================

ENTITY_OPEN_PATTERN = re.compile(r'^(\w+)\s*\{\s*(\})?$')
ENTITY_NAME_PATTERN = re.compile(r'^(\w+)$')
ATTRIBUTE_PATTERN = re.compile(
    r'^((?:choice\([^)]+\)|(?:choiceset|optionset)\([^)]+\)|lookup\([^)]+\)|\w+))\s+(\w+)'
    r'(?:\s+((?:DEFAULT\s+"[^"]*"|[^"])+?))?(?:\s+"([^"]*)")?$',
    re.IGNORECASE,
)
RELATIONSHIP_PATTERN = re.compile(r'^(\w+)\s+([|}{o.\-]+)\s+(\w+)(?:\s*:\s*(.+))?$')
DEFAULT_PATTERN = re.compile(r'\bDEFAULT\s+("[^"]*"|\S+)', re.IGNORECASE)

# Cardinality marker halves, as seen from each end of the connector
LEFT_ONE = {"||", "|o", "o|"}
LEFT_MANY = {"}o", "}|", "o}", "|}"}
RIGHT_ONE = {"||", "o|", "|o"}
RIGHT_MANY = {"o{", "|{", "{o", "{|"}


@dataclass
class _EntityBuilder:
    """Mutable accumulator used while scanning an entity block."""
    name: str
    line_number: int
    attributes: List[Attribute] = field(default_factory=list)
    implicit: bool = False

    def has_attribute(self, name: str) -> bool:
        lowered = name.lower()
        return any(a.name.lower() == lowered for a in self.attributes)

    def build(self) -> Entity:
        return Entity(
            name=self.name,
            display_name=format_display_name(self.name),
            attributes=tuple(self.attributes),
            implicit=self.implicit,
        )


class ERDParser:
    """
    Parse diagram text into a ``ParseResult``.

    The parser is stateless between calls; every ``parse`` call starts
    from scratch, so one instance can be shared.

    Example:
        >>> parser = ERDParser()
        >>> result = parser.parse("erDiagram\\n  Customer ||--o{ Order : places")
        >>> [e.name for e in result.entities]
        ['Customer', 'Order']
    """

    def __init__(
        self,
        matcher: Optional[Any] = None,
        generate_corrections: bool = True,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the parser.

        Args:
            matcher: Optional canonical matcher; when given, detected
                canonical entities are reported as informational warnings.
            generate_corrections: Build a corrected diagram for auto-fixable issues.
            logger: Logger to use instead of the module logger.
        """
        self._type_mapper = ERDTypeMapper()
        self._validator = ERDValidator(matcher=matcher)
        self._corrector = ERDCorrector()
        self._generate_corrections = generate_corrections
        self.logger = logger or logging.getLogger(__name__)

    def parse(self, text: str) -> ParseResult:
        """
        Parse diagram text.

        Args:
            text: Diagram source.

        Returns:
            ParseResult with entities, relationships, warnings and validation summary.

        Raises:
            ParseError: If the text is empty or contains no entities or relationships.
        """
        if text is None or not text.strip():
            raise ParseError("Diagram text is empty")

        warnings: List[ValidationWarning] = []
        builders: Dict[str, _EntityBuilder] = {}
        relationships: List[Relationship] = []
        current: Optional[_EntityBuilder] = None

        for line_number, raw_line in enumerate(text.splitlines(), start=1):
            line = raw_line.strip()
            if not line or line.startswith('%%'):
                continue
            if line.lower().startswith('erdiagram'):
                continue

            if current is not None:
                if line == '}':
                    current = None
                    continue
                self._parse_attribute_line(line, line_number, current, warnings)
                continue

            open_match = ENTITY_OPEN_PATTERN.match(line)
            if open_match:
                builder = self._open_entity(open_match.group(1), line_number, builders, warnings)
                if open_match.group(2) is None:
                    current = builder
                continue

            relationship = self._parse_relationship_line(line, line_number, warnings)
            if relationship is not None:
                relationships.append(relationship)
                continue

            name_match = ENTITY_NAME_PATTERN.match(line)
            if name_match:
                self._open_entity(name_match.group(1), line_number, builders, warnings)
                continue

            warnings.append(ValidationWarning(
                type="unparsed_line",
                severity=Severity.WARNING,
                message=f"Could not parse line: {line}",
                suggestion="Use 'Entity {', 'type name [PK|FK]' or 'A ||--o{ B : label'",
                line_number=line_number,
            ))

        if current is not None:
            warnings.append(ValidationWarning(
                type="unclosed_entity",
                severity=Severity.WARNING,
                message=f"Entity '{current.name}' block is missing a closing '}}'",
                entity=current.name,
                auto_fixable=True,
                line_number=current.line_number,
            ))

        if not builders and not relationships:
            raise ParseError("No entities or relationships found in diagram")

        relationships = self._resolve_relationships(relationships, builders, warnings)
        entities = tuple(builder.build() for builder in builders.values())

        warnings.extend(self._validator.validate(entities, relationships))
        validation = ValidationSummary.from_warnings(warnings, len(entities), len(relationships))

        result = ParseResult(
            entities=entities,
            relationships=tuple(relationships),
            warnings=tuple(warnings),
            validation=validation,
        )

        if self._generate_corrections:
            corrected = self._corrector.correct(result)
            if corrected is not None:
                result = ParseResult(
                    entities=result.entities,
                    relationships=result.relationships,
                    warnings=result.warnings,
                    validation=result.validation,
                    corrected_diagram=corrected,
                )

        self.logger.info(
            f"Parsed diagram: {len(entities)} entities, {len(relationships)} relationships, "
            f"{validation.error_count} errors, {validation.warning_count} warnings"
        )
        return result

    # =========================================================================
    # Entities and Attributes
    # =========================================================================

    def _open_entity(
        self,
        name: str,
        line_number: int,
        builders: Dict[str, _EntityBuilder],
        warnings: List[ValidationWarning],
    ) -> _EntityBuilder:
        existing = builders.get(name)
        if existing is None:
            builder = _EntityBuilder(name=name, line_number=line_number)
            builders[name] = builder
            return builder

        warnings.append(ValidationWarning(
            type="duplicate_entity",
            severity=Severity.WARNING,
            message=f"Entity '{name}' is declared more than once; attributes are merged",
            entity=name,
            line_number=line_number,
        ))
        return existing

    def _parse_attribute_line(
        self,
        line: str,
        line_number: int,
        entity: _EntityBuilder,
        warnings: List[ValidationWarning],
    ) -> None:
        match = ATTRIBUTE_PATTERN.match(line)
        if not match:
            warnings.append(ValidationWarning(
                type="unparsed_line",
                severity=Severity.WARNING,
                message=f"Could not parse attribute in '{entity.name}': {line}",
                entity=entity.name,
                suggestion="Attributes are written as 'type name [PK|FK|UK] \"description\"'",
                line_number=line_number,
            ))
            return

        type_token, name, constraints, description = match.groups()
        constraints = constraints or ""

        if name.lower() in DataverseLimits.SYSTEM_COLUMNS:
            warnings.append(ValidationWarning(
                type="system_column_ignored",
                severity=Severity.INFO,
                message=f"'{entity.name}.{name}' is provided by the platform and is ignored",
                entity=entity.name,
                line_number=line_number,
            ))
            return

        if entity.has_attribute(name):
            warnings.append(ValidationWarning(
                type="duplicate_columns",
                severity=Severity.ERROR,
                message=f"Entity '{entity.name}' declares column '{name}' more than once",
                entity=entity.name,
                suggestion=f"Remove or rename the duplicate '{name}' column",
                auto_fixable=True,
                line_number=line_number,
            ))
            return

        entity.attributes.append(
            self._build_attribute(type_token, name, constraints, description or "", line_number,
                                  entity.name, warnings)
        )

    def _build_attribute(
        self,
        type_token: str,
        name: str,
        constraints: str,
        description: str,
        line_number: int,
        entity_name: str,
        warnings: List[ValidationWarning],
    ) -> Attribute:
        mapping = self._type_mapper.map_type(type_token)
        if not mapping.is_known:
            warnings.append(ValidationWarning(
                type="unknown_type",
                severity=Severity.INFO,
                message=f"Unknown type '{type_token}' for '{entity_name}.{name}'; using String",
                entity=entity_name,
                line_number=line_number,
            ))
        attr_type = self._type_mapper.apply_semantic_type(
            name, type_token, mapping.attribute_type
        )

        upper = constraints.upper()
        is_pk = bool(re.search(r'\bPK\b', upper))
        default_match = DEFAULT_PATTERN.search(constraints)
        default_value = default_match.group(1).strip('"') if default_match else None

        return Attribute(
            name=name,
            type=attr_type,
            display_name=format_display_name(name),
            description=description,
            original_type=type_token,
            is_primary_key=is_pk,
            is_foreign_key=bool(re.search(r'\bFK\b', upper)),
            is_unique=bool(re.search(r'\bUK\b', upper)),
            is_required=is_pk or 'NOT NULL' in upper,
            default_value=default_value,
            choice_options=mapping.choice_options,
            choice_set=mapping.choice_set,
            lookup_target=mapping.lookup_target,
        )

    # =========================================================================
    # Relationships
    # =========================================================================

    def _parse_relationship_line(
        self,
        line: str,
        line_number: int,
        warnings: List[ValidationWarning],
    ) -> Optional[Relationship]:
        match = RELATIONSHIP_PATTERN.match(line)
        if not match:
            return None

        from_entity, marker, to_entity, label = match.groups()
        label = (label or "").strip().strip('"\'').strip()

        cardinality, reversed_ = self.parse_cardinality(marker)
        if cardinality is None:
            warnings.append(ValidationWarning(
                type="ambiguous_cardinality",
                severity=Severity.WARNING,
                message=(
                    f"Unrecognized cardinality '{marker}' between {from_entity} and "
                    f"{to_entity}; treating it as one-to-many"
                ),
                relationship=label or f"{from_entity}_{to_entity}",
                suggestion="Use '||--o{' (one-to-many), '||--||' (one-to-one) or '}o--o{' (many-to-many)",
                auto_fixable=True,
                line_number=line_number,
            ))
            cardinality = Cardinality.ONE_TO_MANY

        if reversed_:
            from_entity, to_entity = to_entity, from_entity

        name = label or f"{from_entity}_{to_entity}"
        return Relationship(
            from_entity=from_entity,
            to_entity=to_entity,
            cardinality=cardinality,
            name=name,
            display_name=label or format_display_name(name),
            marker=marker,
        )

    @staticmethod
    def parse_cardinality(marker: str) -> Tuple[Optional[Cardinality], bool]:
        """
        Normalize a cardinality marker.

        Args:
            marker: Marker text such as ``||--o{``.

        Returns:
            Tuple of (cardinality or None when unrecognized, endpoints reversed).
            A many-to-one marker (``}o--||``) is returned as one-to-many with
            the reversed flag set.
        """
        connector = re.search(r'--|\.\.', marker)
        if connector is None:
            return None, False

        left = marker[:connector.start()]
        right = marker[connector.end():]

        left_one, left_many = left in LEFT_ONE, left in LEFT_MANY
        right_one, right_many = right in RIGHT_ONE, right in RIGHT_MANY

        if left_one and right_many:
            return Cardinality.ONE_TO_MANY, False
        if left_one and right_one:
            return Cardinality.ONE_TO_ONE, False
        if left_many and right_many:
            return Cardinality.MANY_TO_MANY, False
        if left_many and right_one:
            return Cardinality.ONE_TO_MANY, True
        return None, False

    def _resolve_relationships(
        self,
        relationships: List[Relationship],
        builders: Dict[str, _EntityBuilder],
        warnings: List[ValidationWarning],
    ) -> List[Relationship]:
        """Drop duplicate declarations and auto-declare undeclared endpoints."""
        seen = set()
        resolved: List[Relationship] = []

        for rel in relationships:
            if rel.identity in seen:
                warnings.append(ValidationWarning(
                    type="duplicate_relationship",
                    severity=Severity.WARNING,
                    message=(
                        f"Relationship '{rel.name}' between {rel.from_entity} and "
                        f"{rel.to_entity} is declared more than once"
                    ),
                    relationship=rel.name,
                    auto_fixable=True,
                ))
                continue
            seen.add(rel.identity)

            for endpoint in (rel.from_entity, rel.to_entity):
                if endpoint in builders:
                    continue
                builders[endpoint] = _EntityBuilder(name=endpoint, line_number=0, implicit=True)
                warnings.append(ValidationWarning(
                    type="implicit_entity",
                    severity=Severity.INFO,
                    message=f"Entity '{endpoint}' is only referenced by relationships; declaring it",
                    entity=endpoint,
                    relationship=rel.name,
                ))
            resolved.append(rel)

        return resolved
