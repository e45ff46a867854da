"""
ERD Validator.

Semantic checks over parsed entities and relationships. Lexical problems
(unparsed lines, duplicate columns) are reported by the parser itself;
this module looks at the assembled model:

- Primary keys (missing, multiple)
- Columns that clash with platform-managed columns
- Naming conflicts with the primary name column
- Relationship shape (self-reference, many-to-many, missing foreign keys)
- Canonical entity detection (when a matcher is supplied)

Only ERROR-severity issues make a diagram invalid.
"""

import logging
from typing import Any, List, Optional, Sequence

from ...constants import DataverseLimits
from .erd_models import (
    Cardinality,
    Entity,
    Relationship,
    Severity,
    ValidationWarning,
)

logger = logging.getLogger(__name__)


class ERDValidator:
    """
    Validate an entity/relationship model for deployment.

    Example:
        >>> validator = ERDValidator()
        >>> issues = validator.validate(entities, relationships)
        >>> blocking = [i for i in issues if i.severity == Severity.ERROR]
    """

    def __init__(self, matcher: Optional[Any] = None):
        """
        Initialize the validator.

        Args:
            matcher: Optional object with ``detect_canonical_entities(entities)``.
        """
        self._matcher = matcher

    def validate(
        self,
        entities: Sequence[Entity],
        relationships: Sequence[Relationship],
    ) -> List[ValidationWarning]:
        """
        Run every check.

        Args:
            entities: Parsed entities.
            relationships: Parsed relationships (endpoints already resolved).

        Returns:
            Issues in a stable order: entity checks, relationship checks,
            canonical detection.
        """
        issues: List[ValidationWarning] = []
        by_name = {e.name: e for e in entities}

        for entity in entities:
            issues.extend(self._validate_entity(entity))

        for rel in relationships:
            issues.extend(self._validate_relationship(rel, by_name))

        if self._matcher is not None:
            issues.extend(self._detect_canonical(entities))

        logger.debug(f"Validation produced {len(issues)} issues")
        return issues

    # =========================================================================
    # Entity Checks
    # =========================================================================

    def _validate_entity(self, entity: Entity) -> List[ValidationWarning]:
        issues: List[ValidationWarning] = []

        if not entity.attributes and not entity.implicit:
            issues.append(ValidationWarning(
                type="empty_entity",
                severity=Severity.WARNING,
                message=f"Entity '{entity.name}' has no attributes",
                entity=entity.name,
                suggestion="Add at least a primary key column",
                auto_fixable=True,
            ))

        primary_keys = entity.primary_keys
        if not primary_keys:
            issues.append(ValidationWarning(
                type="missing_primary_key",
                severity=Severity.WARNING,
                message=f"Entity '{entity.name}' has no primary key; a 'name' primary column will be added",
                entity=entity.name,
                suggestion="Add 'string name PK' to the entity",
                auto_fixable=True,
            ))
        elif len(primary_keys) > 1:
            names = ", ".join(a.name for a in primary_keys)
            issues.append(ValidationWarning(
                type="multiple_primary_keys",
                severity=Severity.ERROR,
                message=f"Entity '{entity.name}' has multiple primary keys: {names}",
                entity=entity.name,
                suggestion="Keep a single PK column; tables have exactly one primary column",
                auto_fixable=True,
            ))

        for attr in entity.attributes:
            lowered = attr.name.lower()

            if lowered in DataverseLimits.SYSTEM_CONFLICT_COLUMNS:
                issues.append(ValidationWarning(
                    type="system_attribute_conflict",
                    severity=Severity.ERROR,
                    message=(
                        f"Column '{entity.name}.{attr.name}' conflicts with a "
                        f"platform-managed column"
                    ),
                    entity=entity.name,
                    suggestion=f"Rename it, for example to '{entity.name.lower()}_{lowered}'",
                    auto_fixable=True,
                ))
            elif lowered == "status":
                issues.append(ValidationWarning(
                    type="status_column_ignored",
                    severity=Severity.INFO,
                    message=(
                        f"Column '{entity.name}.status' is ignored; tables have built-in "
                        f"status management"
                    ),
                    entity=entity.name,
                    suggestion="Use a global choice set if custom status values are needed",
                ))
            elif lowered == "name" and not attr.is_primary_key:
                issues.append(ValidationWarning(
                    type="naming_conflict",
                    severity=Severity.WARNING,
                    message=(
                        f"Column '{entity.name}.name' is not the primary key but will clash "
                        f"with the primary name column"
                    ),
                    entity=entity.name,
                    suggestion="Mark 'name' as PK or rename the column",
                ))

            if attr.is_foreign_key and not (lowered.endswith("_id") or lowered.endswith("id")):
                issues.append(ValidationWarning(
                    type="foreign_key_naming",
                    severity=Severity.INFO,
                    message=f"Foreign key '{entity.name}.{attr.name}' does not end with '_id'",
                    entity=entity.name,
                    suggestion="Foreign keys are usually named '<entity>_id'",
                ))

        return issues

    # =========================================================================
    # Relationship Checks
    # =========================================================================

    def _validate_relationship(self, rel: Relationship, by_name: dict) -> List[ValidationWarning]:
        issues: List[ValidationWarning] = []

        if rel.from_entity not in by_name or rel.to_entity not in by_name:
            missing = rel.from_entity if rel.from_entity not in by_name else rel.to_entity
            issues.append(ValidationWarning(
                type="missing_entity",
                severity=Severity.ERROR,
                message=f"Relationship '{rel.name}' references unknown entity '{missing}'",
                relationship=rel.name,
            ))
            return issues

        if rel.is_self_referencing:
            issues.append(ValidationWarning(
                type="self_referencing",
                severity=Severity.WARNING,
                message=f"Relationship '{rel.name}' on '{rel.from_entity}' references itself",
                entity=rel.from_entity,
                relationship=rel.name,
                suggestion="Self-referencing lookups are supported but need a distinct lookup name",
            ))

        if rel.cardinality == Cardinality.MANY_TO_MANY:
            issues.append(ValidationWarning(
                type="many_to_many",
                severity=Severity.INFO,
                message=(
                    f"Many-to-many relationship between {rel.from_entity} and {rel.to_entity} "
                    f"will be deployed as a native many-to-many relationship"
                ),
                relationship=rel.name,
                suggestion="Use an explicit intersection entity if the link needs its own columns",
                auto_fixable=True,
            ))
            return issues

        if rel.cardinality == Cardinality.ONE_TO_ONE:
            issues.append(ValidationWarning(
                type="one_to_one",
                severity=Severity.INFO,
                message=(
                    f"One-to-one relationship '{rel.name}' will be deployed as one-to-many"
                ),
                relationship=rel.name,
            ))

        target = by_name[rel.to_entity]
        if not target.implicit and not self._has_foreign_key(target, rel.from_entity):
            issues.append(ValidationWarning(
                type="missing_foreign_key",
                severity=Severity.INFO,
                message=(
                    f"'{rel.to_entity}' has no foreign key to '{rel.from_entity}'; "
                    f"the lookup column is created by the relationship"
                ),
                entity=rel.to_entity,
                relationship=rel.name,
                suggestion=f"Add 'string {rel.from_entity.lower()}_id FK' to {rel.to_entity}",
                auto_fixable=True,
            ))

        return issues

    @staticmethod
    def _has_foreign_key(entity: Entity, referenced: str) -> bool:
        prefix = referenced.lower()
        return any(
            a.is_foreign_key and a.name.lower().startswith(prefix)
            for a in entity.attributes
        )

    # =========================================================================
    # Canonical Detection
    # =========================================================================

    def _detect_canonical(self, entities: Sequence[Entity]) -> List[ValidationWarning]:
        issues: List[ValidationWarning] = []
        for match in self._matcher.detect_canonical_entities(list(entities)):
            issues.append(ValidationWarning(
                type="cdm_entity_detected",
                severity=Severity.INFO,
                message=(
                    f"'{match.source_entity}' matches standard table '{match.logical_name}' "
                    f"({match.confidence} confidence, {match.score:.0%})"
                ),
                entity=match.source_entity,
                suggestion="Enable CDM integration to reuse the standard table",
            ))
        return issues
