"""
ERD Corrector.

Rewrites a parsed diagram so that every auto-fixable issue is resolved,
giving authors a diagram they can paste back into their editor:

- Missing primary keys get ``string name PK "Primary name column"``
- Extra primary keys are demoted to plain columns
- Columns clashing with platform columns are renamed ``<entity>_<column>``
- Missing foreign keys are added as ``string <from>_id FK``
- Many-to-many relationships become an intersection entity plus two
  one-to-many relationships
- Relationships are re-emitted with normalized markers and quoted labels
"""

import logging
from dataclasses import replace
from typing import Dict, List, Optional

from ...constants import DataverseLimits
from .erd_models import (
    Attribute,
    AttributeType,
    Cardinality,
    Entity,
    ParseResult,
    Relationship,
)

logger = logging.getLogger(__name__)

CARDINALITY_MARKERS: Dict[Cardinality, str] = {
    Cardinality.ONE_TO_ONE: "||--||",
    Cardinality.ONE_TO_MANY: "||--o{",
    Cardinality.MANY_TO_MANY: "}o--o{",
}


class ERDCorrector:
    """Generate a corrected diagram from a ``ParseResult``."""

    def correct(self, result: ParseResult) -> Optional[str]:
        """
        Build corrected diagram text.

        Args:
            result: Parse result to correct.

        Returns:
            Corrected diagram text, or None when nothing is auto-fixable.
        """
        if not any(w.auto_fixable for w in result.warnings):
            return None

        entities: Dict[str, List[Attribute]] = {
            e.name: self._fix_attributes(e) for e in result.entities
        }
        relationships: List[Relationship] = []

        for rel in result.relationships:
            if rel.cardinality == Cardinality.MANY_TO_MANY:
                relationships.extend(self._split_many_to_many(rel, entities))
                continue
            relationships.append(rel)
            self._ensure_foreign_key(rel, entities)

        lines = ["erDiagram"]
        for name, attributes in entities.items():
            lines.append(f"    {name} {{")
            for attr in attributes:
                lines.append(f"        {self._format_attribute(attr)}")
            lines.append("    }")
        if relationships:
            lines.append("")
        for rel in relationships:
            marker = CARDINALITY_MARKERS[rel.cardinality]
            lines.append(f'    {rel.from_entity} {marker} {rel.to_entity} : "{rel.name}"')

        logger.debug(f"Generated corrected diagram with {len(entities)} entities")
        return "\n".join(lines) + "\n"

    # =========================================================================
    # Attribute Fixes
    # =========================================================================

    @staticmethod
    def _fix_attributes(entity: Entity) -> List[Attribute]:
        fixed: List[Attribute] = []
        seen_pk = False

        for attr in entity.attributes:
            lowered = attr.name.lower()
            if lowered in DataverseLimits.SYSTEM_CONFLICT_COLUMNS:
                attr = replace(attr, name=f"{entity.name.lower()}_{lowered}")
            if attr.is_primary_key:
                if seen_pk:
                    attr = replace(attr, is_primary_key=False)
                seen_pk = True
            fixed.append(attr)

        if not seen_pk:
            name_index = next(
                (i for i, a in enumerate(fixed) if a.name.lower() == "name"), None
            )
            if name_index is not None:
                fixed[name_index] = replace(
                    fixed[name_index], is_primary_key=True, is_required=True
                )
            else:
                fixed.insert(0, Attribute(
                    name="name",
                    type=AttributeType.STRING,
                    original_type="string",
                    description="Primary name column",
                    is_primary_key=True,
                    is_required=True,
                ))
        return fixed

    @staticmethod
    def _ensure_foreign_key(rel: Relationship, entities: Dict[str, List[Attribute]]) -> None:
        target = entities.get(rel.to_entity)
        if target is None:
            return
        prefix = rel.from_entity.lower()
        if any(a.is_foreign_key and a.name.lower().startswith(prefix) for a in target):
            return
        fk_name = f"{prefix}_id"
        if any(a.name.lower() == fk_name for a in target):
            return
        target.append(Attribute(
            name=fk_name,
            original_type="string",
            description=f"Foreign key to {rel.from_entity}",
            is_foreign_key=True,
        ))

    @staticmethod
    def _split_many_to_many(
        rel: Relationship,
        entities: Dict[str, List[Attribute]],
    ) -> List[Relationship]:
        junction = f"{rel.from_entity}{rel.to_entity}"
        if junction not in entities:
            entities[junction] = [
                Attribute(name="id", original_type="string", is_primary_key=True, is_required=True),
                Attribute(
                    name=f"{rel.from_entity.lower()}_id",
                    original_type="string",
                    description=f"Foreign key to {rel.from_entity}",
                    is_foreign_key=True,
                ),
                Attribute(
                    name=f"{rel.to_entity.lower()}_id",
                    original_type="string",
                    description=f"Foreign key to {rel.to_entity}",
                    is_foreign_key=True,
                ),
            ]
        return [
            Relationship(from_entity=rel.from_entity, to_entity=junction, name="has"),
            Relationship(from_entity=rel.to_entity, to_entity=junction, name="has"),
        ]

    @staticmethod
    def _format_attribute(attr: Attribute) -> str:
        parts = [attr.original_type or "string", attr.name]
        if attr.is_primary_key:
            parts.append("PK")
        if attr.is_foreign_key:
            parts.append("FK")
        if attr.is_unique:
            parts.append("UK")
        if attr.is_required and not attr.is_primary_key:
            parts.append("NOT NULL")
        if attr.default_value is not None:
            value = attr.default_value
            if not value or any(ch.isspace() for ch in value):
                value = f'"{value}"'
            parts.append(f"DEFAULT {value}")
        if attr.description:
            parts.append(f'"{attr.description}"')
        return " ".join(parts)
