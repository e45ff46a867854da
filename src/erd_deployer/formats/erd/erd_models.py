"""
ERD Data Models.

This module defines the data structures for representing a parsed
entity-relationship diagram. These models are the format-agnostic
intermediate representation consumed by the canonical matcher and the
schema planner.

Models:
- AttributeType: Target-store column types
- Attribute: Entity column definition
- Entity: Table definition with ordered attributes
- Cardinality / CascadeBehavior: Relationship semantics
- Relationship: Relationship between two entities
- ChoiceOption / ChoiceSet: Enumerations attachable to columns
- ValidationWarning / ValidationSummary: Parser diagnostics
- ParseResult: Everything the parser produces for one diagram

All models are frozen. Nothing downstream of the parser mutates them.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

# Columns the target store creates and manages on every table
PLATFORM_MANAGED_COLUMNS: Tuple[str, ...] = (
    "createdon", "createdby", "modifiedon", "modifiedby",
    "statecode", "statuscode", "ownerid", "owninguser", "owningteam",
)


class ParseError(Exception):
    """Raised when diagram text cannot be tokenized into entities or relationships."""

    def __init__(self, message: str, line_number: Optional[int] = None):
        self.message = message
        self.line_number = line_number
        location = f" (line {line_number})" if line_number is not None else ""
        super().__init__(f"{message}{location}")


class AttributeType(Enum):
    """
    Column types supported by the target store.

    Diagram types are mapped onto these by ``ERDTypeMapper``.
    """
    STRING = "String"
    MEMO = "Memo"
    INTEGER = "Integer"
    DECIMAL = "Decimal"
    MONEY = "Money"
    DOUBLE = "Double"
    BOOLEAN = "Boolean"
    DATETIME = "DateTime"
    DATEONLY = "DateOnly"
    UNIQUEIDENTIFIER = "Uniqueidentifier"
    EMAIL = "Email"
    PHONE = "Phone"
    URL = "Url"
    TICKER = "Ticker"
    TIMEZONE = "TimeZone"
    LANGUAGE = "Language"
    DURATION = "Duration"
    FILE = "File"
    IMAGE = "Image"
    CHOICE = "Choice"
    LOOKUP = "Lookup"

    @property
    def is_text(self) -> bool:
        """True for types stored as strings."""
        return self in (
            AttributeType.STRING,
            AttributeType.EMAIL,
            AttributeType.PHONE,
            AttributeType.URL,
            AttributeType.TICKER,
            AttributeType.UNIQUEIDENTIFIER,
        )


class Cardinality(Enum):
    """Normalized relationship cardinality."""
    ONE_TO_ONE = "one-to-one"
    ONE_TO_MANY = "one-to-many"
    MANY_TO_MANY = "many-to-many"


class CascadeBehavior(Enum):
    """Delete behavior applied to the referencing side of a relationship."""
    REMOVE_LINK = "RemoveLink"
    CASCADE = "Cascade"
    RESTRICT = "Restrict"
    NO_CASCADE = "NoCascade"


class Severity(Enum):
    """Severity of a parser diagnostic."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class Attribute:
    """
    Represents an entity column.

    Attributes:
        name: Column name, unique within its entity.
        type: Mapped target-store type.
        display_name: Friendly display name.
        description: Free text from the diagram.
        original_type: Type token exactly as written in the diagram.
        is_primary_key: Declared with ``PK``.
        is_foreign_key: Declared with ``FK``.
        is_unique: Declared with ``UK``.
        is_required: Declared ``NOT NULL`` (implied by ``PK``).
        default_value: Value from a ``DEFAULT`` constraint.
        choice_options: Labels of an inline ``choice(...)`` type.
        choice_set: Name of a referenced global choice set.
        lookup_target: Entity named by a ``lookup(...)`` type.
    """
    name: str
    type: AttributeType = AttributeType.STRING
    display_name: str = ""
    description: str = ""
    original_type: str = "string"
    is_primary_key: bool = False
    is_foreign_key: bool = False
    is_unique: bool = False
    is_required: bool = False
    default_value: Optional[str] = None
    choice_options: Tuple[str, ...] = ()
    choice_set: Optional[str] = None
    lookup_target: Optional[str] = None

    @property
    def is_nullable(self) -> bool:
        return not self.is_required

    @property
    def is_choice(self) -> bool:
        return self.type == AttributeType.CHOICE

    @property
    def is_lookup(self) -> bool:
        return self.type == AttributeType.LOOKUP

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        result: Dict[str, Any] = {
            "name": self.name,
            "type": self.type.value,
            "displayName": self.display_name,
            "isPrimaryKey": self.is_primary_key,
            "isForeignKey": self.is_foreign_key,
            "isUnique": self.is_unique,
            "isRequired": self.is_required,
        }
        if self.description:
            result["description"] = self.description
        if self.default_value is not None:
            result["defaultValue"] = self.default_value
        if self.choice_options:
            result["choiceOptions"] = list(self.choice_options)
        if self.choice_set:
            result["choiceSet"] = self.choice_set
        if self.lookup_target:
            result["lookupTarget"] = self.lookup_target
        return result


@dataclass(frozen=True)
class Entity:
    """
    Represents a diagram entity (a table in the target store).

    Attributes:
        name: Entity name, unique within a diagram.
        display_name: Friendly display name.
        attributes: Ordered columns.
        implicit: True when the entity was only named by a relationship.
    """
    name: str
    display_name: str = ""
    attributes: Tuple[Attribute, ...] = ()
    implicit: bool = False

    @property
    def primary_attribute(self) -> Optional[Attribute]:
        """The first primary-key column, if any."""
        for attr in self.attributes:
            if attr.is_primary_key:
                return attr
        return None

    @property
    def primary_keys(self) -> List[Attribute]:
        return [a for a in self.attributes if a.is_primary_key]

    @property
    def foreign_keys(self) -> List[Attribute]:
        return [a for a in self.attributes if a.is_foreign_key]

    @property
    def non_system_attributes(self) -> List[Attribute]:
        """Columns that become custom columns (excludes platform-managed names)."""
        return [a for a in self.attributes if a.name.lower() not in PLATFORM_MANAGED_COLUMNS]

    def get_attribute(self, name: str) -> Optional[Attribute]:
        """Get a column by name (case-insensitive)."""
        lowered = name.lower()
        for attr in self.attributes:
            if attr.name.lower() == lowered:
                return attr
        return None

    def has_attribute(self, name: str) -> bool:
        return self.get_attribute(name) is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            "name": self.name,
            "displayName": self.display_name,
            "attributes": [a.to_dict() for a in self.attributes],
        }


@dataclass(frozen=True)
class Relationship:
    """
    Represents a relationship between two entities.

    ``from_entity`` is the referenced ("one") side and ``to_entity`` the
    referencing ("many") side, matching how diagrams are usually written
    (``Customer ||--o{ Order``).

    Attributes:
        from_entity: Name of the referenced entity.
        to_entity: Name of the referencing entity.
        cardinality: Normalized cardinality.
        name: Relationship label or ``From_To``.
        display_name: Friendly display name.
        marker: Cardinality marker exactly as written.
        cascade_delete: Delete behavior on the referencing side.
    """
    from_entity: str
    to_entity: str
    cardinality: Cardinality = Cardinality.ONE_TO_MANY
    name: str = ""
    display_name: str = ""
    marker: str = "||--o{"
    cascade_delete: CascadeBehavior = CascadeBehavior.REMOVE_LINK

    @property
    def is_self_referencing(self) -> bool:
        return self.from_entity == self.to_entity

    @property
    def identity(self) -> Tuple[str, str, str]:
        """Key used to detect duplicate declarations."""
        return (self.from_entity, self.to_entity, self.name.lower())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            "from": self.from_entity,
            "to": self.to_entity,
            "kind": self.cardinality.value,
            "name": self.name,
            "displayName": self.display_name,
        }


@dataclass(frozen=True)
class ChoiceOption:
    """One labeled value of a choice set."""
    label: str
    value: int
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"label": self.label, "value": self.value, "description": self.description}


@dataclass(frozen=True)
class ChoiceSet:
    """
    A named enumeration of labeled values.

    Attributes:
        name: Choice set name (without publisher prefix).
        display_name: Friendly display name.
        options: Ordered options.
        is_global: True for reusable sets; False for column-local sets.
        description: Free text.
    """
    name: str
    display_name: str = ""
    options: Tuple[ChoiceOption, ...] = ()
    is_global: bool = True
    description: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_value: int = 100000000) -> 'ChoiceSet':
        """Create a choice set from a request dictionary."""
        name = data.get("name") or data.get("logicalName")
        if not name:
            raise ValueError("Choice set requires a 'name'")
        options = []
        for index, raw in enumerate(data.get("options", [])):
            if isinstance(raw, str):
                options.append(ChoiceOption(label=raw, value=base_value + index))
                continue
            label = raw.get("label") or raw.get("name")
            if not label:
                raise ValueError(f"Option {index} of choice set '{name}' has no label")
            options.append(ChoiceOption(
                label=label,
                value=int(raw.get("value") or base_value + index),
                description=raw.get("description", ""),
            ))
        return cls(
            name=name,
            display_name=data.get("displayName") or data.get("display_name") or name,
            options=tuple(options),
            is_global=data.get("isGlobal", data.get("is_global", True)),
            description=data.get("description", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "displayName": self.display_name,
            "isGlobal": self.is_global,
            "description": self.description,
            "options": [o.to_dict() for o in self.options],
        }


@dataclass(frozen=True)
class ValidationWarning:
    """
    A recoverable issue found while parsing or validating a diagram.

    Attributes:
        type: Machine-readable issue type (e.g. ``missing_primary_key``).
        severity: ERROR blocks deployment; WARNING and INFO do not.
        message: Human-readable description.
        entity: Entity the issue belongs to, if any.
        relationship: Relationship label the issue belongs to, if any.
        suggestion: How the author could fix it.
        auto_fixable: True when the corrector can rewrite the diagram.
        line_number: Source line, when known.
    """
    type: str
    severity: Severity
    message: str
    entity: Optional[str] = None
    relationship: Optional[str] = None
    suggestion: Optional[str] = None
    auto_fixable: bool = False
    line_number: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "type": self.type,
            "severity": self.severity.value,
            "message": self.message,
            "autoFixable": self.auto_fixable,
        }
        if self.entity:
            result["entity"] = self.entity
        if self.relationship:
            result["relationship"] = self.relationship
        if self.suggestion:
            result["suggestion"] = self.suggestion
        if self.line_number is not None:
            result["line"] = self.line_number
        return result


@dataclass(frozen=True)
class ValidationSummary:
    """Aggregate view over a diagram's diagnostics."""
    is_valid: bool
    status: str
    error_count: int = 0
    warning_count: int = 0
    info_count: int = 0
    entity_count: int = 0
    relationship_count: int = 0

    @classmethod
    def from_warnings(
        cls,
        warnings: List[ValidationWarning],
        entity_count: int,
        relationship_count: int,
    ) -> 'ValidationSummary':
        errors = sum(1 for w in warnings if w.severity == Severity.ERROR)
        warns = sum(1 for w in warnings if w.severity == Severity.WARNING)
        infos = sum(1 for w in warnings if w.severity == Severity.INFO)
        if errors:
            status = "error"
        elif warns:
            status = "warning"
        else:
            status = "success"
        return cls(
            is_valid=errors == 0,
            status=status,
            error_count=errors,
            warning_count=warns,
            info_count=infos,
            entity_count=entity_count,
            relationship_count=relationship_count,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "status": self.status,
            "errors": self.error_count,
            "warnings": self.warning_count,
            "info": self.info_count,
            "entities": self.entity_count,
            "relationships": self.relationship_count,
        }


@dataclass(frozen=True)
class ParseResult:
    """
    Everything the parser produces for one diagram.

    Attributes:
        entities: Entities in declaration order (names unique).
        relationships: Relationships whose endpoints are all in ``entities``.
        warnings: Parser and validator diagnostics, in discovery order.
        validation: Aggregate summary of ``warnings``.
        corrected_diagram: Rewritten diagram text when auto-fixes apply.
    """
    entities: Tuple[Entity, ...] = ()
    relationships: Tuple[Relationship, ...] = ()
    warnings: Tuple[ValidationWarning, ...] = ()
    validation: ValidationSummary = field(
        default_factory=lambda: ValidationSummary(is_valid=True, status="success")
    )
    corrected_diagram: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.validation.is_valid

    @property
    def errors(self) -> List[ValidationWarning]:
        return [w for w in self.warnings if w.severity == Severity.ERROR]

    @property
    def entity_names(self) -> List[str]:
        return [e.name for e in self.entities]

    def get_entity(self, name: str) -> Optional[Entity]:
        for entity in self.entities:
            if entity.name == name:
                return entity
        return None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "entities": [e.to_dict() for e in self.entities],
            "relationships": [r.to_dict() for r in self.relationships],
            "warnings": [w.to_dict() for w in self.warnings],
            "validation": self.validation.to_dict(),
        }
        if self.corrected_diagram:
            result["correctedDiagram"] = self.corrected_diagram
        return result
