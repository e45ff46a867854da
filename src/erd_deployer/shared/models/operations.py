"""
Typed deployment operations.

Each operation is a frozen dataclass that knows its stable ``key``, the
keys it depends on, how to validate itself and how to render the Web API
payload it sends. A ``DeploymentPlan`` is an ordered tuple of operations
in which every dependency precedes its dependents.

Operation kinds, in phase order:
- EnsurePublisherOperation
- EnsureSolutionOperation
- IntegrateCanonicalEntityOperation
- CreateEntityOperation
- CreateAttributeOperation
- CreateRelationshipOperation
- EnsureChoiceSetOperation / AttachChoiceSetOperation

Reference:
    https://learn.microsoft.com/en-us/power-apps/developer/data-platform/webapi/create-update-entity-definitions-using-web-api
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Iterator, List, Optional, Tuple

from ...constants import DataverseLimits
from ...formats.erd.erd_models import (
    AttributeType,
    Cardinality,
    CascadeBehavior,
    ChoiceOption,
    ChoiceSet,
)

_SCHEMA_NAME_PATTERN = re.compile(r'^[a-z][a-z0-9]*_[a-z0-9_]+$')


class OperationValidationError(ValueError):
    """Raised when an operation carries a payload the store would reject."""

    def __init__(self, key: str, message: str):
        self.key = key
        self.message = message
        super().__init__(f"{key}: {message}")


class PlanError(Exception):
    """Raised when a plan cannot be built or violates its ordering invariant."""

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        self.message = message
        self.problems = list(problems or [])
        detail = f" ({'; '.join(self.problems)})" if self.problems else ""
        super().__init__(f"{message}{detail}")


class OperationKind(Enum):
    """Deployment phases; values double as progress step names."""
    PUBLISHER = "publisher"
    SOLUTION = "solution"
    CANONICAL_ENTITY = "cdm-entities"
    ENTITY = "custom-entities"
    ATTRIBUTE = "attributes"
    RELATIONSHIP = "relationships"
    CHOICE_SET = "global-choices"


PHASE_ORDER: Tuple[OperationKind, ...] = tuple(OperationKind)


def label(text: str) -> Dict[str, Any]:
    """Build a localized label object."""
    return {
        "@odata.type": "Microsoft.Dynamics.CRM.Label",
        "LocalizedLabels": [
            {
                "@odata.type": "Microsoft.Dynamics.CRM.LocalizedLabel",
                "Label": text,
                "LanguageCode": DataverseLimits.LANGUAGE_CODE,
            }
        ],
    }


def required_level(required: bool) -> Dict[str, Any]:
    return {
        "Value": "ApplicationRequired" if required else "None",
        "CanBeChanged": True,
        "ManagedPropertyLogicalName": "canmodifyrequirementlevelsettings",
    }


def boolean_default(value: str) -> Optional[bool]:
    """Parse a yes/no column default; None when the text is neither."""
    lowered = value.strip().lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    return None


def choice_default(value: str, options: Tuple[ChoiceOption, ...]) -> Optional[int]:
    """Option value a choice default names, by label (any case) or by number."""
    wanted = value.strip().lower()
    for option in options:
        if option.label.lower() == wanted or str(option.value) == wanted:
            return option.value
    return None


def option_set_payload(
    options: Tuple[ChoiceOption, ...],
    name: Optional[str] = None,
    display_name: str = "",
    is_global: bool = False,
) -> Dict[str, Any]:
    """Build ``OptionSetMetadata`` for a local or global choice set."""
    payload: Dict[str, Any] = {
        "@odata.type": "Microsoft.Dynamics.CRM.OptionSetMetadata",
        "IsGlobal": is_global,
        "OptionSetType": "Picklist",
        "Options": [
            {"Value": option.value, "Label": label(option.label)}
            for option in options
        ],
    }
    if name:
        payload["Name"] = name
    if display_name:
        payload["DisplayName"] = label(display_name)
    return payload


# =============================================================================
# Base Operation
# =============================================================================

@dataclass(frozen=True)
class Operation(ABC):
    """Base class for every plan operation."""

    kind: ClassVar[OperationKind]

    @property
    @abstractmethod
    def key(self) -> str:
        """Stable identity, unique within a plan."""

    @property
    def depends_on(self) -> Tuple[str, ...]:
        return ()

    @abstractmethod
    def to_payload(self) -> Dict[str, Any]:
        """Web API request body."""

    def validate(self) -> None:
        """Raise ``OperationValidationError`` when the payload is not sendable."""

    def describe(self) -> str:
        return self.key

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "kind": self.kind.value,
            "dependsOn": list(self.depends_on),
            "description": self.describe(),
        }

    def _require(self, condition: bool, message: str) -> None:
        if not condition:
            raise OperationValidationError(self.key, message)


# =============================================================================
# Publisher / Solution
# =============================================================================

@dataclass(frozen=True)
class EnsurePublisherOperation(Operation):
    """Find or create the publisher that owns the customization prefix."""
    unique_name: str
    friendly_name: str
    prefix: str
    description: str = ""

    kind: ClassVar[OperationKind] = OperationKind.PUBLISHER

    @property
    def key(self) -> str:
        return f"publisher:{self.unique_name}"

    def validate(self) -> None:
        self._require(bool(self.unique_name), "publisher unique name is empty")
        self._require(bool(self.friendly_name), "publisher friendly name is empty")
        self._require(
            bool(re.match(r'^[a-z][a-z0-9]{1,7}$', self.prefix)),
            f"invalid customization prefix '{self.prefix}'",
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "uniquename": self.unique_name,
            "friendlyname": self.friendly_name,
            "description": self.description,
            "customizationprefix": self.prefix,
            "customizationoptionvalueprefix": DataverseLimits.OPTION_VALUE_PREFIX,
        }

    def describe(self) -> str:
        return f"Ensure publisher '{self.unique_name}' (prefix '{self.prefix}')"


@dataclass(frozen=True)
class EnsureSolutionOperation(Operation):
    """Find or create the solution that collects every deployed component."""
    unique_name: str
    friendly_name: str
    publisher_unique_name: str
    description: str = ""
    version: str = DataverseLimits.SOLUTION_VERSION
    publisher_id: Optional[str] = None

    kind: ClassVar[OperationKind] = OperationKind.SOLUTION

    @property
    def key(self) -> str:
        return f"solution:{self.unique_name}"

    @property
    def depends_on(self) -> Tuple[str, ...]:
        return (f"publisher:{self.publisher_unique_name}",)

    def validate(self) -> None:
        self._require(
            bool(re.match(r'^[A-Za-z0-9_]+$', self.unique_name)),
            f"invalid solution unique name '{self.unique_name}'",
        )
        self._require(bool(self.friendly_name), "solution friendly name is empty")

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "uniquename": self.unique_name,
            "friendlyname": self.friendly_name,
            "description": self.description,
            "version": self.version,
        }
        if self.publisher_id:
            payload["publisherid@odata.bind"] = f"/publishers({self.publisher_id})"
        return payload

    def describe(self) -> str:
        return f"Ensure solution '{self.unique_name}'"


# =============================================================================
# Entities
# =============================================================================

@dataclass(frozen=True)
class IntegrateCanonicalEntityOperation(Operation):
    """Add an existing standard table to the solution."""
    source_entity: str
    logical_name: str
    solution_unique_name: str
    display_name: str = ""
    field_mapping: Tuple[Tuple[str, str], ...] = ()

    kind: ClassVar[OperationKind] = OperationKind.CANONICAL_ENTITY

    @property
    def key(self) -> str:
        return f"cdm:{self.logical_name}"

    @property
    def depends_on(self) -> Tuple[str, ...]:
        return (f"solution:{self.solution_unique_name}",)

    def validate(self) -> None:
        self._require(bool(self.logical_name), "canonical logical name is empty")

    def to_payload(self, component_id: Optional[str] = None) -> Dict[str, Any]:
        return {
            "ComponentId": component_id,
            "ComponentType": DataverseLimits.COMPONENT_TYPE_ENTITY,
            "SolutionUniqueName": self.solution_unique_name,
            "AddRequiredComponents": False,
            "DoNotIncludeSubcomponents": False,
        }

    def describe(self) -> str:
        return f"Add standard table '{self.logical_name}' for '{self.source_entity}'"


@dataclass(frozen=True)
class CreateEntityOperation(Operation):
    """Create a custom table with its primary name column."""
    source_entity: str
    logical_name: str
    display_name: str
    solution_unique_name: str
    primary_name_schema: str
    primary_name_display: str = "Name"
    primary_name_required: bool = True
    description: str = ""

    kind: ClassVar[OperationKind] = OperationKind.ENTITY

    @property
    def key(self) -> str:
        return f"entity:{self.logical_name}"

    @property
    def depends_on(self) -> Tuple[str, ...]:
        return (f"solution:{self.solution_unique_name}",)

    def validate(self) -> None:
        self._require(
            bool(_SCHEMA_NAME_PATTERN.match(self.logical_name)),
            f"invalid table schema name '{self.logical_name}'",
        )
        self._require(
            bool(_SCHEMA_NAME_PATTERN.match(self.primary_name_schema)),
            f"invalid primary name column '{self.primary_name_schema}'",
        )
        self._require(bool(self.display_name), "table display name is empty")

    def to_payload(self) -> Dict[str, Any]:
        return {
            "@odata.type": "Microsoft.Dynamics.CRM.EntityMetadata",
            "SchemaName": self.logical_name,
            "DisplayName": label(self.display_name),
            "DisplayCollectionName": label(f"{self.display_name}s"),
            "Description": label(self.description or f"Custom table {self.display_name}"),
            "OwnershipType": "UserOwned",
            "IsActivity": False,
            "HasNotes": True,
            "HasActivities": False,
            "Attributes": [
                {
                    "@odata.type": "Microsoft.Dynamics.CRM.StringAttributeMetadata",
                    "AttributeType": "String",
                    "AttributeTypeName": {"Value": "StringType"},
                    "SchemaName": self.primary_name_schema,
                    "IsPrimaryName": True,
                    "RequiredLevel": required_level(self.primary_name_required),
                    "MaxLength": DataverseLimits.PRIMARY_NAME_MAX_LENGTH,
                    "FormatName": {"Value": "Text"},
                    "DisplayName": label(self.primary_name_display),
                    "Description": label(f"Primary name column for {self.display_name}"),
                }
            ],
        }

    def describe(self) -> str:
        return f"Create table '{self.logical_name}' from '{self.source_entity}'"


# =============================================================================
# Attributes
# =============================================================================

_STRING_FORMATS: Dict[AttributeType, str] = {
    AttributeType.EMAIL: "Email",
    AttributeType.PHONE: "Phone",
    AttributeType.URL: "Url",
    AttributeType.TICKER: "TickerSymbol",
}

_INTEGER_FORMATS: Dict[AttributeType, str] = {
    AttributeType.TIMEZONE: "TimeZone",
    AttributeType.LANGUAGE: "Language",
    AttributeType.DURATION: "Duration",
}


@dataclass(frozen=True)
class CreateAttributeOperation(Operation):
    """Create one custom column on a custom table."""
    entity_logical_name: str
    schema_name: str
    display_name: str
    attribute_type: AttributeType
    source_entity: str = ""
    source_attribute: str = ""
    description: str = ""
    is_required: bool = False
    choice_options: Tuple[ChoiceOption, ...] = ()
    global_choice_set: str = ""
    default_value: Optional[str] = None

    kind: ClassVar[OperationKind] = OperationKind.ATTRIBUTE

    @property
    def key(self) -> str:
        return f"attribute:{self.entity_logical_name}.{self.schema_name}"

    @property
    def depends_on(self) -> Tuple[str, ...]:
        return (f"entity:{self.entity_logical_name}",)

    def validate(self) -> None:
        self._require(
            bool(_SCHEMA_NAME_PATTERN.match(self.schema_name)),
            f"invalid column schema name '{self.schema_name}'",
        )
        self._require(
            self.attribute_type != AttributeType.LOOKUP,
            "lookup columns are created by relationships",
        )
        if self.attribute_type == AttributeType.CHOICE:
            self._require(
                bool(self.choice_options or self.global_choice_set),
                "choice column has no options and no global choice set",
            )
            values = [o.value for o in self.choice_options]
            self._require(len(values) == len(set(values)), "choice option values are not unique")
        if self.default_value is None:
            return
        if self.attribute_type == AttributeType.BOOLEAN:
            self._require(
                boolean_default(self.default_value) is not None,
                f"default '{self.default_value}' is not a yes/no value",
            )
        elif self.attribute_type == AttributeType.CHOICE:
            self._require(
                choice_default(self.default_value, self.choice_options) is not None,
                f"default '{self.default_value}' matches no choice option",
            )
        else:
            self._require(False, f"{self.attribute_type.value} columns do not take a default value")

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "SchemaName": self.schema_name,
            "DisplayName": label(self.display_name),
            "Description": label(self.description or self.display_name),
            "RequiredLevel": required_level(self.is_required),
        }
        payload.update(self._type_payload())
        return payload

    def _type_payload(self) -> Dict[str, Any]:
        attr_type = self.attribute_type

        if attr_type in _STRING_FORMATS:
            return _string_metadata(DataverseLimits.STRING_MAX_LENGTH, _STRING_FORMATS[attr_type])
        if attr_type == AttributeType.STRING:
            return _string_metadata(DataverseLimits.STRING_MAX_LENGTH, "Text")
        if attr_type == AttributeType.UNIQUEIDENTIFIER:
            return _string_metadata(100, "Text")
        if attr_type == AttributeType.MEMO:
            return {
                "@odata.type": "Microsoft.Dynamics.CRM.MemoAttributeMetadata",
                "AttributeType": "Memo",
                "AttributeTypeName": {"Value": "MemoType"},
                "Format": "TextArea",
                "MaxLength": DataverseLimits.MEMO_MAX_LENGTH,
            }
        if attr_type == AttributeType.INTEGER or attr_type in _INTEGER_FORMATS:
            return {
                "@odata.type": "Microsoft.Dynamics.CRM.IntegerAttributeMetadata",
                "AttributeType": "Integer",
                "AttributeTypeName": {"Value": "IntegerType"},
                "Format": _INTEGER_FORMATS.get(attr_type, "None"),
                "MinValue": -2147483648,
                "MaxValue": 2147483647,
            }
        if attr_type == AttributeType.DECIMAL:
            return {
                "@odata.type": "Microsoft.Dynamics.CRM.DecimalAttributeMetadata",
                "AttributeType": "Decimal",
                "AttributeTypeName": {"Value": "DecimalType"},
                "Precision": 2,
                "MinValue": -100000000000.0,
                "MaxValue": 100000000000.0,
            }
        if attr_type == AttributeType.MONEY:
            return {
                "@odata.type": "Microsoft.Dynamics.CRM.MoneyAttributeMetadata",
                "AttributeType": "Money",
                "AttributeTypeName": {"Value": "MoneyType"},
                "PrecisionSource": 2,
                "Precision": 2,
            }
        if attr_type == AttributeType.DOUBLE:
            return {
                "@odata.type": "Microsoft.Dynamics.CRM.DoubleAttributeMetadata",
                "AttributeType": "Double",
                "AttributeTypeName": {"Value": "DoubleType"},
                "Precision": 5,
            }
        if attr_type == AttributeType.BOOLEAN:
            metadata = {
                "@odata.type": "Microsoft.Dynamics.CRM.BooleanAttributeMetadata",
                "AttributeType": "Boolean",
                "AttributeTypeName": {"Value": "BooleanType"},
                "OptionSet": {
                    "@odata.type": "Microsoft.Dynamics.CRM.BooleanOptionSetMetadata",
                    "TrueOption": {"Value": 1, "Label": label("Yes")},
                    "FalseOption": {"Value": 0, "Label": label("No")},
                },
            }
            if self.default_value is not None:
                metadata["DefaultValue"] = boolean_default(self.default_value)
            return metadata
        if attr_type in (AttributeType.DATETIME, AttributeType.DATEONLY):
            return {
                "@odata.type": "Microsoft.Dynamics.CRM.DateTimeAttributeMetadata",
                "AttributeType": "DateTime",
                "AttributeTypeName": {"Value": "DateTimeType"},
                "Format": "DateOnly" if attr_type == AttributeType.DATEONLY else "DateAndTime",
            }
        if attr_type == AttributeType.FILE:
            return {
                "@odata.type": "Microsoft.Dynamics.CRM.FileAttributeMetadata",
                "AttributeType": "Virtual",
                "AttributeTypeName": {"Value": "FileType"},
                "MaxSizeInKB": DataverseLimits.FILE_MAX_SIZE_KB,
            }
        if attr_type == AttributeType.IMAGE:
            return {
                "@odata.type": "Microsoft.Dynamics.CRM.ImageAttributeMetadata",
                "AttributeType": "Virtual",
                "AttributeTypeName": {"Value": "ImageType"},
                "CanStoreFullImage": True,
            }
        if attr_type == AttributeType.CHOICE and self.global_choice_set:
            return {
                "@odata.type": "Microsoft.Dynamics.CRM.PicklistAttributeMetadata",
                "AttributeType": "Picklist",
                "AttributeTypeName": {"Value": "PicklistType"},
                "GlobalOptionSet@odata.bind": (
                    f"/GlobalOptionSetDefinitions(Name='{self.global_choice_set}')"
                ),
            }
        if attr_type == AttributeType.CHOICE:
            metadata = {
                "@odata.type": "Microsoft.Dynamics.CRM.PicklistAttributeMetadata",
                "AttributeType": "Picklist",
                "AttributeTypeName": {"Value": "PicklistType"},
                "OptionSet": option_set_payload(self.choice_options),
            }
            if self.default_value is not None:
                metadata["DefaultFormValue"] = choice_default(self.default_value, self.choice_options)
            return metadata
        raise OperationValidationError(self.key, f"unsupported column type {attr_type.value}")

    def describe(self) -> str:
        return (
            f"Create column '{self.schema_name}' ({self.attribute_type.value}) "
            f"on '{self.entity_logical_name}'"
        )


def _string_metadata(max_length: int, format_name: str) -> Dict[str, Any]:
    return {
        "@odata.type": "Microsoft.Dynamics.CRM.StringAttributeMetadata",
        "AttributeType": "String",
        "AttributeTypeName": {"Value": "StringType"},
        "MaxLength": max_length,
        "FormatName": {"Value": format_name},
    }


# =============================================================================
# Relationships
# =============================================================================

@dataclass(frozen=True)
class CreateRelationshipOperation(Operation):
    """
    Create a one-to-many or native many-to-many relationship.

    For one-to-many, ``referenced_entity`` is the "one" side and the lookup
    column is created on ``referencing_entity``.
    """
    schema_name: str
    referenced_entity: str
    referencing_entity: str
    cardinality: Cardinality = Cardinality.ONE_TO_MANY
    display_name: str = ""
    lookup_schema_name: str = ""
    lookup_display_name: str = ""
    intersect_entity_name: str = ""
    cascade_delete: CascadeBehavior = CascadeBehavior.REMOVE_LINK
    dependencies: Tuple[str, ...] = ()
    source: str = ""

    kind: ClassVar[OperationKind] = OperationKind.RELATIONSHIP

    @property
    def key(self) -> str:
        return f"relationship:{self.schema_name}"

    @property
    def depends_on(self) -> Tuple[str, ...]:
        return self.dependencies

    @property
    def is_many_to_many(self) -> bool:
        return self.cardinality == Cardinality.MANY_TO_MANY

    def validate(self) -> None:
        self._require(
            bool(_SCHEMA_NAME_PATTERN.match(self.schema_name)),
            f"invalid relationship schema name '{self.schema_name}'",
        )
        self._require(
            bool(self.referenced_entity and self.referencing_entity),
            "relationship endpoints are empty",
        )
        if self.is_many_to_many:
            self._require(bool(self.intersect_entity_name), "intersect entity name is empty")
        else:
            self._require(bool(self.lookup_schema_name), "lookup column name is empty")

    def to_payload(self) -> Dict[str, Any]:
        if self.is_many_to_many:
            return {
                "@odata.type": "Microsoft.Dynamics.CRM.ManyToManyRelationshipMetadata",
                "SchemaName": self.schema_name,
                "Entity1LogicalName": self.referenced_entity,
                "Entity2LogicalName": self.referencing_entity,
                "IntersectEntityName": self.intersect_entity_name,
                "Entity1AssociatedMenuConfiguration": _menu(self.referencing_entity),
                "Entity2AssociatedMenuConfiguration": _menu(self.referenced_entity),
            }
        return {
            "@odata.type": "Microsoft.Dynamics.CRM.OneToManyRelationshipMetadata",
            "SchemaName": self.schema_name,
            "ReferencedEntity": self.referenced_entity,
            "ReferencingEntity": self.referencing_entity,
            "CascadeConfiguration": {
                "Assign": "NoCascade",
                "Delete": self.cascade_delete.value,
                "Merge": "NoCascade",
                "Reparent": "NoCascade",
                "Share": "NoCascade",
                "Unshare": "NoCascade",
            },
            "Lookup": {
                "@odata.type": "Microsoft.Dynamics.CRM.LookupAttributeMetadata",
                "AttributeType": "Lookup",
                "AttributeTypeName": {"Value": "LookupType"},
                "SchemaName": self.lookup_schema_name,
                "DisplayName": label(self.lookup_display_name or self.referenced_entity),
                "RequiredLevel": required_level(False),
            },
        }

    def describe(self) -> str:
        arrow = "<->" if self.is_many_to_many else "->"
        return (
            f"Create relationship '{self.schema_name}' "
            f"({self.referenced_entity} {arrow} {self.referencing_entity})"
        )


def _menu(entity: str) -> Dict[str, Any]:
    return {
        "Behavior": "UseLabel",
        "Group": "Details",
        "Label": label(entity),
        "Order": 10000,
    }


# =============================================================================
# Choice Sets
# =============================================================================

@dataclass(frozen=True)
class EnsureChoiceSetOperation(Operation):
    """Create a global choice set (unless present) and attach it to the solution."""
    choice_set: ChoiceSet
    schema_name: str
    solution_unique_name: str

    kind: ClassVar[OperationKind] = OperationKind.CHOICE_SET

    @property
    def key(self) -> str:
        return f"choice:{self.schema_name}"

    @property
    def depends_on(self) -> Tuple[str, ...]:
        return (f"solution:{self.solution_unique_name}",)

    def validate(self) -> None:
        self._require(bool(self.choice_set.options), "choice set has no options")
        values = [o.value for o in self.choice_set.options]
        self._require(len(values) == len(set(values)), "choice option values are not unique")
        self._require(
            bool(_SCHEMA_NAME_PATTERN.match(self.schema_name)),
            f"invalid choice set name '{self.schema_name}'",
        )

    def to_payload(self) -> Dict[str, Any]:
        payload = option_set_payload(
            self.choice_set.options,
            name=self.schema_name,
            display_name=self.choice_set.display_name or self.choice_set.name,
            is_global=True,
        )
        if self.choice_set.description:
            payload["Description"] = label(self.choice_set.description)
        return payload

    def describe(self) -> str:
        return f"Ensure global choice '{self.schema_name}' ({len(self.choice_set.options)} options)"


@dataclass(frozen=True)
class AttachChoiceSetOperation(Operation):
    """Attach an existing global choice set to the solution."""
    name: str
    solution_unique_name: str

    kind: ClassVar[OperationKind] = OperationKind.CHOICE_SET

    @property
    def key(self) -> str:
        return f"choice-attach:{self.name.lower()}"

    @property
    def depends_on(self) -> Tuple[str, ...]:
        return (f"solution:{self.solution_unique_name}",)

    def validate(self) -> None:
        self._require(bool(self.name), "choice set name is empty")

    def to_payload(self, component_id: Optional[str] = None) -> Dict[str, Any]:
        return {
            "ComponentId": component_id,
            "ComponentType": DataverseLimits.COMPONENT_TYPE_OPTION_SET,
            "SolutionUniqueName": self.solution_unique_name,
            "AddRequiredComponents": False,
        }

    def describe(self) -> str:
        return f"Attach existing global choice '{self.name}'"


# =============================================================================
# Plan
# =============================================================================

@dataclass(frozen=True)
class DeploymentPlan:
    """
    Ordered, dependency-respecting list of operations.

    Attributes:
        operations: Operations in execution order.
        custom_entities: Diagram entities deployed as new tables.
        canonical_entities: Diagram entities mapped onto standard tables.
        entity_names: Diagram entity -> target logical name.
        warnings: Planning warnings (skipped lookups, 1:1 downgrades ...).
    """
    operations: Tuple[Operation, ...]
    custom_entities: Tuple[str, ...] = ()
    canonical_entities: Tuple[str, ...] = ()
    entity_names: Tuple[Tuple[str, str], ...] = ()
    warnings: Tuple[str, ...] = ()
    solution_unique_name: str = ""
    publisher_prefix: str = ""

    def __iter__(self) -> Iterator[Operation]:
        return iter(self.operations)

    def __len__(self) -> int:
        return len(self.operations)

    def get(self, key: str) -> Optional[Operation]:
        for operation in self.operations:
            if operation.key == key:
                return operation
        return None

    def by_kind(self, kind: OperationKind) -> List[Operation]:
        return [op for op in self.operations if op.kind == kind]

    def logical_name_for(self, entity: str) -> Optional[str]:
        return dict(self.entity_names).get(entity)

    def validate_ordering(self) -> None:
        """
        Check that keys are unique and every dependency comes first.

        Raises:
            PlanError: Listing every violation found.
        """
        seen = set()
        problems: List[str] = []
        for index, operation in enumerate(self.operations):
            if operation.key in seen:
                problems.append(f"duplicate key '{operation.key}' at position {index}")
            for dependency in operation.depends_on:
                if dependency not in seen:
                    problems.append(
                        f"'{operation.key}' depends on '{dependency}' which does not precede it"
                    )
            seen.add(operation.key)
        if problems:
            raise PlanError("Plan ordering invariant violated", problems)

    def validate_operations(self) -> None:
        """Run ``validate()`` on every operation, collecting all failures."""
        problems: List[str] = []
        for operation in self.operations:
            try:
                operation.validate()
            except OperationValidationError as e:
                problems.append(str(e))
        if problems:
            raise PlanError("Plan contains invalid operations", problems)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "solution": self.solution_unique_name,
            "prefix": self.publisher_prefix,
            "customEntities": list(self.custom_entities),
            "canonicalEntities": list(self.canonical_entities),
            "warnings": list(self.warnings),
            "operations": [op.to_dict() for op in self.operations],
        }
