"""
Deployment request, result and progress models.

These are the values that cross the boundary between the CLI, the
pipeline and the executor:

- DeploymentRequest: What to deploy and under which publisher/solution
- OperationOutcome / OperationStatus: Per-operation result
- DeploymentResult: Immutable aggregate result of one run
- ProgressEvent: Ordered progress notification
- CreatedArtifacts: Identifiers needed to undo a deployment
- RollbackOptions / RollbackResult: Cleanup configuration and outcome
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ...constants import DataverseLimits
from ...formats.erd.erd_models import ChoiceSet

_PREFIX_PATTERN = re.compile(r'^[a-z][a-z0-9]*$')
_UNIQUE_NAME_PATTERN = re.compile(r'^[A-Za-z0-9_]+$')


def _pick(data: Dict[str, Any], snake: str, camel: str, default: Any = None) -> Any:
    """Read a key written in either snake_case or camelCase."""
    if snake in data:
        return data[snake]
    return data.get(camel, default)


# =============================================================================
# Request
# =============================================================================

@dataclass(frozen=True)
class DeploymentRequest:
    """
    Deployment parameters supplied alongside a diagram.

    Attributes:
        solution_unique_name: Solution to create or reuse.
        solution_display_name: Friendly solution name.
        publisher_prefix: Customization prefix (2-8 lower-case alphanumerics).
        publisher_unique_name: Publisher to create or reuse.
        publisher_display_name: Friendly publisher name.
        solution_description: Free text.
        include_cdm_entities: Map matched entities onto standard tables.
        cdm_entity_selection: Restrict canonical mapping to these diagram entities.
        global_choice_sets: Custom global choice sets to create and attach.
        existing_choice_sets: Names of existing global choice sets to attach.
    """
    solution_unique_name: str
    solution_display_name: str
    publisher_prefix: str
    publisher_unique_name: str = ""
    publisher_display_name: str = ""
    solution_description: str = ""
    include_cdm_entities: bool = False
    cdm_entity_selection: Optional[Tuple[str, ...]] = None
    global_choice_sets: Tuple[ChoiceSet, ...] = ()
    existing_choice_sets: Tuple[str, ...] = ()

    @property
    def effective_publisher_unique_name(self) -> str:
        return self.publisher_unique_name or f"{self.publisher_prefix}publisher"

    @property
    def effective_publisher_display_name(self) -> str:
        return self.publisher_display_name or self.effective_publisher_unique_name

    def validate(self) -> List[str]:
        """
        Check the request.

        Returns:
            Problems found; empty when the request is valid.
        """
        problems: List[str] = []
        prefix = self.publisher_prefix or ""
        if not (DataverseLimits.MIN_PREFIX_LENGTH <= len(prefix) <= DataverseLimits.MAX_PREFIX_LENGTH):
            problems.append(
                f"Publisher prefix '{prefix}' must be {DataverseLimits.MIN_PREFIX_LENGTH}-"
                f"{DataverseLimits.MAX_PREFIX_LENGTH} characters"
            )
        if prefix and not _PREFIX_PATTERN.match(prefix):
            problems.append(
                f"Publisher prefix '{prefix}' must be lower-case alphanumeric and start with a letter"
            )
        if prefix.startswith(DataverseLimits.RESERVED_PREFIXES):
            problems.append(f"Publisher prefix '{prefix}' is reserved")
        if not self.solution_unique_name:
            problems.append("Solution unique name is required")
        elif not _UNIQUE_NAME_PATTERN.match(self.solution_unique_name):
            problems.append(
                f"Solution unique name '{self.solution_unique_name}' may only contain "
                f"letters, digits and underscores"
            )
        if not self.solution_display_name:
            problems.append("Solution display name is required")
        if self.publisher_unique_name and not _UNIQUE_NAME_PATTERN.match(self.publisher_unique_name):
            problems.append(
                f"Publisher unique name '{self.publisher_unique_name}' may only contain "
                f"letters, digits and underscores"
            )
        names = [c.name.lower() for c in self.global_choice_sets]
        if len(names) != len(set(names)):
            problems.append("Global choice set names must be unique")
        return problems

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DeploymentRequest':
        """
        Create a request from JSON data (snake_case or camelCase keys).

        Raises:
            ValueError: If the data is not an object or a choice set is malformed.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Deployment request must be a JSON object, got {type(data).__name__}")

        selection = _pick(data, "cdm_entity_selection", "cdmEntitySelection")
        choice_sets = tuple(
            ChoiceSet.from_dict(raw, base_value=DataverseLimits.OPTION_VALUE_BASE)
            for raw in _pick(data, "global_choice_sets", "globalChoiceSets", []) or []
        )
        return cls(
            solution_unique_name=_pick(data, "solution_unique_name", "solutionUniqueName", ""),
            solution_display_name=(
                _pick(data, "solution_display_name", "solutionDisplayName")
                or _pick(data, "solution_unique_name", "solutionUniqueName", "")
            ),
            publisher_prefix=_pick(data, "publisher_prefix", "publisherPrefix", ""),
            publisher_unique_name=_pick(data, "publisher_unique_name", "publisherUniqueName", ""),
            publisher_display_name=_pick(data, "publisher_display_name", "publisherDisplayName", ""),
            solution_description=_pick(data, "solution_description", "solutionDescription", ""),
            include_cdm_entities=bool(_pick(data, "include_cdm_entities", "includeCdmEntities", False)),
            cdm_entity_selection=tuple(selection) if selection is not None else None,
            global_choice_sets=choice_sets,
            existing_choice_sets=tuple(
                _pick(data, "existing_choice_sets", "existingChoiceSets", []) or []
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "solutionUniqueName": self.solution_unique_name,
            "solutionDisplayName": self.solution_display_name,
            "solutionDescription": self.solution_description,
            "publisherPrefix": self.publisher_prefix,
            "publisherUniqueName": self.effective_publisher_unique_name,
            "publisherDisplayName": self.effective_publisher_display_name,
            "includeCdmEntities": self.include_cdm_entities,
            "globalChoiceSets": [c.to_dict() for c in self.global_choice_sets],
            "existingChoiceSets": list(self.existing_choice_sets),
        }
        if self.cdm_entity_selection is not None:
            result["cdmEntitySelection"] = list(self.cdm_entity_selection)
        return result


# =============================================================================
# Outcomes
# =============================================================================

class OperationStatus(Enum):
    CREATED = "created"
    ALREADY_EXISTED = "already_existed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class OperationOutcome:
    """What happened to one plan operation."""
    key: str
    kind: str
    status: OperationStatus
    message: str = ""
    resource_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status in (OperationStatus.CREATED, OperationStatus.ALREADY_EXISTED)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "key": self.key,
            "kind": self.kind,
            "status": self.status.value,
        }
        if self.message:
            result["message"] = self.message
        if self.resource_id:
            result["resourceId"] = self.resource_id
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OperationOutcome':
        return cls(
            key=data["key"],
            kind=data.get("kind", ""),
            status=OperationStatus(data["status"]),
            message=data.get("message", ""),
            resource_id=data.get("resourceId"),
        )


@dataclass(frozen=True)
class CreatedArtifacts:
    """
    Components a deployment created (not ones that already existed).

    Attributes:
        publisher_id: Publisher record id (created or found).
        publisher_created: True when this run created the publisher.
        solution_id: Solution record id (created or found).
        solution_unique_name: Solution unique name.
        solution_created: True when this run created the solution.
        entities: Logical names of custom tables created by this run.
        relationships: Schema names of relationships created by this run.
        choice_sets: Names of global choice sets created by this run.
        canonical_entities: Standard tables added to the solution.
    """
    publisher_id: Optional[str] = None
    publisher_created: bool = False
    solution_id: Optional[str] = None
    solution_unique_name: str = ""
    solution_created: bool = False
    entities: Tuple[str, ...] = ()
    relationships: Tuple[str, ...] = ()
    choice_sets: Tuple[str, ...] = ()
    canonical_entities: Tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (
            self.publisher_created or self.solution_created
            or self.entities or self.relationships or self.choice_sets
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "publisherId": self.publisher_id,
            "publisherCreated": self.publisher_created,
            "solutionId": self.solution_id,
            "solutionUniqueName": self.solution_unique_name,
            "solutionCreated": self.solution_created,
            "entities": list(self.entities),
            "relationships": list(self.relationships),
            "choiceSets": list(self.choice_sets),
            "canonicalEntities": list(self.canonical_entities),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CreatedArtifacts':
        return cls(
            publisher_id=data.get("publisherId"),
            publisher_created=bool(data.get("publisherCreated", False)),
            solution_id=data.get("solutionId"),
            solution_unique_name=data.get("solutionUniqueName", ""),
            solution_created=bool(data.get("solutionCreated", False)),
            entities=tuple(data.get("entities", [])),
            relationships=tuple(data.get("relationships", [])),
            choice_sets=tuple(data.get("choiceSets", [])),
            canonical_entities=tuple(data.get("canonicalEntities", [])),
        )


@dataclass(frozen=True)
class DeploymentResult:
    """
    Immutable result of one deployment run.

    ``success`` is False only when a phase aborted; per-item failures are
    listed in ``errors`` while the critical path may still have succeeded.
    """
    success: bool
    outcomes: Tuple[OperationOutcome, ...] = ()
    entities_created: int = 0
    already_exists: int = 0
    attributes_created: int = 0
    relationships_created: int = 0
    cdm_entities_integrated: int = 0
    choice_sets_created: int = 0
    choice_sets_attached: int = 0
    errors: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
    summary: str = ""
    aborted_phase: Optional[str] = None
    publisher_id: Optional[str] = None
    solution_id: Optional[str] = None
    created_artifacts: CreatedArtifacts = field(default_factory=CreatedArtifacts)

    def outcome(self, key: str) -> Optional[OperationOutcome]:
        for outcome in self.outcomes:
            if outcome.key == key:
                return outcome
        return None

    def count(self, status: OperationStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "summary": self.summary,
            "abortedPhase": self.aborted_phase,
            "publisherId": self.publisher_id,
            "solutionId": self.solution_id,
            "counts": {
                "entitiesCreated": self.entities_created,
                "alreadyExists": self.already_exists,
                "attributesCreated": self.attributes_created,
                "relationshipsCreated": self.relationships_created,
                "cdmEntitiesIntegrated": self.cdm_entities_integrated,
                "choiceSetsCreated": self.choice_sets_created,
                "choiceSetsAttached": self.choice_sets_attached,
            },
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "outcomes": [o.to_dict() for o in self.outcomes],
            "createdArtifacts": self.created_artifacts.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DeploymentResult':
        """Rebuild a result saved with ``to_dict`` (used by rollback)."""
        counts = data.get("counts", {})
        return cls(
            success=bool(data.get("success", False)),
            outcomes=tuple(OperationOutcome.from_dict(o) for o in data.get("outcomes", [])),
            entities_created=counts.get("entitiesCreated", 0),
            already_exists=counts.get("alreadyExists", 0),
            attributes_created=counts.get("attributesCreated", 0),
            relationships_created=counts.get("relationshipsCreated", 0),
            cdm_entities_integrated=counts.get("cdmEntitiesIntegrated", 0),
            choice_sets_created=counts.get("choiceSetsCreated", 0),
            choice_sets_attached=counts.get("choiceSetsAttached", 0),
            errors=tuple(data.get("errors", [])),
            warnings=tuple(data.get("warnings", [])),
            summary=data.get("summary", ""),
            aborted_phase=data.get("abortedPhase"),
            publisher_id=data.get("publisherId"),
            solution_id=data.get("solutionId"),
            created_artifacts=CreatedArtifacts.from_dict(data.get("createdArtifacts", {})),
        )


# =============================================================================
# Progress
# =============================================================================

@dataclass(frozen=True)
class ProgressEvent:
    """
    One progress notification.

    Attributes:
        step: ``validation``, ``publisher``, ``solution``, ``cdm-entities``,
            ``custom-entities``, ``attributes``, ``relationships``,
            ``global-choices`` or ``complete``.
        message: Human-readable text.
        timestamp: UTC time the event was produced.
        detail: Optional structured data (counts, keys).
    """
    step: str
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    detail: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "detail": dict(self.detail),
        }


# =============================================================================
# Rollback
# =============================================================================

@dataclass(frozen=True)
class RollbackOptions:
    """Which artifact groups a rollback may delete."""
    delete_relationships: bool = True
    delete_entities: bool = True
    delete_choice_sets: bool = True
    delete_solution: bool = True
    delete_publisher: bool = True


@dataclass(frozen=True)
class RollbackResult:
    """Outcome of a rollback."""
    success: bool
    deleted: Tuple[str, ...] = ()
    skipped: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
    errors: Tuple[str, ...] = ()

    @property
    def summary(self) -> str:
        return (
            f"{len(self.deleted)} deleted, {len(self.skipped)} skipped, "
            f"{len(self.errors)} errors"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "summary": self.summary,
            "deleted": list(self.deleted),
            "skipped": list(self.skipped),
            "warnings": list(self.warnings),
            "errors": list(self.errors),
        }
