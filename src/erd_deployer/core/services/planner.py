"""
Schema Planner.

Turns a parsed diagram, the accepted canonical matches and a deployment
request into a ``DeploymentPlan``: a deterministic, dependency-ordered
tuple of typed operations.

Phase order is fixed:
    publisher -> solution -> canonical tables -> custom tables
    -> columns -> relationships -> global choice sets

Usage:
    planner = SchemaPlanner()
    plan = planner.plan(result.entities, result.relationships, matches, request)
    for operation in plan:
        print(operation.describe())
"""

import logging
from typing import Dict, List, Optional, Sequence, Set, Tuple

from ...constants import DataverseLimits
from ...formats.cdm.cdm_matcher import CDMMatch
from ...formats.erd.erd_models import (
    Attribute,
    AttributeType,
    CascadeBehavior,
    Cardinality,
    ChoiceOption,
    Entity,
    Relationship,
)
from ...formats.erd.erd_type_mapper import format_display_name, safe_name
from ...shared.models.deployment import DeploymentRequest
from ...shared.models.operations import (
    AttachChoiceSetOperation,
    CreateAttributeOperation,
    CreateEntityOperation,
    CreateRelationshipOperation,
    DeploymentPlan,
    EnsureChoiceSetOperation,
    EnsurePublisherOperation,
    EnsureSolutionOperation,
    IntegrateCanonicalEntityOperation,
    Operation,
    PlanError,
    boolean_default,
    choice_default,
)

logger = logging.getLogger(__name__)


def _unique(name: str, used: Set[str]) -> str:
    """Return ``name`` or ``name_2``, ``name_3`` ... whichever is unused."""
    candidate = name
    counter = 2
    while candidate in used:
        candidate = f"{name}_{counter}"
        counter += 1
    used.add(candidate)
    return candidate


class SchemaPlanner:
    """
    Build deployment plans.

    The planner is pure: it never calls the store, and planning the same
    inputs twice yields equal plans.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def plan(
        self,
        entities: Sequence[Entity],
        relationships: Sequence[Relationship],
        matches: Sequence[CDMMatch],
        request: DeploymentRequest,
    ) -> DeploymentPlan:
        """
        Build an ordered plan.

        Args:
            entities: Parsed entities.
            relationships: Parsed relationships.
            matches: Advisory canonical matches (applied only on opt-in).
            request: Deployment parameters.

        Returns:
            A validated ``DeploymentPlan``.

        Raises:
            PlanError: Invalid request, name collisions or invalid operations.
        """
        problems = request.validate()
        if problems:
            raise PlanError("Invalid deployment request", problems)

        prefix = request.publisher_prefix
        solution = request.solution_unique_name
        warnings: List[str] = []

        accepted = self._accepted_matches(entities, matches, request)
        custom = [e for e in entities if e.name not in accepted]
        canonical = [e for e in entities if e.name in accepted]

        logical_names = self._logical_names(custom, canonical, accepted, prefix)
        entity_keys: Dict[str, str] = {}
        for entity in custom:
            entity_keys[entity.name] = f"entity:{logical_names[entity.name]}"
        for entity in canonical:
            entity_keys[entity.name] = f"cdm:{logical_names[entity.name]}"

        operations: List[Operation] = [
            EnsurePublisherOperation(
                unique_name=request.effective_publisher_unique_name,
                friendly_name=request.effective_publisher_display_name,
                prefix=prefix,
                description=f"Publisher for {request.solution_display_name}",
            ),
            EnsureSolutionOperation(
                unique_name=solution,
                friendly_name=request.solution_display_name,
                publisher_unique_name=request.effective_publisher_unique_name,
                description=request.solution_description,
            ),
        ]

        for entity in canonical:
            match = accepted[entity.name]
            operations.append(IntegrateCanonicalEntityOperation(
                source_entity=entity.name,
                logical_name=match.logical_name,
                solution_unique_name=solution,
                display_name=match.display_name,
                field_mapping=tuple(match.field_mapping.items()),
            ))

        for entity in custom:
            operations.append(self._entity_operation(entity, logical_names[entity.name], prefix, solution))

        for entity in custom:
            operations.extend(
                self._attribute_operations(entity, logical_names[entity.name], prefix, request, warnings)
            )

        operations.extend(self._relationship_operations(
            entities, relationships, logical_names, entity_keys, prefix, warnings
        ))

        operations.extend(self._choice_set_operations(request, prefix))

        plan = DeploymentPlan(
            operations=tuple(operations),
            custom_entities=tuple(e.name for e in custom),
            canonical_entities=tuple(e.name for e in canonical),
            entity_names=tuple((e.name, logical_names[e.name]) for e in entities),
            warnings=tuple(warnings),
            solution_unique_name=solution,
            publisher_prefix=prefix,
        )
        plan.validate_ordering()
        plan.validate_operations()

        self.logger.info(
            f"Planned {len(plan)} operations: {len(custom)} custom tables, "
            f"{len(canonical)} standard tables, {len(warnings)} warnings"
        )
        return plan

    # =========================================================================
    # Entities
    # =========================================================================

    @staticmethod
    def _accepted_matches(
        entities: Sequence[Entity],
        matches: Sequence[CDMMatch],
        request: DeploymentRequest,
    ) -> Dict[str, CDMMatch]:
        if not request.include_cdm_entities:
            return {}
        names = {e.name for e in entities}
        selection = set(request.cdm_entity_selection) if request.cdm_entity_selection is not None else None
        accepted: Dict[str, CDMMatch] = {}
        for match in matches:
            if match.source_entity not in names:
                continue
            if selection is not None and match.source_entity not in selection:
                continue
            accepted.setdefault(match.source_entity, match)
        return accepted

    @staticmethod
    def _logical_names(
        custom: Sequence[Entity],
        canonical: Sequence[Entity],
        accepted: Dict[str, CDMMatch],
        prefix: str,
    ) -> Dict[str, str]:
        names: Dict[str, str] = {}
        owners: Dict[str, str] = {}
        collisions: List[str] = []
        for entity in canonical:
            names[entity.name] = accepted[entity.name].logical_name
        for entity in custom:
            names[entity.name] = f"{prefix}_{safe_name(entity.name)}"
        for source, logical in names.items():
            if logical in owners:
                collisions.append(f"'{owners[logical]}' and '{source}' both map to '{logical}'")
            owners[logical] = source
        if collisions:
            raise PlanError("Entity names collide after normalization", collisions)
        return names

    @staticmethod
    def primary_name_column(entity: Entity) -> Tuple[str, str]:
        """
        Choose the primary name column: ``(column name, display name)``.

        A text primary key becomes the primary name column; otherwise a
        ``name`` column is used (existing or synthesized).
        """
        primary = entity.primary_attribute
        if primary is not None and primary.type.is_text:
            return primary.name, primary.display_name or format_display_name(primary.name)
        existing = entity.get_attribute("name")
        if existing is not None:
            return existing.name, existing.display_name or "Name"
        display = entity.display_name or format_display_name(entity.name)
        return "name", f"{display} Name"

    def _entity_operation(
        self,
        entity: Entity,
        logical_name: str,
        prefix: str,
        solution: str,
    ) -> CreateEntityOperation:
        column, column_display = self.primary_name_column(entity)
        return CreateEntityOperation(
            source_entity=entity.name,
            logical_name=logical_name,
            display_name=entity.display_name or format_display_name(entity.name),
            solution_unique_name=solution,
            primary_name_schema=f"{prefix}_{safe_name(entity.name)}_{safe_name(column)}",
            primary_name_display=column_display,
        )

    # =========================================================================
    # Attributes
    # =========================================================================

    def _skip_attribute(self, entity: Entity, attr: Attribute, primary_column: str) -> bool:
        lowered = attr.name.lower()
        return (
            attr.is_primary_key
            or attr.is_foreign_key
            or attr.is_lookup
            or lowered == primary_column.lower()
            or lowered == "name"
            or lowered == f"{entity.name.lower()}_name"
            or lowered == "status"
        )

    def _attribute_operations(
        self,
        entity: Entity,
        logical_name: str,
        prefix: str,
        request: DeploymentRequest,
        warnings: List[str],
    ) -> List[CreateAttributeOperation]:
        primary_column, _ = self.primary_name_column(entity)
        entity_safe = safe_name(entity.name)
        used = {f"{prefix}_{entity_safe}_{safe_name(primary_column)}"}
        operations: List[CreateAttributeOperation] = []

        for attr in entity.non_system_attributes:
            if self._skip_attribute(entity, attr, primary_column):
                continue

            base = safe_name(attr.name)
            if base in DataverseLimits.RESERVED_ATTRIBUTE_NAMES:
                schema = f"{prefix}_{entity_safe}_{base}"
            else:
                schema = f"{prefix}_{base}"
            if schema in used:
                warnings.append(
                    f"Column '{entity.name}.{attr.name}' duplicates schema name '{schema}'; skipped"
                )
                continue
            used.add(schema)

            choice_options = tuple(
                ChoiceOption(label=option, value=DataverseLimits.OPTION_VALUE_BASE + index)
                for index, option in enumerate(attr.choice_options)
            )
            global_choice_set = ""
            if attr.type == AttributeType.CHOICE and attr.choice_set:
                global_choice_set, choice_options = self._resolve_choice_set(
                    entity, attr, request, warnings
                )
                if not global_choice_set and not choice_options:
                    continue

            operations.append(CreateAttributeOperation(
                entity_logical_name=logical_name,
                schema_name=schema,
                display_name=attr.display_name or format_display_name(attr.name),
                attribute_type=attr.type,
                source_entity=entity.name,
                source_attribute=attr.name,
                description=attr.description,
                is_required=attr.is_required,
                choice_options=choice_options,
                global_choice_set=global_choice_set,
                default_value=self._column_default(entity, attr, choice_options, warnings),
            ))
        return operations

    @staticmethod
    def _column_default(
        entity: Entity,
        attr: Attribute,
        choice_options: Tuple[ChoiceOption, ...],
        warnings: List[str],
    ) -> Optional[str]:
        """Keep a diagram default only where the column type can carry it."""
        if attr.default_value is None:
            return None
        column = f"{entity.name}.{attr.name}"
        if attr.type == AttributeType.BOOLEAN:
            if boolean_default(attr.default_value) is not None:
                return attr.default_value
            warnings.append(
                f"Default value '{attr.default_value}' for '{column}' is ignored: not a yes/no value"
            )
            return None
        if attr.type == AttributeType.CHOICE:
            if choice_default(attr.default_value, choice_options) is not None:
                return attr.default_value
            warnings.append(
                f"Default value '{attr.default_value}' for '{column}' is ignored: "
                f"it matches no choice option"
            )
            return None
        warnings.append(
            f"Default value for '{column}' is ignored: "
            f"{attr.type.value} columns do not support defaults"
        )
        return None

    @staticmethod
    def _resolve_choice_set(
        entity: Entity,
        attr: Attribute,
        request: DeploymentRequest,
        warnings: List[str],
    ) -> Tuple[str, Tuple[ChoiceOption, ...]]:
        """
        Bind a column to a global choice set.

        Existing sets are bound by name. A set created by this request does
        not exist yet when columns are created, so the column gets a local
        copy of its options.
        """
        wanted = attr.choice_set.lower()
        for name in request.existing_choice_sets:
            if name.lower() == wanted:
                return name, ()
        for choice_set in request.global_choice_sets:
            if choice_set.name.lower() == wanted:
                warnings.append(
                    f"Column '{entity.name}.{attr.name}' uses a local copy of choice set "
                    f"'{choice_set.name}' because the global set is created after columns"
                )
                return "", choice_set.options
        warnings.append(
            f"Column '{entity.name}.{attr.name}' references unknown choice set "
            f"'{attr.choice_set}'; skipped"
        )
        return "", ()

    # =========================================================================
    # Relationships
    # =========================================================================

    def _relationship_operations(
        self,
        entities: Sequence[Entity],
        relationships: Sequence[Relationship],
        logical_names: Dict[str, str],
        entity_keys: Dict[str, str],
        prefix: str,
        warnings: List[str],
    ) -> List[CreateRelationshipOperation]:
        used_schemas: Set[str] = set()
        used_lookups: Dict[str, Set[str]] = {}
        links: Set[Tuple[str, str]] = set()
        operations: List[CreateRelationshipOperation] = []

        def add_one_to_many(
            referenced: str,
            referencing: str,
            lookup_base: str,
            lookup_display: str,
            display_name: str,
            source: str,
            cascade,
        ) -> None:
            referenced_logical = logical_names[referenced]
            referencing_logical = logical_names[referencing]
            schema = _unique(
                f"{prefix}_{safe_name(referenced)}_{safe_name(referencing)}", used_schemas
            )
            lookup = _unique(
                f"{prefix}_{lookup_base}", used_lookups.setdefault(referencing_logical, set())
            )
            links.add((referenced_logical, referencing_logical))
            operations.append(CreateRelationshipOperation(
                schema_name=schema,
                referenced_entity=referenced_logical,
                referencing_entity=referencing_logical,
                cardinality=Cardinality.ONE_TO_MANY,
                display_name=display_name,
                lookup_schema_name=lookup,
                lookup_display_name=lookup_display,
                cascade_delete=cascade,
                dependencies=self._dependencies(entity_keys, referenced, referencing),
                source=source,
            ))

        for rel in relationships:
            if rel.from_entity not in logical_names or rel.to_entity not in logical_names:
                warnings.append(
                    f"Relationship '{rel.name}' references an unknown entity "
                    f"({rel.from_entity} -> {rel.to_entity}); skipped"
                )
                continue

            if rel.cardinality == Cardinality.MANY_TO_MANY:
                schema = _unique(
                    f"{prefix}_{safe_name(rel.from_entity)}_{safe_name(rel.to_entity)}", used_schemas
                )
                operations.append(CreateRelationshipOperation(
                    schema_name=schema,
                    referenced_entity=logical_names[rel.from_entity],
                    referencing_entity=logical_names[rel.to_entity],
                    cardinality=Cardinality.MANY_TO_MANY,
                    display_name=rel.display_name or rel.name,
                    intersect_entity_name=schema,
                    dependencies=self._dependencies(entity_keys, rel.from_entity, rel.to_entity),
                    source=rel.name,
                ))
                continue

            if rel.cardinality == Cardinality.ONE_TO_ONE:
                warnings.append(
                    f"One-to-one relationship '{rel.name}' ({rel.from_entity} -> {rel.to_entity}) "
                    f"is deployed as one-to-many"
                )

            referenced_safe = safe_name(rel.from_entity)
            lookup_base = (
                f"parent{referenced_safe}id" if rel.is_self_referencing else f"{referenced_safe}id"
            )
            add_one_to_many(
                rel.from_entity,
                rel.to_entity,
                lookup_base,
                format_display_name(rel.from_entity),
                rel.display_name or rel.name,
                rel.name,
                rel.cascade_delete,
            )

        by_name = {e.name.lower(): e.name for e in entities}
        by_logical = {logical: name for name, logical in logical_names.items()}
        for entity in entities:
            # Columns of standard tables are not deployed
            if entity_keys[entity.name].startswith("cdm:"):
                continue
            for attr in entity.attributes:
                if not attr.is_lookup or not attr.lookup_target:
                    continue
                target = by_name.get(attr.lookup_target.lower()) or by_logical.get(attr.lookup_target.lower())
                if target is None:
                    warnings.append(
                        f"Lookup '{entity.name}.{attr.name}' targets unknown entity "
                        f"'{attr.lookup_target}'; skipped"
                    )
                    continue
                if (logical_names[target], logical_names[entity.name]) in links:
                    continue
                add_one_to_many(
                    target,
                    entity.name,
                    safe_name(attr.name),
                    attr.display_name or format_display_name(attr.name),
                    attr.display_name or format_display_name(attr.name),
                    f"{entity.name}.{attr.name}",
                    CascadeBehavior.REMOVE_LINK,
                )

        return operations

    @staticmethod
    def _dependencies(entity_keys: Dict[str, str], *endpoints: str) -> Tuple[str, ...]:
        keys: List[str] = []
        for endpoint in endpoints:
            key = entity_keys[endpoint]
            if key not in keys:
                keys.append(key)
        return tuple(keys)

    # =========================================================================
    # Choice Sets
    # =========================================================================

    @staticmethod
    def _choice_set_operations(request: DeploymentRequest, prefix: str) -> List[Operation]:
        operations: List[Operation] = []
        schemas: Set[str] = set()
        for choice_set in request.global_choice_sets:
            schema = f"{prefix}_{safe_name(choice_set.name)}"
            if schema in schemas:
                continue
            schemas.add(schema)
            operations.append(EnsureChoiceSetOperation(
                choice_set=choice_set,
                schema_name=schema,
                solution_unique_name=request.solution_unique_name,
            ))
        seen: Set[str] = set()
        for name in request.existing_choice_sets:
            if name.lower() in seen:
                continue
            seen.add(name.lower())
            operations.append(AttachChoiceSetOperation(
                name=name,
                solution_unique_name=request.solution_unique_name,
            ))
        return operations
