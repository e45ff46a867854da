"""
Deployment Executor.

Runs a ``DeploymentPlan`` against the metadata client phase by phase:

- Every create first checks existence ("ensure"), so re-running a plan
  converges instead of duplicating.
- Operations inside a phase run concurrently (bounded by a semaphore);
  outcomes are aggregated in plan order.
- Publisher/solution failures and credential failures abort the run;
  everything else is a per-item failure.
- Progress events go to an optional callback or out of ``execute_stream``.

Usage:
    executor = DeploymentExecutor(client)
    result = await executor.execute(plan, progress=print)
    if not result.success:
        print(result.aborted_phase, result.errors)
"""

import asyncio
import dataclasses
import inspect
import logging
from dataclasses import dataclass, field
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Set,
    Union,
)

from ...constants import APIConfig, DataverseLimits
from ...shared.models.deployment import (
    CreatedArtifacts,
    DeploymentResult,
    OperationOutcome,
    OperationStatus,
    ProgressEvent,
    RollbackOptions,
    RollbackResult,
)
from ...shared.models.operations import (
    PHASE_ORDER,
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
    OperationKind,
    OperationValidationError,
    PlanError,
)
from ..platform.auth import AuthenticationError
from ..platform.metadata_client import LookupNotFoundError, MetadataAPIError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], Union[None, Awaitable[None]]]

_ABORTING_KINDS = (OperationKind.PUBLISHER, OperationKind.SOLUTION)

_PHASE_MESSAGES = {
    OperationKind.PUBLISHER: "Ensuring publisher",
    OperationKind.SOLUTION: "Ensuring solution",
    OperationKind.CANONICAL_ENTITY: "Adding standard tables",
    OperationKind.ENTITY: "Creating custom tables",
    OperationKind.ATTRIBUTE: "Creating columns",
    OperationKind.RELATIONSHIP: "Creating relationships",
    OperationKind.CHOICE_SET: "Adding global choices",
}


class MetadataClientProtocol(Protocol):
    """The subset of ``MetadataClient`` the executor relies on."""

    async def find_publisher(self, unique_name: str) -> Optional[Dict[str, Any]]: ...
    async def find_publisher_by_prefix(self, prefix: str) -> Optional[Dict[str, Any]]: ...
    async def create_publisher(self, operation: EnsurePublisherOperation) -> str: ...
    async def find_solution(self, unique_name: str) -> Optional[Dict[str, Any]]: ...
    async def create_solution(self, operation: EnsureSolutionOperation) -> str: ...
    async def solution_component_exists(self, component_id: str, solution_id: str) -> bool: ...
    async def add_solution_component(
        self, component_id: str, component_type: int, solution_unique_name: str,
        add_required_components: bool = False,
    ) -> None: ...
    async def get_entity(self, logical_name: str) -> Optional[Dict[str, Any]]: ...
    async def create_entity(self, operation: CreateEntityOperation) -> Optional[str]: ...
    async def attribute_exists(self, entity_logical_name: str, attribute_logical_name: str) -> bool: ...
    async def create_attribute(self, operation: CreateAttributeOperation, solution_unique_name: str) -> None: ...
    async def relationship_exists(self, schema_name: str) -> bool: ...
    async def create_relationship(self, operation: CreateRelationshipOperation, solution_unique_name: str) -> None: ...
    async def find_global_choice_set(self, name: str) -> Optional[Dict[str, Any]]: ...
    async def create_global_choice_set(self, operation: EnsureChoiceSetOperation) -> Optional[str]: ...
    async def attach_global_choice_set(self, operation: AttachChoiceSetOperation, metadata_id: str) -> None: ...
    async def delete_relationship(self, schema_name: str) -> None: ...
    async def delete_entity(self, logical_name: str) -> None: ...
    async def delete_global_choice_set(self, name: str) -> None: ...
    async def delete_solution(self, solution_id: str) -> None: ...
    async def delete_publisher(self, publisher_id: str) -> None: ...


@dataclass
class _RunState:
    """Mutable bookkeeping for one ``execute`` call."""
    plan: DeploymentPlan
    outcomes: Dict[str, OperationOutcome] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    aborted_phase: Optional[str] = None
    auth_error: Optional[AuthenticationError] = None
    publisher_id: Optional[str] = None
    publisher_created: bool = False
    solution_id: Optional[str] = None
    solution_created: bool = False
    created_entities: List[str] = field(default_factory=list)
    created_relationships: List[str] = field(default_factory=list)
    created_choice_sets: List[str] = field(default_factory=list)
    canonical_entities: List[str] = field(default_factory=list)
    result: Optional[DeploymentResult] = None


def _outcome(
    operation: Operation,
    status: OperationStatus,
    message: str = "",
    resource_id: Optional[str] = None,
) -> OperationOutcome:
    return OperationOutcome(
        key=operation.key,
        kind=operation.kind.value,
        status=status,
        message=message,
        resource_id=resource_id,
    )


class DeploymentExecutor:
    """
    Execute deployment plans idempotently.

    The executor holds no state between runs; each ``execute`` call is
    independent and may be repeated against the same environment.
    """

    def __init__(
        self,
        client: MetadataClientProtocol,
        max_concurrency: int = APIConfig.DEFAULT_MAX_CONCURRENCY,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the executor.

        Args:
            client: Metadata client (or any object with the same methods).
            max_concurrency: Operations in flight within one phase.
            logger: Logger to use instead of the module logger.
        """
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency}")
        self.client = client
        self.max_concurrency = max_concurrency
        self.logger = logger or logging.getLogger(__name__)
        self._handlers = {
            EnsurePublisherOperation: self._ensure_publisher,
            EnsureSolutionOperation: self._ensure_solution,
            IntegrateCanonicalEntityOperation: self._integrate_canonical,
            CreateEntityOperation: self._create_entity,
            CreateAttributeOperation: self._create_attribute,
            CreateRelationshipOperation: self._create_relationship,
            EnsureChoiceSetOperation: self._ensure_choice_set,
            AttachChoiceSetOperation: self._attach_choice_set,
        }

    # =========================================================================
    # Public API
    # =========================================================================

    async def execute(
        self,
        plan: DeploymentPlan,
        progress: Optional[ProgressCallback] = None,
    ) -> DeploymentResult:
        """
        Execute a plan.

        Args:
            plan: Plan produced by ``SchemaPlanner``.
            progress: Optional callback (sync or async) receiving each event.

        Returns:
            The aggregated ``DeploymentResult``.
        """
        state = _RunState(plan)
        async for event in self._run(state):
            if progress is not None:
                returned = progress(event)
                if inspect.isawaitable(returned):
                    await returned
        return state.result

    async def execute_stream(self, plan: DeploymentPlan) -> AsyncIterator[ProgressEvent]:
        """
        Execute a plan, yielding progress events as they happen.

        The final ``complete`` event carries the serialized result under
        ``detail["result"]``.
        """
        state = _RunState(plan)
        async for event in self._run(state):
            yield event

    # =========================================================================
    # Run Loop
    # =========================================================================

    async def _run(self, state: _RunState) -> AsyncIterator[ProgressEvent]:
        plan = state.plan
        total = len(plan)
        completed = 0

        yield ProgressEvent("validation", f"Validating plan with {total} operations", detail={"total": total})
        try:
            plan.validate_ordering()
            plan.validate_operations()
        except PlanError as e:
            state.errors.append(e.message)
            state.errors.extend(e.problems)
            state.aborted_phase = "validation"

        semaphore = asyncio.Semaphore(self.max_concurrency)

        for kind in PHASE_ORDER:
            operations = plan.by_kind(kind)
            if not operations:
                continue

            if state.aborted_phase is not None:
                for operation in operations:
                    state.outcomes[operation.key] = _outcome(
                        operation, OperationStatus.SKIPPED, f"skipped: run aborted in {state.aborted_phase}"
                    )
                completed += len(operations)
                continue

            yield ProgressEvent(
                kind.value,
                f"{_PHASE_MESSAGES[kind]} ({len(operations)})",
                detail={"total": len(operations)},
            )

            if kind in _ABORTING_KINDS:
                outcomes = []
                for operation in operations:
                    outcomes.append(await self._apply(operation, state, semaphore))
            else:
                outcomes = await asyncio.gather(
                    *(self._apply(operation, state, semaphore) for operation in operations)
                )

            for operation, outcome in zip(operations, outcomes):
                state.outcomes[operation.key] = outcome
                completed += 1
                yield ProgressEvent(
                    kind.value,
                    f"{operation.describe()}: {outcome.status.value}",
                    detail={
                        "key": operation.key,
                        "status": outcome.status.value,
                        "completed": completed,
                        "total": total,
                    },
                )

            if state.auth_error is not None:
                state.aborted_phase = kind.value
                self.logger.error(f"Authentication failed during {kind.value}; aborting deployment")
            elif kind in _ABORTING_KINDS and any(
                o.status == OperationStatus.FAILED for o in outcomes
            ):
                state.aborted_phase = kind.value
                self.logger.error(f"{_PHASE_MESSAGES[kind]} failed; aborting deployment")

        state.result = self._build_result(state)
        self.logger.info(f"Deployment finished: {state.result.summary}")
        yield ProgressEvent(
            "complete",
            state.result.summary,
            detail={
                "success": state.result.success,
                "abortedPhase": state.result.aborted_phase,
                "result": state.result.to_dict(),
            },
        )

    async def _apply(
        self,
        operation: Operation,
        state: _RunState,
        semaphore: asyncio.Semaphore,
    ) -> OperationOutcome:
        """Run one operation, turning failures into outcomes."""
        for dependency in operation.depends_on:
            previous = state.outcomes.get(dependency)
            if previous is not None and not previous.succeeded:
                message = f"skipped: dependency '{dependency}' {previous.status.value}"
                state.warnings.append(f"{operation.describe()} {message}")
                return _outcome(operation, OperationStatus.SKIPPED, message)

        if state.auth_error is not None:
            return _outcome(operation, OperationStatus.SKIPPED, "skipped: authentication failed")

        handler = self._handlers[type(operation)]
        async with semaphore:
            try:
                return await handler(operation, state)
            except AuthenticationError as e:
                state.auth_error = e
                state.errors.append(f"{operation.describe()}: {e}")
                return _outcome(operation, OperationStatus.FAILED, str(e))
            except MetadataAPIError as e:
                if e.is_conflict:
                    self.logger.info(f"{operation.describe()}: already exists (conflict)")
                    return _outcome(operation, OperationStatus.ALREADY_EXISTED, "already exists (409)")
                self.logger.error(f"{operation.describe()} failed: {e}")
                state.errors.append(f"{operation.describe()}: {e}")
                return _outcome(operation, OperationStatus.FAILED, str(e))
            except OperationValidationError as e:
                self.logger.error(f"{operation.describe()} rejected: {e}")
                state.errors.append(f"{operation.describe()}: {e}")
                return _outcome(operation, OperationStatus.FAILED, str(e))

    # =========================================================================
    # Handlers
    # =========================================================================

    async def _ensure_publisher(self, op: EnsurePublisherOperation, state: _RunState) -> OperationOutcome:
        found = await self.client.find_publisher(op.unique_name)
        if not found:
            found = await self.client.find_publisher_by_prefix(op.prefix)
        if found:
            state.publisher_id = found.get("publisherid")
            self.logger.info(f"Using existing publisher '{found.get('uniquename', op.unique_name)}'")
            return _outcome(op, OperationStatus.ALREADY_EXISTED, "publisher exists", state.publisher_id)

        try:
            state.publisher_id = await self.client.create_publisher(op)
        except MetadataAPIError as e:
            if not e.is_conflict:
                raise
            # Created concurrently by someone else
            found = await self.client.find_publisher(op.unique_name)
            if not found:
                raise LookupNotFoundError(f"Publisher '{op.unique_name}' conflicts but cannot be found")
            state.publisher_id = found.get("publisherid")
            return _outcome(op, OperationStatus.ALREADY_EXISTED, "publisher exists", state.publisher_id)
        state.publisher_created = True
        self.logger.info(f"Created publisher '{op.unique_name}' ({state.publisher_id})")
        return _outcome(op, OperationStatus.CREATED, "publisher created", state.publisher_id)

    async def _ensure_solution(self, op: EnsureSolutionOperation, state: _RunState) -> OperationOutcome:
        found = await self.client.find_solution(op.unique_name)
        if found:
            state.solution_id = found.get("solutionid")
            self.logger.info(f"Using existing solution '{op.unique_name}'")
            return _outcome(op, OperationStatus.ALREADY_EXISTED, "solution exists", state.solution_id)

        if not state.publisher_id:
            raise LookupNotFoundError(f"No publisher id available for solution '{op.unique_name}'")
        try:
            state.solution_id = await self.client.create_solution(
                dataclasses.replace(op, publisher_id=state.publisher_id)
            )
        except MetadataAPIError as e:
            if not e.is_conflict:
                raise
            found = await self.client.find_solution(op.unique_name)
            if not found:
                raise LookupNotFoundError(f"Solution '{op.unique_name}' conflicts but cannot be found")
            state.solution_id = found.get("solutionid")
            return _outcome(op, OperationStatus.ALREADY_EXISTED, "solution exists", state.solution_id)
        state.solution_created = True
        self.logger.info(f"Created solution '{op.unique_name}' ({state.solution_id})")
        return _outcome(op, OperationStatus.CREATED, "solution created", state.solution_id)

    async def _integrate_canonical(
        self, op: IntegrateCanonicalEntityOperation, state: _RunState
    ) -> OperationOutcome:
        entity = await self.client.get_entity(op.logical_name)
        if not entity or not entity.get("MetadataId"):
            raise LookupNotFoundError(f"Standard table '{op.logical_name}' not found")
        metadata_id = entity["MetadataId"]
        if state.solution_id and await self.client.solution_component_exists(
            metadata_id, state.solution_id
        ):
            self.logger.info(f"Table '{op.logical_name}' is already in the solution")
            return _outcome(op, OperationStatus.ALREADY_EXISTED, "already in solution", metadata_id)
        await self.client.add_solution_component(
            metadata_id,
            DataverseLimits.COMPONENT_TYPE_ENTITY,
            op.solution_unique_name,
        )
        state.canonical_entities.append(op.logical_name)
        return _outcome(op, OperationStatus.CREATED, "added to solution", metadata_id)

    async def _create_entity(self, op: CreateEntityOperation, state: _RunState) -> OperationOutcome:
        existing = await self.client.get_entity(op.logical_name)
        if existing:
            self.logger.info(f"Table '{op.logical_name}' already exists")
            return _outcome(op, OperationStatus.ALREADY_EXISTED, "table exists", existing.get("MetadataId"))

        metadata_id = await self.client.create_entity(op)
        state.created_entities.append(op.logical_name)
        self.logger.info(f"Created table '{op.logical_name}'")
        return _outcome(op, OperationStatus.CREATED, "table created", metadata_id)

    async def _create_attribute(self, op: CreateAttributeOperation, state: _RunState) -> OperationOutcome:
        if await self.client.attribute_exists(op.entity_logical_name, op.schema_name):
            return _outcome(op, OperationStatus.ALREADY_EXISTED, "column exists")
        await self.client.create_attribute(op, state.plan.solution_unique_name)
        self.logger.debug(f"Created column '{op.entity_logical_name}.{op.schema_name}'")
        return _outcome(op, OperationStatus.CREATED, "column created")

    async def _create_relationship(
        self, op: CreateRelationshipOperation, state: _RunState
    ) -> OperationOutcome:
        if await self.client.relationship_exists(op.schema_name):
            return _outcome(op, OperationStatus.ALREADY_EXISTED, "relationship exists")
        await self.client.create_relationship(op, state.plan.solution_unique_name)
        state.created_relationships.append(op.schema_name)
        self.logger.info(f"Created relationship '{op.schema_name}'")
        return _outcome(op, OperationStatus.CREATED, "relationship created")

    async def _ensure_choice_set(self, op: EnsureChoiceSetOperation, state: _RunState) -> OperationOutcome:
        found = await self.client.find_global_choice_set(op.schema_name)
        if found:
            await self.client.add_solution_component(
                found["MetadataId"],
                DataverseLimits.COMPONENT_TYPE_OPTION_SET,
                op.solution_unique_name,
            )
            return _outcome(op, OperationStatus.ALREADY_EXISTED, "choice exists; attached", found["MetadataId"])

        metadata_id = await self.client.create_global_choice_set(op)
        state.created_choice_sets.append(op.schema_name)
        self.logger.info(f"Created global choice '{op.schema_name}'")
        return _outcome(op, OperationStatus.CREATED, "choice created", metadata_id)

    async def _attach_choice_set(self, op: AttachChoiceSetOperation, state: _RunState) -> OperationOutcome:
        found = await self.client.find_global_choice_set(op.name)
        if not found:
            raise LookupNotFoundError(f"Global choice '{op.name}' not found")
        await self.client.attach_global_choice_set(op, found["MetadataId"])
        return _outcome(op, OperationStatus.ALREADY_EXISTED, "existing choice attached", found["MetadataId"])

    # =========================================================================
    # Result
    # =========================================================================

    def _build_result(self, state: _RunState) -> DeploymentResult:
        outcomes = tuple(state.outcomes[op.key] for op in state.plan if op.key in state.outcomes)

        def count(op_type, *statuses: OperationStatus) -> int:
            return sum(
                1 for op in state.plan
                if isinstance(op, op_type)
                and op.key in state.outcomes
                and state.outcomes[op.key].status in statuses
            )

        entities_created = count(CreateEntityOperation, OperationStatus.CREATED)
        relationships_created = count(CreateRelationshipOperation, OperationStatus.CREATED)
        cdm_integrated = count(IntegrateCanonicalEntityOperation, OperationStatus.CREATED)
        choices_new = count(EnsureChoiceSetOperation, OperationStatus.CREATED)
        choices_existing = (
            count(EnsureChoiceSetOperation, OperationStatus.ALREADY_EXISTED)
            + count(AttachChoiceSetOperation, OperationStatus.CREATED, OperationStatus.ALREADY_EXISTED)
        )

        summary = (
            f"{cdm_integrated} CDM tables added, {entities_created} custom tables created, "
            f"{relationships_created} relationships created, "
            f"{choices_new + choices_existing} global choices added "
            f"({choices_new} new, {choices_existing} existing)"
        )

        return DeploymentResult(
            success=state.aborted_phase is None,
            outcomes=outcomes,
            entities_created=entities_created,
            already_exists=count(CreateEntityOperation, OperationStatus.ALREADY_EXISTED),
            attributes_created=count(CreateAttributeOperation, OperationStatus.CREATED),
            relationships_created=relationships_created,
            cdm_entities_integrated=cdm_integrated,
            choice_sets_created=choices_new,
            choice_sets_attached=choices_existing,
            errors=tuple(state.errors),
            warnings=tuple(state.plan.warnings) + tuple(state.warnings),
            summary=summary,
            aborted_phase=state.aborted_phase,
            publisher_id=state.publisher_id,
            solution_id=state.solution_id,
            created_artifacts=CreatedArtifacts(
                publisher_id=state.publisher_id,
                publisher_created=state.publisher_created,
                solution_id=state.solution_id,
                solution_unique_name=state.plan.solution_unique_name,
                solution_created=state.solution_created,
                entities=self._in_plan_order(state, CreateEntityOperation, state.created_entities, "logical_name"),
                relationships=self._in_plan_order(
                    state, CreateRelationshipOperation, state.created_relationships, "schema_name"
                ),
                choice_sets=self._in_plan_order(
                    state, EnsureChoiceSetOperation, state.created_choice_sets, "schema_name"
                ),
                canonical_entities=self._in_plan_order(
                    state, IntegrateCanonicalEntityOperation, state.canonical_entities, "logical_name"
                ),
            ),
        )

    @staticmethod
    def _in_plan_order(state: _RunState, op_type, names: List[str], attribute: str) -> tuple:
        wanted: Set[str] = set(names)
        return tuple(
            getattr(op, attribute) for op in state.plan
            if isinstance(op, op_type) and getattr(op, attribute) in wanted
        )

    # =========================================================================
    # Rollback
    # =========================================================================

    async def rollback(
        self,
        result: DeploymentResult,
        options: Optional[RollbackOptions] = None,
    ) -> RollbackResult:
        """
        Delete what a previous deployment created.

        Relationships go first, then tables, global choices, the solution
        and the publisher. Only artifacts the run created are deleted;
        standard and system tables are never touched.

        Args:
            result: Result of the deployment to undo.
            options: Which groups to delete (all by default).

        Returns:
            ``RollbackResult`` listing deleted and skipped items.
        """
        options = options or RollbackOptions()
        artifacts = result.created_artifacts
        deleted: List[str] = []
        skipped: List[str] = []
        warnings: List[str] = []
        errors: List[str] = []

        def finish() -> RollbackResult:
            rollback_result = RollbackResult(
                success=not errors,
                deleted=tuple(deleted),
                skipped=tuple(skipped),
                warnings=tuple(warnings),
                errors=tuple(errors),
            )
            self.logger.info(f"Rollback finished: {rollback_result.summary}")
            return rollback_result

        async def delete(label: str, call: Callable[[], Awaitable[None]]) -> bool:
            try:
                await call()
            except MetadataAPIError as e:
                if e.is_not_found:
                    warnings.append(f"{label} already deleted")
                    return True
                errors.append(f"Failed to delete {label}: {e}")
                self.logger.error(f"Failed to delete {label}: {e}")
                return False
            deleted.append(label)
            self.logger.info(f"Deleted {label}")
            return True

        if options.delete_relationships:
            for schema_name in reversed(artifacts.relationships):
                label = f"relationship:{schema_name}"
                if not await delete(label, lambda s=schema_name: self.client.delete_relationship(s)):
                    warnings.append("Rollback stopped before tables because a relationship could not be deleted")
                    return finish()
        else:
            skipped.extend(f"relationship:{s}" for s in artifacts.relationships)

        for logical_name in artifacts.canonical_entities:
            skipped.append(f"entity:{logical_name}")
            warnings.append(f"Standard table '{logical_name}' is never deleted")

        for logical_name in reversed(artifacts.entities):
            label = f"entity:{logical_name}"
            if logical_name in DataverseLimits.SYSTEM_ENTITIES or logical_name in artifacts.canonical_entities:
                skipped.append(label)
                warnings.append(f"System table '{logical_name}' is never deleted")
            elif not options.delete_entities:
                skipped.append(label)
            else:
                await delete(label, lambda n=logical_name: self.client.delete_entity(n))

        for name in reversed(artifacts.choice_sets):
            label = f"choice:{name}"
            if options.delete_choice_sets:
                await delete(label, lambda n=name: self.client.delete_global_choice_set(n))
            else:
                skipped.append(label)

        if artifacts.solution_created and artifacts.solution_id:
            label = f"solution:{artifacts.solution_unique_name}"
            if options.delete_solution:
                await delete(label, lambda: self.client.delete_solution(artifacts.solution_id))
            else:
                skipped.append(label)

        if artifacts.publisher_created and artifacts.publisher_id:
            label = f"publisher:{artifacts.publisher_id}"
            if options.delete_publisher:
                await delete(label, lambda: self.client.delete_publisher(artifacts.publisher_id))
            else:
                skipped.append(label)

        return finish()
