"""
Shared data models for the deployment pipeline.

Usage:
    from erd_deployer.shared.models import DeploymentPlan, DeploymentRequest, DeploymentResult

    request = DeploymentRequest.from_dict(json.load(f))
"""

from .operations import (
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
from .deployment import (
    CreatedArtifacts,
    DeploymentRequest,
    DeploymentResult,
    OperationOutcome,
    OperationStatus,
    ProgressEvent,
    RollbackOptions,
    RollbackResult,
)

__all__ = [
    # Operations
    "PHASE_ORDER",
    "AttachChoiceSetOperation",
    "CreateAttributeOperation",
    "CreateEntityOperation",
    "CreateRelationshipOperation",
    "DeploymentPlan",
    "EnsureChoiceSetOperation",
    "EnsurePublisherOperation",
    "EnsureSolutionOperation",
    "IntegrateCanonicalEntityOperation",
    "Operation",
    "OperationKind",
    "OperationValidationError",
    "PlanError",
    # Deployment
    "CreatedArtifacts",
    "DeploymentRequest",
    "DeploymentResult",
    "OperationOutcome",
    "OperationStatus",
    "ProgressEvent",
    "RollbackOptions",
    "RollbackResult",
]
