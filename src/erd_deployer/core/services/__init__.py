"""
Deployment services.

- SchemaPlanner: Build an ordered, dependency-respecting DeploymentPlan
- DeploymentExecutor: Run a plan idempotently with progress and rollback
- DeploymentPipeline: parse -> match -> plan -> execute
"""

from .planner import SchemaPlanner
from .executor import DeploymentExecutor, MetadataClientProtocol, ProgressCallback
from .pipeline import (
    DeploymentPipeline,
    DiagramInvalidError,
    PipelineStage,
    PreparedDeployment,
)
from ...shared.models.operations import PlanError

__all__ = [
    'SchemaPlanner',
    'PlanError',
    'DeploymentExecutor',
    'MetadataClientProtocol',
    'ProgressCallback',
    'DeploymentPipeline',
    'DiagramInvalidError',
    'PipelineStage',
    'PreparedDeployment',
]
