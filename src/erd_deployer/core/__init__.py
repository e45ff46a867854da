"""
Core services and platform access for the ERD deployer.

Usage:
    from erd_deployer.core import DataverseConfig, MetadataClient
    from erd_deployer.core import SchemaPlanner, DeploymentExecutor, DeploymentPipeline
"""

from .platform import (
    AuthenticationError,
    ConfigurationError,
    CredentialFactory,
    DataverseConfig,
    LookupNotFoundError,
    MetadataAPIError,
    MetadataClient,
    RetryPolicy,
    TokenCache,
    TransientAPIError,
)
from .services import (
    DeploymentExecutor,
    DeploymentPipeline,
    DiagramInvalidError,
    PlanError,
    SchemaPlanner,
)

__all__ = [
    'AuthenticationError',
    'ConfigurationError',
    'CredentialFactory',
    'DataverseConfig',
    'LookupNotFoundError',
    'MetadataAPIError',
    'MetadataClient',
    'RetryPolicy',
    'TokenCache',
    'TransientAPIError',
    'DeploymentExecutor',
    'DeploymentPipeline',
    'DiagramInvalidError',
    'PlanError',
    'SchemaPlanner',
]
