"""
Platform access: authentication, retry and the Web API metadata client.
"""

from .auth import (
    AuthenticationError,
    AzureCredentialProvider,
    CredentialFactory,
    CredentialProvider,
    TokenCache,
    scope_for,
)
from .retry import (
    Clock,
    RetryPhase,
    RetryPolicy,
    RetryState,
    SystemClock,
    format_http_date,
    parse_retry_after,
)
from .metadata_client import (
    ConfigurationError,
    DataverseConfig,
    LookupNotFoundError,
    MetadataAPIError,
    MetadataClient,
    TransientAPIError,
    is_transient_error,
)

__all__ = [
    'AuthenticationError',
    'AzureCredentialProvider',
    'CredentialFactory',
    'CredentialProvider',
    'TokenCache',
    'scope_for',
    'Clock',
    'RetryPhase',
    'RetryPolicy',
    'RetryState',
    'SystemClock',
    'format_http_date',
    'parse_retry_after',
    'ConfigurationError',
    'DataverseConfig',
    'LookupNotFoundError',
    'MetadataAPIError',
    'MetadataClient',
    'TransientAPIError',
    'is_transient_error',
]
