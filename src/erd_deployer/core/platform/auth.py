"""
Authentication helpers for the Dataverse Web API.

Classes:
    AuthenticationError: Credential or token failure (aborts a deployment)
    CredentialProvider: Protocol for async token sources
    AzureCredentialProvider: Adapts an azure-identity ``TokenCredential``
    CredentialFactory: Builds the chained azure-identity credential
    TokenCache: Single-flight bearer token cache with early refresh
"""

import asyncio
import logging
from typing import List, Optional, Protocol, runtime_checkable

from azure.core.credentials import AccessToken, TokenCredential
from azure.identity import (
    ChainedTokenCredential,
    ClientSecretCredential,
    DefaultAzureCredential,
    InteractiveBrowserCredential,
)

from ...constants import APIConfig
from .retry import Clock, SystemClock

logger = logging.getLogger(__name__)


def scope_for(environment_url: str) -> str:
    """OAuth scope for an environment, e.g. ``https://org.crm.dynamics.com/.default``."""
    return f"{environment_url.rstrip('/')}/.default"


class AuthenticationError(Exception):
    """Exception raised for authentication failures."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


@runtime_checkable
class CredentialProvider(Protocol):
    """Anything that can asynchronously produce an access token for a scope."""

    async def get_token(self, scope: str) -> AccessToken:
        ...


class AzureCredentialProvider:
    """
    Adapt a synchronous azure-identity credential to ``CredentialProvider``.

    The blocking ``get_token`` call runs in a worker thread so the event
    loop keeps serving other requests.
    """

    def __init__(self, credential: TokenCredential):
        self._credential = credential

    async def get_token(self, scope: str) -> AccessToken:
        return await asyncio.to_thread(self._credential.get_token, scope)


class CredentialFactory:
    """Factory for creating Azure credentials based on configuration.

    Example:
        >>> credential = CredentialFactory.create_credential(tenant_id, client_id, secret)
        >>> provider = AzureCredentialProvider(credential)
    """

    @staticmethod
    def create_credential(
        tenant_id: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        use_interactive_auth: bool = False,
        managed_identity_client_id: Optional[str] = None,
    ) -> TokenCredential:
        """Create a chained token credential.

        The chain tries, in order:
        1. Service principal (if tenant, client id and secret are provided)
        2. Interactive browser (if enabled)
        3. Default Azure credential (managed identity, environment, CLI ...)

        Args:
            tenant_id: Azure AD tenant ID
            client_id: App registration client ID
            client_secret: App registration secret
            use_interactive_auth: Whether to enable interactive browser auth
            managed_identity_client_id: User-assigned managed identity client ID

        Returns:
            TokenCredential: Chained credential for authentication
        """
        credentials: List[TokenCredential] = []

        if client_id and client_secret and tenant_id:
            logger.info("Adding client secret credential to auth chain")
            credentials.append(
                ClientSecretCredential(
                    tenant_id=tenant_id,
                    client_id=client_id,
                    client_secret=client_secret,
                )
            )

        if use_interactive_auth:
            logger.info("Adding interactive browser credential to auth chain")
            # Empty strings fail azure-identity validation
            interactive_kwargs = {}
            if tenant_id:
                interactive_kwargs['tenant_id'] = tenant_id
            if client_id:
                interactive_kwargs['client_id'] = client_id
            credentials.append(InteractiveBrowserCredential(**interactive_kwargs))

        default_kwargs = {}
        if managed_identity_client_id:
            default_kwargs['managed_identity_client_id'] = managed_identity_client_id
        credentials.append(DefaultAzureCredential(**default_kwargs))

        return ChainedTokenCredential(*credentials)

    @classmethod
    def create_provider(cls, config) -> AzureCredentialProvider:
        """Build a provider from a ``DataverseConfig``."""
        return AzureCredentialProvider(
            cls.create_credential(
                tenant_id=config.tenant_id,
                client_id=config.client_id,
                client_secret=config.client_secret,
                use_interactive_auth=config.use_interactive_auth,
                managed_identity_client_id=config.managed_identity_client_id,
            )
        )


class TokenCache:
    """Bearer token cache with single-flight refresh.

    Concurrent callers that find the token stale wait on one lock; the
    first one refreshes and the rest reuse its result, so the provider is
    called once per refresh.

    Example:
        >>> cache = TokenCache(provider, scope_for(url))
        >>> headers = {"Authorization": f"Bearer {await cache.get_token()}"}
    """

    def __init__(
        self,
        provider: CredentialProvider,
        scope: str,
        refresh_buffer_seconds: float = APIConfig.TOKEN_REFRESH_BUFFER_SECONDS,
        clock: Optional[Clock] = None,
    ):
        """Initialize the cache.

        Args:
            provider: Token source
            scope: OAuth scope to request
            refresh_buffer_seconds: Refresh this many seconds before expiry
            clock: Time source (defaults to the system clock)
        """
        self._provider = provider
        self._scope = scope
        self._refresh_buffer_seconds = refresh_buffer_seconds
        self._clock = clock or SystemClock()
        self._access_token: Optional[str] = None
        self._token_expires: float = 0
        self._lock = asyncio.Lock()
        self.refresh_count = 0

    @property
    def is_token_valid(self) -> bool:
        if not self._access_token:
            return False
        return self._clock.now() < self._token_expires - self._refresh_buffer_seconds

    async def get_token(self) -> str:
        """Get a valid access token, refreshing if necessary.

        Returns:
            Valid access token string

        Raises:
            AuthenticationError: If token acquisition fails
        """
        if self.is_token_valid:
            return self._access_token

        async with self._lock:
            # Another caller may have refreshed while we waited
            if self.is_token_valid:
                logger.debug("Using token refreshed by a concurrent caller")
                return self._access_token

            logger.info("Acquiring access token...")
            try:
                token = await self._provider.get_token(self._scope)
            except AuthenticationError:
                raise
            except Exception as e:
                logger.error(f"Authentication failed: {e}")
                raise AuthenticationError(f"Failed to acquire access token: {e}") from e

            if not token or not token.token:
                raise AuthenticationError("Received empty token from credential provider")

            self._access_token = token.token
            self._token_expires = float(token.expires_on)
            self.refresh_count += 1
            logger.info("Access token acquired successfully")
            return self._access_token

    def invalidate(self) -> None:
        """Drop the cached token so the next call refreshes."""
        self._access_token = None
        self._token_expires = 0
        logger.debug("Token cache invalidated")
