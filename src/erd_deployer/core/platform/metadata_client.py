"""
Dataverse Metadata API Client.

Async client for the Web API metadata endpoints used by a deployment:
publishers, solutions, tables, columns, relationships, global choice sets
and solution components.

Every request goes through:
- ``TokenCache`` for bearer tokens (one refresh, then retry once on 401)
- ``RetryPolicy`` for 429/5xx and transport failures
- OData error extraction into ``MetadataAPIError``

Usage:
    config = DataverseConfig.from_file("config.json")
    async with MetadataClient(config) as client:
        publisher = await client.find_publisher("contoso")
"""

import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from ...constants import APIConfig, DataverseLimits
from ...shared.models.operations import (
    AttachChoiceSetOperation,
    CreateAttributeOperation,
    CreateEntityOperation,
    CreateRelationshipOperation,
    EnsureChoiceSetOperation,
    EnsurePublisherOperation,
    EnsureSolutionOperation,
)
from .auth import AuthenticationError, CredentialFactory, CredentialProvider, TokenCache, scope_for
from .retry import Clock, RetryPolicy, RetryState, SystemClock, parse_retry_after

logger = logging.getLogger(__name__)

_ENTITY_ID_PATTERN = re.compile(r'\(([0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12})\)')
_PLACEHOLDER_URLS = ("https://yourorg.crm.dynamics.com", "https://your-org.crm.dynamics.com")


# =============================================================================
# Errors
# =============================================================================

class ConfigurationError(Exception):
    """Raised for missing or invalid connection configuration."""


class MetadataAPIError(Exception):
    """Exception for Web API errors."""

    def __init__(self, status_code: int, error_code: str = "Unknown", message: str = ""):
        self.status_code = status_code
        self.error_code = error_code
        self.message = message
        super().__init__(f"Metadata API Error ({status_code}): {error_code} - {message}")

    @property
    def is_conflict(self) -> bool:
        """409, or the store's duplicate-name error code."""
        return self.status_code == 409 or self.error_code in ("0x80044363", "0x80048403")

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class TransientAPIError(MetadataAPIError):
    """Exception for transient API errors (429, 5xx, transport) that should be retried."""

    def __init__(self, status_code: int, retry_after: Optional[float] = None, message: str = ""):
        self.retry_after = retry_after
        super().__init__(status_code, "Transient", message)


class LookupNotFoundError(MetadataAPIError):
    """A record that should exist (just created or referenced) cannot be resolved."""

    def __init__(self, message: str):
        super().__init__(404, "LookupNotFound", message)


def is_transient_error(exception: BaseException) -> bool:
    """Check if exception is a transient error that should be retried."""
    return isinstance(exception, TransientAPIError)


def odata_quote(value: str) -> str:
    """Escape a string literal for an OData ``$filter``."""
    return value.replace("'", "''")


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class DataverseConfig:
    """Configuration for Dataverse Web API access."""
    environment_url: str
    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    use_interactive_auth: bool = False
    managed_identity_client_id: Optional[str] = None
    timeout_seconds: float = APIConfig.DEFAULT_TIMEOUT_SECONDS
    max_attempts: int = APIConfig.DEFAULT_MAX_ATTEMPTS
    initial_delay_seconds: float = APIConfig.DEFAULT_INITIAL_DELAY_SECONDS
    max_delay_seconds: float = APIConfig.DEFAULT_MAX_DELAY_SECONDS
    token_refresh_buffer_seconds: float = APIConfig.TOKEN_REFRESH_BUFFER_SECONDS
    max_concurrency: int = APIConfig.DEFAULT_MAX_CONCURRENCY

    @property
    def api_base_url(self) -> str:
        return f"{self.environment_url.rstrip('/')}/api/data/{APIConfig.API_VERSION}/"

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'DataverseConfig':
        """Create DataverseConfig from a dictionary.

        Reads the ``dataverse`` section when present, otherwise the whole
        object. Environment variables fill values the dictionary leaves empty.
        """
        section = config_dict.get('dataverse', config_dict)
        return cls(
            environment_url=section.get('environment_url') or os.environ.get('DATAVERSE_URL', ''),
            tenant_id=section.get('tenant_id') or os.environ.get('TENANT_ID'),
            client_id=section.get('client_id') or os.environ.get('CLIENT_ID'),
            client_secret=section.get('client_secret') or os.environ.get('CLIENT_SECRET'),
            use_interactive_auth=bool(section.get('use_interactive_auth', False)),
            managed_identity_client_id=section.get('managed_identity_client_id'),
            timeout_seconds=float(section.get('timeout_seconds', APIConfig.DEFAULT_TIMEOUT_SECONDS)),
            max_attempts=int(section.get('max_attempts', APIConfig.DEFAULT_MAX_ATTEMPTS)),
            initial_delay_seconds=float(
                section.get('initial_delay_seconds', APIConfig.DEFAULT_INITIAL_DELAY_SECONDS)
            ),
            max_delay_seconds=float(
                section.get('max_delay_seconds', APIConfig.DEFAULT_MAX_DELAY_SECONDS)
            ),
            token_refresh_buffer_seconds=float(
                section.get('token_refresh_buffer_seconds', APIConfig.TOKEN_REFRESH_BUFFER_SECONDS)
            ),
            max_concurrency=int(section.get('max_concurrency', APIConfig.DEFAULT_MAX_CONCURRENCY)),
        )

    @classmethod
    def from_env(cls) -> 'DataverseConfig':
        """Build a configuration purely from environment variables."""
        return cls.from_dict({})

    @classmethod
    def from_file(cls, config_path: str) -> 'DataverseConfig':
        """Load configuration from a JSON file."""
        if not config_path:
            raise ValueError("config_path cannot be empty")

        if not isinstance(config_path, str):
            raise TypeError(f"config_path must be string, got {type(config_path)}")

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                config_dict = json.load(f)
        except FileNotFoundError:
            raise FileNotFoundError(
                f"Configuration file not found: {config_path}. "
                f"Please create a config.json file with your Dataverse environment settings."
            )
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file {config_path}: {e}")
        except UnicodeDecodeError as e:
            raise ValueError(f"Encoding error reading {config_path}: {e}")
        except PermissionError:
            raise PermissionError(f"Permission denied reading {config_path}")
        except Exception as e:
            raise IOError(f"Error reading configuration file {config_path}: {e}")

        if not isinstance(config_dict, dict):
            raise ValueError(f"Configuration file must contain a JSON object, got {type(config_dict)}")

        return cls.from_dict(config_dict)

    def validate(self) -> None:
        """
        Check the configuration.

        Raises:
            ConfigurationError: On a missing, placeholder or non-https URL, or bad limits.
        """
        if not self.environment_url:
            raise ConfigurationError(
                "environment_url is required (config.json 'dataverse' section or DATAVERSE_URL)"
            )
        if self.environment_url.rstrip('/').lower() in _PLACEHOLDER_URLS:
            raise ConfigurationError(
                "Invalid environment_url. Please set your actual Dataverse environment URL"
            )
        parsed = urlparse(self.environment_url)
        if parsed.scheme != "https" or not parsed.netloc:
            raise ConfigurationError(
                f"environment_url must be an https URL with a host, got '{self.environment_url}'"
            )
        if self.max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.max_concurrency < 1:
            raise ConfigurationError(f"max_concurrency must be at least 1, got {self.max_concurrency}")


# =============================================================================
# Client
# =============================================================================

class MetadataClient:
    """
    Client for the Dataverse Web API metadata endpoints.

    Lookup methods return None (or False) for missing records; create
    methods raise ``MetadataAPIError`` with ``is_conflict`` on duplicates
    and leave the "already exists" decision to the caller.
    """

    def __init__(
        self,
        config: DataverseConfig,
        credential_provider: Optional[CredentialProvider] = None,
        token_cache: Optional[TokenCache] = None,
        clock: Optional[Clock] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the client.

        Args:
            config: Connection settings (validated here).
            credential_provider: Token source; defaults to the azure-identity chain.
            token_cache: Pre-built token cache (overrides ``credential_provider``).
            clock: Time source shared by retries and the token cache.
            transport: httpx transport, e.g. ``httpx.MockTransport`` in tests.
            logger: Logger to use instead of the module logger.
        """
        if not config:
            raise ValueError("config cannot be None")
        config.validate()

        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock or SystemClock()

        if token_cache is None:
            provider = credential_provider or CredentialFactory.create_provider(config)
            token_cache = TokenCache(
                provider,
                scope_for(config.environment_url),
                refresh_buffer_seconds=config.token_refresh_buffer_seconds,
                clock=self.clock,
            )
        self.token_cache = token_cache

        self.retry_policy = RetryPolicy(
            is_transient_error,
            max_attempts=config.max_attempts,
            initial_delay=config.initial_delay_seconds,
            max_delay=config.max_delay_seconds,
            clock=self.clock,
            logger=self.logger,
        )

        self._http = httpx.AsyncClient(
            base_url=config.api_base_url,
            timeout=config.timeout_seconds,
            transport=transport,
            headers={
                "OData-Version": "4.0",
                "OData-MaxVersion": "4.0",
                "Accept": "application/json",
                "Content-Type": "application/json; charset=utf-8",
            },
        )

    async def __aenter__(self) -> 'MetadataClient':
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # =========================================================================
    # Request Pipeline
    # =========================================================================

    async def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
        solution_unique_name: Optional[str] = None,
        state: Optional[RetryState] = None,
    ) -> httpx.Response:
        """
        Send a request with auth, retry and error mapping.

        Args:
            method: HTTP method.
            path: Path relative to ``/api/data/v9.2/``.
            json_body: JSON request body.
            params: Query parameters (OData options).
            solution_unique_name: Adds ``MSCRM.SolutionUniqueName``.
            state: Optional retry state to record phases into.

        Returns:
            The successful response.

        Raises:
            MetadataAPIError: Non-retryable status, or retries exhausted.
            AuthenticationError: Token could not be acquired or was rejected twice.
        """
        headers: Dict[str, str] = {}
        if solution_unique_name:
            headers["MSCRM.SolutionUniqueName"] = solution_unique_name
        return await self.retry_policy.run(
            self._send, method, path, json_body, params, headers, state=state
        )

    async def _send(
        self,
        method: str,
        path: str,
        json_body: Optional[Dict[str, Any]],
        params: Optional[Dict[str, str]],
        headers: Dict[str, str],
    ) -> httpx.Response:
        token = await self.token_cache.get_token()
        response = await self._send_once(method, path, json_body, params, headers, token)

        if response.status_code == 401:
            self.logger.info(f"{method} {path}: 401, refreshing token and retrying once")
            self.token_cache.invalidate()
            token = await self.token_cache.get_token()
            response = await self._send_once(method, path, json_body, params, headers, token)
            if response.status_code == 401:
                raise AuthenticationError(
                    f"Request rejected as unauthorized after token refresh: {method} {path}"
                )

        return self._handle_response(response)

    async def _send_once(
        self,
        method: str,
        path: str,
        json_body: Optional[Dict[str, Any]],
        params: Optional[Dict[str, str]],
        headers: Dict[str, str],
        token: str,
    ) -> httpx.Response:
        request_headers = dict(headers)
        request_headers["Authorization"] = f"Bearer {token}"
        try:
            self.logger.debug(f"{method} {path}")
            return await self._http.request(
                method, path, json=json_body, params=params, headers=request_headers
            )
        except httpx.TimeoutException as e:
            self.logger.warning(f"{method} {path}: request timeout: {e}")
            raise TransientAPIError(408, None, f"{method} {path} timed out")
        except httpx.TransportError as e:
            self.logger.warning(f"{method} {path}: connection error: {e}")
            raise TransientAPIError(503, None, f"{method} {path} failed to connect: {e}")

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Return successful responses; raise typed errors for the rest."""
        status = response.status_code
        if 200 <= status < 300:
            return response

        code, message = self._extract_error(response)

        if status in APIConfig.RETRYABLE_STATUS_CODES:
            retry_after = parse_retry_after(response.headers.get("Retry-After"), self.clock.now())
            raise TransientAPIError(status, retry_after, message or response.reason_phrase)

        raise MetadataAPIError(status_code=status, error_code=code, message=message)

    @staticmethod
    def _extract_error(response: httpx.Response) -> tuple:
        """Pull ``(code, message)`` from an OData error body."""
        try:
            body = response.json()
        except ValueError:
            return "Unknown", response.text[:500]
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            error = body["error"]
            return error.get("code") or "Unknown", error.get("message") or response.text[:500]
        return "Unknown", response.text[:500]

    async def _get_json(self, path: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        response = await self.request("GET", path, params=params)
        return response.json() if response.content else {}

    async def _get_values(self, path: str, params: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        return list((await self._get_json(path, params)).get("value", []))

    @staticmethod
    def _entity_id(response: httpx.Response) -> Optional[str]:
        """Record id from ``OData-EntityId`` / ``Location`` (``.../publishers(<guid>)``)."""
        for header in ("OData-EntityId", "Location"):
            value = response.headers.get(header)
            if value:
                match = _ENTITY_ID_PATTERN.search(value)
                if match:
                    return match.group(1)
        return None

    # =========================================================================
    # Connection
    # =========================================================================

    async def who_am_i(self) -> Dict[str, Any]:
        """Return the caller's ``UserId``, ``BusinessUnitId`` and ``OrganizationId``."""
        return await self._get_json("WhoAmI")

    async def test_connection(self) -> bool:
        """
        Check that the environment is reachable and the credentials work.

        Returns:
            True on success; False (with the failure logged) otherwise.
        """
        try:
            identity = await self.who_am_i()
        except (MetadataAPIError, AuthenticationError) as e:
            self.logger.error(f"Connection test failed: {e}")
            return False
        self.logger.info(f"Connected as user {identity.get('UserId')}")
        return True

    # =========================================================================
    # Publishers / Solutions
    # =========================================================================

    async def find_publisher(self, unique_name: str) -> Optional[Dict[str, Any]]:
        values = await self._get_values("publishers", {
            "$filter": f"uniquename eq '{odata_quote(unique_name)}'",
            "$select": "publisherid,uniquename,friendlyname,customizationprefix",
        })
        return values[0] if values else None

    async def find_publisher_by_prefix(self, prefix: str) -> Optional[Dict[str, Any]]:
        values = await self._get_values("publishers", {
            "$filter": f"customizationprefix eq '{odata_quote(prefix)}'",
            "$select": "publisherid,uniquename,friendlyname,customizationprefix",
        })
        return values[0] if values else None

    async def create_publisher(self, operation: EnsurePublisherOperation) -> str:
        """
        Create a publisher.

        Returns:
            The new publisher id.

        Raises:
            LookupNotFoundError: If the id can neither be read from the
                response nor found by unique name.
        """
        operation.validate()
        response = await self.request("POST", "publishers", json_body=operation.to_payload())
        publisher_id = self._entity_id(response)
        if publisher_id:
            return publisher_id
        found = await self.find_publisher(operation.unique_name)
        if not found:
            raise LookupNotFoundError(
                f"Publisher '{operation.unique_name}' was created but cannot be found"
            )
        return found["publisherid"]

    async def find_solution(self, unique_name: str) -> Optional[Dict[str, Any]]:
        values = await self._get_values("solutions", {
            "$filter": f"uniquename eq '{odata_quote(unique_name)}'",
            "$select": "solutionid,uniquename,friendlyname,_publisherid_value",
        })
        return values[0] if values else None

    async def create_solution(self, operation: EnsureSolutionOperation) -> str:
        """Create a solution bound to ``operation.publisher_id``; returns the solution id."""
        operation.validate()
        if not operation.publisher_id:
            raise LookupNotFoundError(
                f"Solution '{operation.unique_name}' needs a resolved publisher id"
            )
        response = await self.request("POST", "solutions", json_body=operation.to_payload())
        solution_id = self._entity_id(response)
        if solution_id:
            return solution_id
        found = await self.find_solution(operation.unique_name)
        if not found:
            raise LookupNotFoundError(
                f"Solution '{operation.unique_name}' was created but cannot be found"
            )
        return found["solutionid"]

    async def solution_component_exists(self, component_id: str, solution_id: str) -> bool:
        """True when ``component_id`` is already a component of ``solution_id``."""
        values = await self._get_values("solutioncomponents", {
            "$filter": f"objectid eq {component_id} and _solutionid_value eq {solution_id}",
            "$select": "solutioncomponentid",
        })
        return bool(values)

    async def add_solution_component(
        self,
        component_id: str,
        component_type: int,
        solution_unique_name: str,
        add_required_components: bool = False,
    ) -> None:
        await self.request("POST", "AddSolutionComponent", json_body={
            "ComponentId": component_id,
            "ComponentType": component_type,
            "SolutionUniqueName": solution_unique_name,
            "AddRequiredComponents": add_required_components,
        })

    # =========================================================================
    # Tables / Columns
    # =========================================================================

    async def get_entity(self, logical_name: str) -> Optional[Dict[str, Any]]:
        """Table metadata (``MetadataId``, ``LogicalName`` ...) or None."""
        try:
            return await self._get_json(
                f"EntityDefinitions(LogicalName='{odata_quote(logical_name)}')",
                {"$select": "MetadataId,LogicalName,SchemaName,PrimaryIdAttribute,PrimaryNameAttribute,IsCustomEntity"},
            )
        except MetadataAPIError as e:
            if e.is_not_found:
                return None
            raise

    async def create_entity(self, operation: CreateEntityOperation) -> Optional[str]:
        """Create a custom table in the operation's solution; returns its MetadataId."""
        operation.validate()
        response = await self.request(
            "POST", "EntityDefinitions",
            json_body=operation.to_payload(),
            solution_unique_name=operation.solution_unique_name,
        )
        return self._entity_id(response)

    async def attribute_exists(self, entity_logical_name: str, attribute_logical_name: str) -> bool:
        try:
            await self._get_json(
                f"EntityDefinitions(LogicalName='{odata_quote(entity_logical_name)}')"
                f"/Attributes(LogicalName='{odata_quote(attribute_logical_name.lower())}')",
                {"$select": "LogicalName"},
            )
        except MetadataAPIError as e:
            if e.is_not_found:
                return False
            raise
        return True

    async def create_attribute(self, operation: CreateAttributeOperation, solution_unique_name: str) -> None:
        operation.validate()
        await self.request(
            "POST",
            f"EntityDefinitions(LogicalName='{odata_quote(operation.entity_logical_name)}')/Attributes",
            json_body=operation.to_payload(),
            solution_unique_name=solution_unique_name,
        )

    # =========================================================================
    # Relationships
    # =========================================================================

    async def relationship_exists(self, schema_name: str) -> bool:
        values = await self._get_values("RelationshipDefinitions", {
            "$filter": f"SchemaName eq '{odata_quote(schema_name)}'",
            "$select": "SchemaName",
        })
        return bool(values)

    async def create_relationship(self, operation: CreateRelationshipOperation, solution_unique_name: str) -> None:
        operation.validate()
        await self.request(
            "POST", "RelationshipDefinitions",
            json_body=operation.to_payload(),
            solution_unique_name=solution_unique_name,
        )

    # =========================================================================
    # Global Choice Sets
    # =========================================================================

    async def list_global_choice_sets(self) -> List[Dict[str, Any]]:
        return await self._get_values(
            "GlobalOptionSetDefinitions", {"$select": "MetadataId,Name,IsManaged"}
        )

    async def find_global_choice_set(self, name: str) -> Optional[Dict[str, Any]]:
        """Find a global choice set by name, case-insensitively."""
        lowered = name.lower()
        for choice_set in await self.list_global_choice_sets():
            if (choice_set.get("Name") or "").lower() == lowered:
                return choice_set
        return None

    async def create_global_choice_set(self, operation: EnsureChoiceSetOperation) -> Optional[str]:
        operation.validate()
        response = await self.request(
            "POST", "GlobalOptionSetDefinitions",
            json_body=operation.to_payload(),
            solution_unique_name=operation.solution_unique_name,
        )
        return self._entity_id(response)

    async def attach_global_choice_set(self, operation: AttachChoiceSetOperation, metadata_id: str) -> None:
        operation.validate()
        await self.add_solution_component(
            metadata_id,
            DataverseLimits.COMPONENT_TYPE_OPTION_SET,
            operation.solution_unique_name,
        )

    # =========================================================================
    # Deletes
    # =========================================================================

    async def delete_relationship(self, schema_name: str) -> None:
        await self.request("DELETE", f"RelationshipDefinitions(SchemaName='{odata_quote(schema_name)}')")

    async def delete_entity(self, logical_name: str) -> None:
        await self.request("DELETE", f"EntityDefinitions(LogicalName='{odata_quote(logical_name)}')")

    async def delete_global_choice_set(self, name: str) -> None:
        await self.request("DELETE", f"GlobalOptionSetDefinitions(Name='{odata_quote(name)}')")

    async def delete_solution(self, solution_id: str) -> None:
        await self.request("DELETE", f"solutions({solution_id})")

    async def delete_publisher(self, publisher_id: str) -> None:
        await self.request("DELETE", f"publishers({publisher_id})")
