"""
Base command class.

All CLI commands inherit from ``BaseCommand``; configuration loading,
logging setup and client construction live here so commands stay small
and tests can inject a fake client factory.
"""

import argparse
import dataclasses
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

from ...core.platform.metadata_client import DataverseConfig, MetadataClient
from ...shared.models.deployment import DeploymentRequest
from ..helpers import get_default_config_path, load_config, load_json_file, setup_logging

logger = logging.getLogger(__name__)

ClientFactory = Callable[[DataverseConfig], Any]


class BaseCommand(ABC):
    """
    Base class for CLI commands.

    Provides common functionality like configuration loading and logging setup.
    Subclasses should implement the execute() method.
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        """
        Initialize the command.

        Args:
            config_path: Path to configuration file.
            client_factory: Builds the metadata client from a ``DataverseConfig``
                (for dependency injection; defaults to ``MetadataClient``).
        """
        self.config_path = config_path or get_default_config_path()
        self._client_factory = client_factory
        self._config: Optional[Dict[str, Any]] = None

    @property
    def config(self) -> Dict[str, Any]:
        """Lazy-load configuration."""
        if self._config is None:
            self._config = load_config(self.config_path)
        return self._config

    def setup_logging_from_config(self, level: Optional[str] = None, allow_missing: bool = True) -> None:
        """Setup logging configuration, falling back gracefully if config is absent."""
        log_config: Dict[str, Any] = {}
        if self._config is not None:
            log_config = self._config.get('logging', {})
        elif os.path.exists(self.config_path) or not allow_missing:
            try:
                log_config = self.config.get('logging', {})
            except (ValueError, PermissionError) as exc:
                if not allow_missing:
                    raise
                print(f"Warning: Could not load logging configuration: {exc}")
        if level:
            log_config = dict(log_config, level=level)
        setup_logging(config=log_config)

    def load_dataverse_config(self) -> DataverseConfig:
        """Read the ``dataverse`` section, or environment variables when there is no config file."""
        if os.path.exists(self.config_path):
            return DataverseConfig.from_dict(self.config)
        logger.info(f"No configuration file at {self.config_path}; using environment variables")
        return DataverseConfig.from_env()

    def create_client(self, dataverse_config: Optional[DataverseConfig] = None) -> Any:
        dataverse_config = dataverse_config or self.load_dataverse_config()
        if self._client_factory is not None:
            return self._client_factory(dataverse_config)
        return MetadataClient(dataverse_config)

    @staticmethod
    def load_request(path: str, include_cdm: bool = False) -> DeploymentRequest:
        """Load a deployment request; ``--cdm`` forces canonical integration on."""
        data = load_json_file(path, "Deployment request")
        if not isinstance(data, dict):
            raise ValueError(f"Deployment request must contain a JSON object, got {type(data)}")
        request = DeploymentRequest.from_dict(data)
        if include_cdm and not request.include_cdm_entities:
            request = dataclasses.replace(request, include_cdm_entities=True)
        return request

    @abstractmethod
    def execute(self, args: argparse.Namespace) -> int:
        """
        Execute the command.

        Args:
            args: Parsed command-line arguments.

        Returns:
            Exit code (0 for success, non-zero for error).
        """
