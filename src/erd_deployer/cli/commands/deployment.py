"""
Commands that talk to the environment.

- DeployCommand: Plan and execute a deployment with a progress bar
- RollbackCommand: Delete what a saved deployment result created
- TestConnectionCommand: Check credentials and environment access
"""

import argparse
import asyncio
import logging
from typing import Optional

from tqdm import tqdm

from ...constants import ExitCode
from ...core.services.executor import DeploymentExecutor
from ...core.services.pipeline import DeploymentPipeline, DiagramInvalidError, PreparedDeployment
from ...formats.erd.erd_models import ParseError
from ...shared.models.deployment import (
    DeploymentResult,
    ProgressEvent,
    RollbackOptions,
    RollbackResult,
)
from ...shared.models.operations import PlanError
from ..helpers import (
    confirm_action,
    load_json_file,
    print_footer,
    print_header,
    read_text_file,
    write_json_file,
)
from .base import BaseCommand
from .diagram import print_plan, print_validation_report

logger = logging.getLogger(__name__)


def print_deployment_result(result: DeploymentResult) -> None:
    status = "SUCCEEDED" if result.success else f"ABORTED in {result.aborted_phase}"
    print_header(f"Deployment {status}")
    print(f"  {result.summary}")
    print(f"  Columns created:  {result.attributes_created}")
    print(f"  Already existed:  {result.already_exists} tables")
    if result.errors:
        print(f"\nErrors ({len(result.errors)}):")
        for error in result.errors:
            print(f"  - {error}")
    if result.warnings:
        print(f"\nWarnings ({len(result.warnings)}):")
        for warning in result.warnings:
            print(f"  - {warning}")
    print_footer()


class DeployCommand(BaseCommand):
    """Deploy a diagram."""

    def execute(self, args: argparse.Namespace) -> int:
        self.setup_logging_from_config(level=getattr(args, 'log_level', None))

        text = read_text_file(args.diagram)
        request = self.load_request(args.request, include_cdm=args.cdm)
        try:
            prepared = DeploymentPipeline().prepare(text, request)
        except DiagramInvalidError as e:
            print_validation_report(e.parse_result)
            return ExitCode.VALIDATION_ERROR
        except (ParseError, PlanError) as e:
            print(f"Error: {e}")
            return ExitCode.VALIDATION_ERROR

        if args.dry_run:
            print_plan(prepared)
            print("Dry run: nothing was deployed.")
            return ExitCode.SUCCESS

        result = asyncio.run(self._deploy(prepared))
        print_deployment_result(result)

        if args.result:
            write_json_file(args.result, result.to_dict())
            print(f"Result written to {args.result}")

        return ExitCode.SUCCESS if result.success else ExitCode.API_ERROR

    async def _deploy(self, prepared: PreparedDeployment) -> DeploymentResult:
        dataverse_config = self.load_dataverse_config()
        client = self.create_client(dataverse_config)
        pbar: Optional[tqdm] = None
        try:
            executor = DeploymentExecutor(client, max_concurrency=dataverse_config.max_concurrency)
            pbar = tqdm(total=len(prepared.plan), desc="Deploying", unit=" op", dynamic_ncols=True)

            def on_progress(event: ProgressEvent) -> None:
                if "key" in event.detail:
                    pbar.update(1)
                else:
                    pbar.set_description(event.step)

            return await executor.execute(prepared.plan, progress=on_progress)
        finally:
            if pbar is not None:
                pbar.close()
            await client.aclose()


class RollbackCommand(BaseCommand):
    """Undo a deployment using its saved result."""

    def execute(self, args: argparse.Namespace) -> int:
        self.setup_logging_from_config(level=getattr(args, 'log_level', None))

        data = load_json_file(args.result_file, "Deployment result")
        if not isinstance(data, dict):
            raise ValueError(f"Deployment result must contain a JSON object, got {type(data)}")
        result = DeploymentResult.from_dict(data)
        artifacts = result.created_artifacts

        if artifacts.is_empty:
            print("Nothing to roll back: the deployment did not create any components.")
            return ExitCode.SUCCESS

        print_header("Rollback")
        print(f"  Relationships: {len(artifacts.relationships)}")
        print(f"  Tables:        {len(artifacts.entities)}")
        print(f"  Global choices: {len(artifacts.choice_sets)}")
        if artifacts.solution_created:
            print(f"  Solution:      {artifacts.solution_unique_name}" + (" (kept)" if args.keep_solution else ""))
        if artifacts.publisher_created:
            print(f"  Publisher:     {artifacts.publisher_id}" + (" (kept)" if args.keep_publisher else ""))
        print_footer()

        if not args.force and not confirm_action("Delete these components?"):
            print("Cancelled.")
            return ExitCode.CANCELLED

        options = RollbackOptions(
            delete_solution=not args.keep_solution,
            delete_publisher=not args.keep_publisher,
        )
        rollback_result = asyncio.run(self._rollback(result, options))

        print(f"Rollback: {rollback_result.summary}")
        for warning in rollback_result.warnings:
            print(f"  warning: {warning}")
        for error in rollback_result.errors:
            print(f"  error: {error}")
        return ExitCode.SUCCESS if rollback_result.success else ExitCode.API_ERROR

    async def _rollback(self, result: DeploymentResult, options: RollbackOptions) -> RollbackResult:
        client = self.create_client()
        try:
            return await DeploymentExecutor(client).rollback(result, options)
        finally:
            await client.aclose()


class TestConnectionCommand(BaseCommand):
    """Check that the configured environment is reachable."""

    __test__ = False

    def execute(self, args: argparse.Namespace) -> int:
        self.setup_logging_from_config(level=getattr(args, 'log_level', None))
        dataverse_config = self.load_dataverse_config()
        print(f"Testing connection to {dataverse_config.environment_url} ...")

        connected = asyncio.run(self._test(dataverse_config))
        if connected:
            print("Connection successful.")
            return ExitCode.SUCCESS
        print("Connection failed. See the log for details.")
        return ExitCode.API_ERROR

    async def _test(self, dataverse_config) -> bool:
        client = self.create_client(dataverse_config)
        try:
            return await client.test_connection()
        finally:
            await client.aclose()
