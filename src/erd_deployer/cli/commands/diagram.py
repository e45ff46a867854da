"""
Offline diagram commands.

- ValidateCommand: Parse and validate a diagram, optionally showing the corrected text
- PlanCommand: Print the ordered deployment operations without deploying
"""

import argparse
import logging

from ...constants import ExitCode
from ...core.services.pipeline import DeploymentPipeline, DiagramInvalidError, PreparedDeployment
from ...formats.cdm.cdm_matcher import CDMMatcher
from ...formats.erd.erd_models import ParseError, ParseResult
from ...formats.erd.erd_parser import ERDParser
from ...shared.models.operations import PlanError
from ..helpers import print_footer, print_header, read_text_file, write_json_file
from .base import BaseCommand

logger = logging.getLogger(__name__)


def print_validation_report(result: ParseResult) -> None:
    """Print the validation summary and every diagnostic."""
    summary = result.validation
    print_header(f"Validation: {summary.status}")
    print(f"  Entities:      {summary.entity_count}")
    print(f"  Relationships: {summary.relationship_count}")
    print(f"  Errors:        {summary.error_count}")
    print(f"  Warnings:      {summary.warning_count}")
    print(f"  Info:          {summary.info_count}")
    if result.warnings:
        print()
    for warning in result.warnings:
        location = f" (line {warning.line_number})" if warning.line_number is not None else ""
        print(f"  [{warning.severity.value.upper()}] {warning.message}{location}")
        if warning.suggestion:
            print(f"      -> {warning.suggestion}")
    print_footer()


def print_plan(prepared: PreparedDeployment) -> None:
    plan = prepared.plan
    print_header(f"Deployment plan for solution '{plan.solution_unique_name}'")
    if prepared.matches:
        print("Standard table matches:")
        for match in prepared.matches:
            accepted = "accepted" if match.source_entity in plan.canonical_entities else "advisory"
            print(
                f"  {match.source_entity} -> {match.logical_name} "
                f"({match.confidence}, {match.score:.2f}, {accepted})"
            )
        print()
    for index, operation in enumerate(plan, start=1):
        print(f"  {index:3d}. {operation.describe()}")
    if plan.warnings:
        print("\nWarnings:")
        for warning in plan.warnings:
            print(f"  - {warning}")
    print(f"\n{len(plan)} operations")
    print_footer()


class ValidateCommand(BaseCommand):
    """Parse and validate a diagram."""

    def execute(self, args: argparse.Namespace) -> int:
        self.setup_logging_from_config(level=getattr(args, 'log_level', None))

        text = read_text_file(args.diagram)
        parser = ERDParser(matcher=CDMMatcher())
        try:
            result = parser.parse(text)
        except ParseError as e:
            print(f"Error: {e}")
            return ExitCode.VALIDATION_ERROR

        print_validation_report(result)

        if args.show_corrected and result.corrected_diagram:
            print_header("Corrected diagram")
            print(result.corrected_diagram)
            print_footer()

        if args.output:
            write_json_file(args.output, result.to_dict())
            print(f"Report written to {args.output}")

        return ExitCode.SUCCESS if result.is_valid else ExitCode.VALIDATION_ERROR


class PlanCommand(BaseCommand):
    """Build and print a deployment plan without touching the environment."""

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

        print_plan(prepared)

        if args.output:
            write_json_file(args.output, prepared.to_dict())
            print(f"Plan written to {args.output}")

        return ExitCode.SUCCESS
