"""
CLI argument parser configuration.

This module defines the argument parser structure for all CLI commands.
"""

import argparse


def create_argument_parser() -> argparse.ArgumentParser:
    """
    Create and configure the main argument parser.

    Returns:
        Configured ArgumentParser with all subcommands.
    """
    parser = argparse.ArgumentParser(
        prog="erd-deployer",
        description="Deploy Mermaid ER diagrams as Dataverse tables, columns and relationships",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    %(prog)s validate samples/sales.mmd --show-corrected
    %(prog)s plan samples/sales.mmd --request samples/request.json --cdm
    %(prog)s deploy samples/sales.mmd --request samples/request.json --result result.json
    %(prog)s deploy samples/sales.mmd --request samples/request.json --dry-run
    %(prog)s rollback result.json --keep-publisher
    %(prog)s test-connection
        """,
    )
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Override the configured log level'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    _add_validate_parser(subparsers)
    _add_plan_parser(subparsers)
    _add_deploy_parser(subparsers)
    _add_rollback_parser(subparsers)
    _add_test_connection_parser(subparsers)

    return parser


def _add_validate_parser(subparsers: argparse._SubParsersAction) -> None:
    """Add the validate command parser."""
    parser = subparsers.add_parser(
        'validate',
        help='Parse and validate a diagram'
    )
    parser.add_argument('diagram', help='Path to the diagram file')
    parser.add_argument('--output', '-o', help='Write the JSON validation report here')
    parser.add_argument(
        '--show-corrected',
        action='store_true',
        help='Print the auto-corrected diagram when one is available'
    )


def _add_plan_parser(subparsers: argparse._SubParsersAction) -> None:
    """Add the plan command parser."""
    parser = subparsers.add_parser(
        'plan',
        help='Show the ordered deployment operations without deploying'
    )
    parser.add_argument('diagram', help='Path to the diagram file')
    parser.add_argument('--request', '-r', required=True, help='Path to the deployment request JSON')
    parser.add_argument(
        '--cdm',
        action='store_true',
        help='Map entities that match standard tables onto them'
    )
    parser.add_argument('--output', '-o', help='Write the JSON plan here')


def _add_deploy_parser(subparsers: argparse._SubParsersAction) -> None:
    """Add the deploy command parser."""
    parser = subparsers.add_parser(
        'deploy',
        help='Deploy a diagram to the environment'
    )
    parser.add_argument('diagram', help='Path to the diagram file')
    parser.add_argument('--request', '-r', required=True, help='Path to the deployment request JSON')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument(
        '--cdm',
        action='store_true',
        help='Map entities that match standard tables onto them'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Plan and print the operations, but do not call the environment'
    )
    parser.add_argument('--result', help='Write the JSON deployment result here (needed for rollback)')


def _add_rollback_parser(subparsers: argparse._SubParsersAction) -> None:
    """Add the rollback command parser."""
    parser = subparsers.add_parser(
        'rollback',
        help='Delete what a previous deployment created'
    )
    parser.add_argument('result_file', help='Deployment result JSON written by deploy --result')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--keep-solution', action='store_true', help='Do not delete the solution')
    parser.add_argument('--keep-publisher', action='store_true', help='Do not delete the publisher')
    parser.add_argument(
        '--force', '-f',
        action='store_true',
        help='Skip confirmation prompt'
    )


def _add_test_connection_parser(subparsers: argparse._SubParsersAction) -> None:
    """Add the test-connection command parser."""
    parser = subparsers.add_parser(
        'test-connection',
        help='Check credentials and environment access'
    )
    parser.add_argument('--config', '-c', help='Path to configuration file')
