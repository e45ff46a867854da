"""
ERD Deployer entry point.

Usage:
    erd-deployer validate <diagram> [--output report.json] [--show-corrected]
    erd-deployer plan <diagram> --request <request.json> [--cdm] [--output plan.json]
    erd-deployer deploy <diagram> --request <request.json> [--config config.json] [--dry-run]
    erd-deployer rollback <result.json> [--config config.json] [--force]
    erd-deployer test-connection [--config config.json]
"""

import logging
import sys
from typing import Dict, List, Optional, Type

from .cli.commands import (
    BaseCommand,
    DeployCommand,
    PlanCommand,
    RollbackCommand,
    TestConnectionCommand,
    ValidateCommand,
)
from .cli.parsers import create_argument_parser
from .constants import ExitCode
from .core.platform.auth import AuthenticationError
from .core.platform.metadata_client import ConfigurationError, MetadataAPIError

logger = logging.getLogger(__name__)

COMMANDS: Dict[str, Type[BaseCommand]] = {
    'validate': ValidateCommand,
    'plan': PlanCommand,
    'deploy': DeployCommand,
    'rollback': RollbackCommand,
    'test-connection': TestConnectionCommand,
}


def run(argv: Optional[List[str]] = None) -> int:
    """Parse arguments, run the command and map failures onto exit codes."""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return ExitCode.ERROR

    command = COMMANDS[args.command](config_path=getattr(args, 'config', None))
    try:
        return int(command.execute(args))
    except KeyboardInterrupt:
        print("\nCancelled.")
        return ExitCode.CANCELLED
    except FileNotFoundError as e:
        print(f"Error: {e}")
        return ExitCode.FILE_NOT_FOUND
    except PermissionError as e:
        print(f"Error: {e}")
        return ExitCode.PERMISSION_DENIED
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        return ExitCode.CONFIG_ERROR
    except AuthenticationError as e:
        logger.error(f"Authentication failed: {e}")
        print(f"Authentication error: {e.message}")
        return ExitCode.AUTHENTICATION_ERROR
    except MetadataAPIError as e:
        logger.error(f"Web API error: {e}")
        print(f"Error: {e.message}")
        return ExitCode.API_ERROR
    except ValueError as e:
        print(f"Error: {e}")
        return ExitCode.ERROR


def main() -> None:
    """Main entry point."""
    sys.exit(run())


if __name__ == '__main__':
    main()
