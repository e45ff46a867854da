"""
CLI command implementations.

- base.py: Base command class
- diagram.py: Offline commands (validate, plan)
- deployment.py: Environment commands (deploy, rollback, test-connection)
"""

from .base import BaseCommand
from .diagram import PlanCommand, ValidateCommand, print_plan, print_validation_report
from .deployment import (
    DeployCommand,
    RollbackCommand,
    TestConnectionCommand,
    print_deployment_result,
)

__all__ = [
    'BaseCommand',
    'ValidateCommand',
    'PlanCommand',
    'DeployCommand',
    'RollbackCommand',
    'TestConnectionCommand',
    'print_plan',
    'print_validation_report',
    'print_deployment_result',
]
