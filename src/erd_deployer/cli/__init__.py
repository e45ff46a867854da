"""
Command-line interface for the ERD deployer.

Usage:
    erd-deployer validate diagram.mmd
    erd-deployer deploy diagram.mmd --request request.json
"""

from .parsers import create_argument_parser
from .helpers import setup_logging, load_config

__all__ = ['create_argument_parser', 'setup_logging', 'load_config']
