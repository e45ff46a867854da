"""
CLI helper utilities.

This module provides shared utilities for CLI commands including:
- Configuration loading
- Logging setup
- JSON input/output
- Console formatting
"""

import json
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from ..constants import LoggingConfig

# Type alias for log levels
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

_MANAGED_HANDLERS: List[logging.Handler] = []


def get_default_config_path() -> str:
    """Default configuration path: ``config.json`` in the working directory."""
    return str(Path.cwd() / "config.json")


def setup_logging(
    level: LogLevel = LoggingConfig.DEFAULT_LOG_LEVEL,
    config: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """
    Configure root logging from the ``logging`` section of config.json.

    Records always go to stderr. When ``file`` is set they are also written
    to a rotating log file sized by ``rotation.max_mb`` and
    ``rotation.backup_count``. Handlers added by an earlier call are
    replaced, so commands may call this more than once.

    Args:
        level: Log level used when the config does not set one.
        config: Optional ``logging`` section of config.json.

    Returns:
        The log file path, or None when logging to the console only.
    """
    config = config or {}
    log_level = getattr(logging, str(config.get('level', level)).upper(), logging.INFO)
    formatter = logging.Formatter(fmt=LoggingConfig.LOG_FORMAT, datefmt=LoggingConfig.DATE_FORMAT)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    log_file = config.get('file') or None
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        rotation = config.get('rotation') or {}
        handlers.append(RotatingFileHandler(
            log_file,
            maxBytes=int(rotation.get('max_mb', LoggingConfig.MAX_LOG_FILE_MB)) * 1024 * 1024,
            backupCount=int(rotation.get('backup_count', LoggingConfig.LOG_BACKUP_COUNT)),
            encoding='utf-8',
        ))

    root_logger = logging.getLogger()
    for handler in _MANAGED_HANDLERS:
        root_logger.removeHandler(handler)
        handler.close()
    _MANAGED_HANDLERS.clear()

    root_logger.setLevel(log_level)
    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)
        _MANAGED_HANDLERS.append(handler)
    return log_file


def load_json_file(path: str, description: str = "JSON file") -> Any:
    """
    Read a JSON file with precise error messages.

    Raises:
        ValueError: If the path is empty or the JSON is invalid.
        FileNotFoundError: If the file does not exist.
        PermissionError: If the file cannot be read.
    """
    if not path:
        raise ValueError(f"{description} path cannot be empty")
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except FileNotFoundError:
        raise FileNotFoundError(f"{description} not found: {path}")
    except json.JSONDecodeError as e:
        raise ValueError(
            f"Invalid JSON in {description} {path} at line {e.lineno}, column {e.colno}: {e.msg}"
        )
    except UnicodeDecodeError as e:
        raise ValueError(f"File encoding error in {path}: {e}")
    except PermissionError:
        raise PermissionError(f"Permission denied reading {path}")


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load config.json (``dataverse`` and ``logging`` sections).

    A client secret stored in the file is reported on stdout.

    Raises:
        ValueError: If the path is empty or the file is not a JSON object.
        FileNotFoundError: If the file does not exist.
        PermissionError: If the file cannot be read.
    """
    try:
        config = load_json_file(config_path, "Configuration file")
    except FileNotFoundError:
        raise FileNotFoundError(
            f"Configuration file not found: {config_path}\n"
            f"Copy config.sample.json to config.json or pass --config"
        )

    if not isinstance(config, dict):
        raise ValueError(f"Configuration file must contain a JSON object, got {type(config)}")

    if (config.get('dataverse') or {}).get('client_secret'):
        print(
            f"\nWARNING: {config_path} contains a Dataverse client_secret.\n"
            "   Prefer CLIENT_SECRET, use_interactive_auth or managed_identity_client_id.\n"
        )

    return config


def write_json_file(path: str, data: Any) -> None:
    """Write ``data`` as indented UTF-8 JSON, creating parent directories."""
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def read_text_file(path: str) -> str:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return f.read()
    except FileNotFoundError:
        raise FileNotFoundError(f"Diagram file not found: {path}")
    except UnicodeDecodeError as e:
        raise ValueError(f"File encoding error in {path}: {e}")


def print_header(title: str, width: int = 60) -> None:
    """Print a formatted header with the given title."""
    print("\n" + "=" * width)
    print(title)
    print("=" * width)


def print_footer(width: int = 60) -> None:
    print("=" * width + "\n")


def confirm_action(prompt: str, default: bool = False) -> bool:
    """
    Prompt the user for confirmation.

    Args:
        prompt: The prompt message to display.
        default: Default value if user just presses Enter.

    Returns:
        True if user confirmed, False otherwise.
    """
    suffix = "[Y/n]" if default else "[y/N]"
    response = input(f"{prompt} {suffix}: ").strip().lower()
    if not response:
        return default
    return response in ('y', 'yes')
