"""Helpers shared by the ``webpilot-*`` console commands."""

import logging
import os
from pathlib import Path
from typing import Any, Optional

from webpilot.common.logger import setup_logging

ENV_SUFFIX = "_env_var"


def get_log_dir() -> Path:
    """``$WEBPILOT_HOME/logs`` (``~/.webpilot/logs`` by default), created on demand."""
    root = os.getenv("WEBPILOT_HOME")
    log_dir = (Path(root) if root else Path.home() / ".webpilot") / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def setup_command_logger(
    log_filename: str,
    *,
    config_file_path: Optional[Path] = None,
    verbose: bool = False,
) -> logging.Logger:
    setup_logging(
        config_file_path=config_file_path,
        log_file_path=get_log_dir() / log_filename,
        verbose=verbose,
    )
    return logging.getLogger("webpilot.command")


def resolve_env_vars(data: Any) -> Any:
    """Fill ``<name>`` from the variable named by ``<name>_env_var``.

    Walks nested dicts and lists in place. A value already present under
    ``<name>`` wins, and unset or empty variables leave it absent.
    """
    if isinstance(data, list):
        for item in data:
            resolve_env_vars(item)
    elif isinstance(data, dict):
        for key, value in list(data.items()):
            if isinstance(value, (dict, list)):
                resolve_env_vars(value)
            elif isinstance(value, str) and key.endswith(ENV_SUFFIX):
                target = key[: -len(ENV_SUFFIX)]
                if not data.get(target):
                    env_value = os.getenv(value)
                    if env_value:
                        data[target] = env_value
    return data
