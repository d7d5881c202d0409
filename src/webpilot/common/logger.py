# logger.py
import logging
import logging.config
from typing import Any, Dict, Optional

from webpilot.util.file_utils import from_json_or_yaml


def default_logging_config(log_file_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Built-in logging config: console on stderr (stdout carries protocol frames)
    plus a rotating file handler when a log file path is known.
    """
    config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
            },
        },
        "handlers": {
            "console_handler": {
                "class": "logging.StreamHandler",
                "level": "INFO",
                "formatter": "standard",
                "stream": "ext://sys.stderr",
            },
        },
        "root": {
            "level": "INFO",
            "handlers": ["console_handler"],
        },
        "loggers": {
            "uvicorn.access": {"level": "WARNING"},
        },
    }
    if log_file_path:
        config["handlers"]["file_handler"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "DEBUG",
            "formatter": "standard",
            "filename": str(log_file_path),
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 3,
            "encoding": "utf-8",
        }
        config["root"]["handlers"].append("file_handler")
    return config


def setup_logging(
    config_file_path=None,
    log_file_path=None,
    verbose=False,
):
    """
    Loads logging config from 'config_file_path' (YAML or JSON) and sets up logging.
    Falls back to the built-in config when no file is given.
    Optionally override file handler's filename, and set root logger to DEBUG if 'verbose'.
    """
    if config_file_path:
        config = from_json_or_yaml(config_file_path)
        if log_file_path and "file_handler" in config.get("handlers", {}):
            config["handlers"]["file_handler"]["filename"] = str(log_file_path)
    else:
        config = default_logging_config(log_file_path)

    logging.config.dictConfig(config)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        for handler in logging.getLogger().handlers:
            handler.setLevel(logging.DEBUG)

    return logging.getLogger(__name__)
