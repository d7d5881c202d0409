import json
import os
from pathlib import Path
from typing import Any, Dict, Union

import yaml


def ensure_dir(dir_path: Union[str, Path]) -> Path:
    """
    Create a directory (and parents) if it does not exist.

    Args:
    dir_path (str | Path): The directory path.

    Returns:
    Path: The directory path.
    """
    path = Path(os.path.expanduser(str(dir_path)))
    path.mkdir(parents=True, exist_ok=True)
    return path


def from_json_or_yaml(filepath: Union[str, Path]) -> Dict[str, Any]:
    """
    Load configuration from a JSON or YAML file based on the file extension.

    Args:
    filepath (str | Path): The path to the configuration file.

    Returns:
    dict: The configuration dictionary.

    Raises:
    FileNotFoundError: If the file does not exist.
    ValueError: If the file extension is unsupported.
    """
    path = Path(filepath)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    if suffix == ".json":
        return json.loads(text) or {}
    if suffix in {".yaml", ".yml"}:
        return yaml.safe_load(text) or {}
    raise ValueError(f"Unsupported configuration file format: {suffix}")
