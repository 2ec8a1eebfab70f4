"""
data_io/parsing.py

JSON/YAML documents (scene descriptions, configuration overrides).
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Union

import yaml

DOCUMENT_SUFFIXES = (".json", ".yaml", ".yml")


def load_data(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load a JSON or YAML document whose top level is an object.

    Raises:
        FileNotFoundError: the file does not exist
        ValueError: unsupported suffix, syntax error or non-object top level
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"File not found: {path}")

    suf = path.suffix.lower()
    if suf not in DOCUMENT_SUFFIXES:
        raise ValueError(f"Unsupported document type {suf!r}; use one of {', '.join(DOCUMENT_SUFFIXES)}")

    text = path.read_text(encoding="utf-8")
    try:
        obj = json.loads(text) if suf == ".json" else yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML: {e}") from e

    if not isinstance(obj, dict):
        raise ValueError(f"Top level of {path.name} must be an object, got {type(obj).__name__}")
    return obj
