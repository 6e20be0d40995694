"""Shared helpers for the formlink package.

This module provides common utility functions for:
- YAML/JSON file loading
- Shape checks for parsed configuration
- Value comparisons used by the write-back guard
"""
from __future__ import annotations

import math
from pathlib import Path
from typing import Any, Mapping

import yaml


def load_yaml(path: Path | str) -> dict:
    """Load and parse a YAML file into a dictionary.

    JSON documents are valid YAML, so schema and value files may use either.

    Args:
        path: Path to YAML or JSON file.

    Returns:
        Dictionary containing parsed content.
        Returns empty dict if file is empty or contains only null.

    Raises:
        FileNotFoundError: If path doesn't exist.
        ValueError: If the top level is not a mapping.
        yaml.YAMLError: If parsing fails.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"file not found at {path}")
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping at the top level")
    return data


def safe_float(value: object) -> float | None:
    """Convert value to float, returning None if conversion fails or non-finite."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
        return result if math.isfinite(result) else None
    except (TypeError, ValueError):
        return None


def values_equal(a: object, b: object, *, rel_tol: float = 1e-12) -> bool:
    """Check whether two form values are the same for write-back purposes.

    Numbers compare within a tight relative tolerance so that a recomputed
    float does not count as a change. Everything else uses ``==``.

    Example:
        >>> values_equal(0.1 + 0.2, 0.3)
        True
        >>> values_equal([1, 2], [1, 2])
        True
        >>> values_equal(1, True)
        False
    """
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        if isinstance(a, float) and math.isnan(a) and isinstance(b, float) and math.isnan(b):
            return True
        return math.isclose(a, b, rel_tol=rel_tol, abs_tol=0.0)
    try:
        return bool(a == b)
    except Exception:
        return False


def ensure_list(value: object | None, *, name: str, item_desc: str) -> list:
    """Ensure a value is a list (or empty), raising a descriptive error otherwise."""
    if value is None:
        return []
    if isinstance(value, tuple):
        return list(value)
    if not isinstance(value, list):
        raise TypeError(f"{name} must be a list of {item_desc}")
    return value


def ensure_mapping(value: object | None, *, name: str) -> dict[str, Any]:
    """Ensure a value is a mapping (or empty), raising a descriptive error otherwise."""
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"{name} must be a mapping; got {type(value).__name__}")
    return dict(value)
