"""Schema parsing and file loading for linkage declarations."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping

from .linkage_class import LinkageConfig
from .utils import ensure_mapping, load_yaml

logger = logging.getLogger(__name__)


def _iter_properties(schema: Mapping[str, Any], parent: str):
    """Yield ``(path, property_schema)`` for every mapping property, depth-first.

    Array ``items`` are entered without an index, so their paths are templates.
    """
    properties = schema.get("properties")
    if not isinstance(properties, Mapping):
        return
    for name, prop in properties.items():
        if not isinstance(prop, Mapping):
            continue
        path = f"{parent}.{name}" if parent else str(name)
        yield path, prop
        if prop.get("type") == "object":
            yield from _iter_properties(prop, path)
        items = prop.get("items")
        if prop.get("type") == "array" and isinstance(items, Mapping):
            yield from _iter_properties(items, path)


def parse_schema_linkages(schema: Mapping[str, Any]) -> dict[str, LinkageConfig]:
    """Collect ``ui.linkage`` declarations from a JSON-Schema-like mapping.

    Example:
        >>> schema = {"type": "object", "properties": {
        ...     "contacts": {"type": "array", "items": {"type": "object", "properties": {
        ...         "type": {"type": "string"},
        ...         "companyName": {"type": "string", "ui": {"linkage": {
        ...             "type": "visibility", "dependencies": ["./type"]}}}}}}}}
        >>> list(parse_schema_linkages(schema))
        ['contacts.companyName']
    """
    linkages: dict[str, LinkageConfig] = {}
    for path, prop in _iter_properties(schema, ""):
        ui = prop.get("ui")
        if not isinstance(ui, Mapping) or ui.get("linkage") is None:
            continue
        linkages[path] = LinkageConfig.from_dict(ui["linkage"])
    logger.debug("Parsed %s linkages from schema", len(linkages))
    return linkages


def collect_array_paths(schema: Mapping[str, Any]) -> list[str]:
    """Template paths of every array property in the schema."""
    return [path for path, prop in _iter_properties(schema, "") if prop.get("type") == "array"]


def transform_to_absolute_paths(
    linkages: Mapping[str, LinkageConfig | Mapping[str, Any]],
    prefix: str,
) -> dict[str, LinkageConfig]:
    """Mount sub-form linkages under ``prefix``.

    Keys gain the prefix; sibling references are resolved against the new
    absolute key.

    Example:
        >>> out = transform_to_absolute_paths(
        ...     {"companyName": {"type": "visibility", "dependencies": ["./type"]}}, "contacts.0")
        >>> out["contacts.0.companyName"].dependencies
        ('contacts.0.type',)
    """
    parsed = {path: LinkageConfig.from_dict(cfg) for path, cfg in linkages.items()}
    if not prefix:
        return parsed
    result: dict[str, LinkageConfig] = {}
    for path, config in parsed.items():
        absolute = f"{prefix}.{path}" if path else prefix
        result[absolute] = config.resolve_paths(absolute)
    return result


def load_schema(path: Path | str) -> dict[str, Any]:
    """Load a YAML or JSON schema file (top level must be a mapping)."""
    return load_yaml(path)


def load_values(path: Path | str) -> dict[str, Any]:
    """Load a YAML or JSON form-values file (top level must be a mapping)."""
    return load_yaml(path)


def load_linkages(path: Path | str) -> dict[str, LinkageConfig]:
    """Load linkages from a schema file or from a file with a top-level ``linkages`` mapping."""
    data = load_yaml(path)
    if "linkages" in data and "properties" not in data:
        raw = ensure_mapping(data.get("linkages"), name=f"'linkages' in {path}")
        return {str(key): LinkageConfig.from_dict(cfg) for key, cfg in raw.items()}
    return parse_schema_linkages(data)
