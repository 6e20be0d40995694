"""Instantiate relationship templates declared on repeating-group item schemas.

A template key such as ``contacts.companyName`` names a field of every element
of the ``contacts`` array. Expansion against the current values produces one
concrete relationship per live element, with every relative and item-level
reference rewritten for that element::

    contacts.companyName  ->  contacts.0.companyName, contacts.1.companyName
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from .linkage_class import LinkageConfig
from .path_util import ArrayContext, extract_array_context, is_index, join_path, split_path, to_template_path

logger = logging.getLogger(__name__)


class ArrayLinkageExpander:
    """Expand template linkages into concrete per-element linkages.

    Args:
        array_paths: Template paths known to be arrays (from the schema). A
            known array that is missing from the values expands to nothing;
            without this hint only lists present in the values are expanded.
    """

    def __init__(self, array_paths: Iterable[str] | None = None) -> None:
        self.array_paths = frozenset(array_paths or ())

    def expand(self, linkages: Mapping[str, LinkageConfig], values: Mapping[str, Any]) -> dict[str, LinkageConfig]:
        """Expand every declared linkage, keeping declaration order."""
        expanded: dict[str, LinkageConfig] = {}
        for path, config in linkages.items():
            expanded.update(self.expand_one(path, config, values))
        logger.debug("Expanded %s declared linkages into %s", len(linkages), len(expanded))
        return expanded

    def expand_one(self, path: str, config: LinkageConfig, values: Mapping[str, Any]) -> dict[str, LinkageConfig]:
        """Concrete instances of one declared linkage, keyed by concrete path.

        Example:
            >>> cfg = LinkageConfig.from_dict({"type": "visibility", "dependencies": ["./type"]})
            >>> sorted(ArrayLinkageExpander().expand_one(
            ...     "contacts.companyName", cfg, {"contacts": [{}, {}]}))
            ['contacts.0.companyName', 'contacts.1.companyName']
        """
        return {concrete: config.resolve_paths(concrete) for concrete in self._concrete_paths(path, values)}

    @staticmethod
    def array_context(path: str) -> ArrayContext | None:
        return extract_array_context(path)

    def _concrete_paths(self, path: str, values: Mapping[str, Any]) -> list[str]:
        parts = split_path(path)
        found: list[str] = []

        def walk(pos: int, node: Any, prefix: list[str]) -> None:
            if pos == len(parts):
                found.append(join_path(prefix))
                return
            segment = parts[pos]
            if isinstance(node, list) and not is_index(segment):
                for idx, item in enumerate(node):
                    walk(pos, item, prefix + [str(idx)])
                return
            if prefix and not is_index(segment) and to_template_path(join_path(prefix)) in self.array_paths:
                # Known array absent or not a list.
                return
            if isinstance(node, list):
                pos_idx = int(segment)
                child = node[pos_idx] if pos_idx < len(node) else None
            elif isinstance(node, Mapping):
                child = node.get(segment)
            else:
                child = None
            walk(pos + 1, child, prefix + [segment])

        walk(0, values, [])
        return found
