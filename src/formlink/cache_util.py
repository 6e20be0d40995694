"""Result cache for relationships whose outcome depends only on their inputs."""
from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any, Iterable, Mapping

from .linkage_class import LinkageResult
from .path_util import get_value, serialize_value, template_path_for_cache, to_template_path

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 1000


def generate_cache_key(field_path: str, dependencies: Iterable[str], values: Mapping[str, Any]) -> str:
    """Build ``template:dep=json|dep=json`` for a field and its dependency values.

    Dependencies are sorted so declaration order does not matter. Sibling array
    indices are dropped; indices of an enclosing parent element are kept.

    Example:
        >>> generate_cache_key("total", ["price", "quantity"], {"price": 1, "quantity": 2})
        'total:price=1|quantity=2'
        >>> generate_cache_key("contacts.0.companyName", ["contacts.0.type"],
        ...                    {"contacts": [{"type": "work"}]})
        'contacts.companyName:contacts.type="work"'
    """
    pairs = [
        f"{template_path_for_cache(dep, field_path)}={serialize_value(get_value(values, dep))}"
        for dep in sorted(dependencies)
    ]
    return f"{to_template_path(field_path)}:{'|'.join(pairs)}"


class LinkageResultCache:
    """Least-recently-used map from cache key to LinkageResult."""

    def __init__(self, max_size: int = DEFAULT_MAX_SIZE) -> None:
        if max_size < 1:
            raise ValueError("max_size must be a positive integer")
        self.max_size = max_size
        self._entries: OrderedDict[str, LinkageResult] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> LinkageResult | None:
        result = self._entries.get(key)
        if result is None:
            self.misses += 1
            return None
        self.hits += 1
        self._entries.move_to_end(key)
        return result

    def set(self, key: str, result: LinkageResult) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)
        self._entries[key] = result
        self._evict()

    def set_max_size(self, max_size: int) -> None:
        if max_size < 1:
            raise ValueError("max_size must be a positive integer")
        self.max_size = max_size
        self._evict()

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def stats(self) -> dict[str, float | int]:
        total = self.hits + self.misses
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / total if total else 0.0,
        }

    def _evict(self) -> None:
        while len(self._entries) > self.max_size:
            key, _ = self._entries.popitem(last=False)
            logger.debug("Evicted cache entry %s", key)
