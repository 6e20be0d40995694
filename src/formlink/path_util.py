"""
Field path utilities: normalization, relative references, array context.

Field paths are dotted strings addressing a value in the form's data tree.
Array elements are addressed by a numeric segment::

    contacts.0.email
    departments.1.employees.0.name

Three reference notations reach the engine:
- absolute dotted paths (``user.address.city``), used at runtime;
- sibling references (``./city``), resolved against the emitting field;
- JSON pointers written by schema authors
  (``#/properties/contacts/items/properties/type``).

Example:
    >>> resolve_relative("./city", "user.address.street")
    'user.address.city'
    >>> to_field_path("#/properties/contacts/items/properties/type")
    'contacts.type'
    >>> ancestor_paths("contacts.0.email")
    ['contacts', 'contacts.0']
"""
from __future__ import annotations

import json
import re
from typing import Any, NamedTuple, Sequence

from .errors import MalformedPathError

SEPARATOR = "."
RELATIVE_PREFIX = "./"
POINTER_PREFIX = "#/"
_POINTER_MARKERS = ("properties", "items")
_INDEX_RE = re.compile(r"^\d+$")
_MISSING = object()


class ArrayContext(NamedTuple):
    """Array identity of a field path: the array holding it and the element index."""

    array_path: str
    array_index: int


class ArrayLevel(NamedTuple):
    """One array level inside a field path.

    ``array_path`` keeps the indices of enclosing arrays (``departments.0.employees``),
    ``template_path`` drops them (``departments.employees``).
    """

    array_path: str
    template_path: str
    index: int
    position: int


def is_index(segment: str) -> bool:
    """Return True when a path segment addresses an array element."""
    return bool(_INDEX_RE.match(segment))


def split_path(path: str) -> list[str]:
    """Split a dotted path into segments (empty path -> no segments)."""
    if not path:
        return []
    return path.split(SEPARATOR)


def join_path(parts: Sequence[str]) -> str:
    """Join path segments with the standard separator."""
    return SEPARATOR.join(str(part) for part in parts)


def paths_equal(a: str, b: str) -> bool:
    """Structural equality: same segment sequence."""
    return split_path(a) == split_path(b)


def rebuild_path(original: str, parts: Sequence[str], up_to_index: int) -> str:
    """Rebuild the prefix of ``original`` that ends at segment ``up_to_index``.

    ``parts`` must be ``split_path(original)``; the full path is returned as-is
    when the prefix covers every segment.
    """
    if up_to_index >= len(parts) - 1:
        return original
    if up_to_index < 0:
        return ""
    return join_path(parts[: up_to_index + 1])


def ancestor_paths(path: str) -> list[str]:
    """Return every strict-prefix ancestor of ``path``, shortest first."""
    parts = split_path(path)
    return [rebuild_path(path, parts, idx) for idx in range(len(parts) - 1)]


def is_relative(ref: str) -> bool:
    """Return True for references written relative to the current field."""
    return isinstance(ref, str) and ref.startswith(".")


def is_json_pointer(ref: str) -> bool:
    return isinstance(ref, str) and ref.startswith(POINTER_PREFIX)


def resolve_relative(ref: str, context_path: str) -> str:
    """Resolve a sibling reference against the path of the field that declares it.

    Only ``./segment`` is supported; the last segment of ``context_path`` is
    replaced by ``segment``. Bare names, ``../`` ancestor traversal and repeated
    ``./`` prefixes raise MalformedPathError.

    Example:
        >>> resolve_relative("./type", "contacts.0.companyName")
        'contacts.0.type'
        >>> resolve_relative("./age", "user")
        'age'
    """
    if not isinstance(ref, str) or not ref.startswith(RELATIVE_PREFIX):
        raise MalformedPathError(str(ref))
    segment = ref[len(RELATIVE_PREFIX):]
    if not segment or segment.startswith(".") or "/" in segment or SEPARATOR in segment:
        raise MalformedPathError(ref)
    parent, _, _ = context_path.rpartition(SEPARATOR)
    return f"{parent}{SEPARATOR}{segment}" if parent else segment


def parse_json_pointer(pointer: str) -> str:
    """Convert a schema JSON pointer to its logical dotted path.

    ``properties``/``items`` markers are dropped, ``~1``/``~0`` escapes decoded.
    """
    if not is_json_pointer(pointer):
        raise MalformedPathError(pointer, f"Invalid JSON pointer: {pointer!r}")
    segments = []
    for raw in pointer[len(POINTER_PREFIX):].split("/"):
        if not raw or raw in _POINTER_MARKERS:
            continue
        segments.append(raw.replace("~1", "/").replace("~0", "~"))
    return join_path(segments)


def to_field_path(ref: str) -> str:
    """Normalize an absolute reference to the runtime dotted form.

    JSON pointers are converted; dotted paths (and relative refs, which need a
    context to resolve) pass through unchanged.
    """
    if is_json_pointer(ref):
        return parse_json_pointer(ref)
    if isinstance(ref, str) and (ref.startswith("/") or ref.startswith("#")):
        raise MalformedPathError(ref, f"Invalid JSON pointer: {ref!r}")
    return ref


def match_array_indices(logical_path: str, current_path: str) -> str:
    """Copy the array indices of ``current_path`` into a logical dependency path.

    Segments are matched from the root while the two paths agree; each shared
    array segment that is followed by an index in ``current_path`` receives that
    index, provided the dependency continues past it.

    Example:
        >>> match_array_indices("departments.type", "departments.0.employees.1.techStack")
        'departments.0.type'
        >>> match_array_indices("departments.employees", "departments.0.totalSalary")
        'departments.0.employees'
    """
    dep = split_path(logical_path)
    cur = split_path(current_path)
    out: list[str] = []
    ci = 0
    for k, seg in enumerate(dep):
        if ci < len(cur) and cur[ci] == seg:
            out.append(seg)
            ci += 1
            if k < len(dep) - 1 and ci < len(cur) and is_index(cur[ci]):
                out.append(cur[ci])
                ci += 1
            continue
        out.extend(dep[k:])
        break
    return join_path(out)


def resolve_dependency_path(ref: str, current_path: str) -> str:
    """Resolve any reference form to an absolute runtime path for ``current_path``."""
    if is_relative(ref):
        return resolve_relative(ref, current_path)
    if is_json_pointer(ref):
        logical = parse_json_pointer(ref)
        if "/items/" in ref:
            return match_array_indices(logical, current_path)
        return logical
    return to_field_path(ref)


def extract_array_context(path: str) -> ArrayContext | None:
    """Return the outermost array holding ``path``.

    The array is located by the first numeric segment that follows at least
    one non-numeric segment.

    Example:
        >>> extract_array_context("contacts.0.showCompany")
        ArrayContext(array_path='contacts', array_index=0)
    """
    parts = split_path(path)
    for idx, part in enumerate(parts):
        if idx > 0 and is_index(part):
            return ArrayContext(join_path(parts[:idx]), int(part))
    return None


def extract_array_levels(path: str) -> list[ArrayLevel]:
    """List every array level in ``path``, outermost first."""
    parts = split_path(path)
    levels: list[ArrayLevel] = []
    template: list[str] = []
    for idx, part in enumerate(parts):
        if is_index(part):
            levels.append(
                ArrayLevel(
                    array_path=join_path(parts[:idx]),
                    template_path=join_path(template),
                    index=int(part),
                    position=len(template),
                )
            )
        else:
            template.append(part)
    return levels


def extract_array_info(path: str) -> tuple[str, int, str] | None:
    """Split ``path`` at its first index into ``(array_path, index, field_path)``."""
    parts = split_path(path)
    for idx, part in enumerate(parts):
        if is_index(part):
            return join_path(parts[:idx]), int(part), join_path(parts[idx + 1:])
    return None


def is_array_element_path(path: str) -> bool:
    return any(is_index(part) for part in split_path(path))


def to_template_path(path: str) -> str:
    """Drop every array index: ``departments.0.employees.1.name`` -> ``departments.employees.name``."""
    if not path:
        return path
    return join_path(part for part in split_path(path) if not is_index(part))


def template_path_for_cache(dep_path: str, current_path: str) -> str:
    """Template form of a dependency path for cache keys.

    Indices are dropped for sibling and unrelated dependencies. A dependency on
    an enclosing (parent) array element keeps its indices so that elements of
    different parents do not share cache entries.
    """
    if not dep_path or not current_path:
        return dep_path
    dep_levels = extract_array_levels(dep_path)
    cur_levels = extract_array_levels(current_path)
    if not dep_levels:
        return dep_path
    if not cur_levels:
        return to_template_path(dep_path)
    dep_parent = dep_path.rpartition(SEPARATOR)[0]
    if len(dep_levels) < len(cur_levels) and current_path.startswith(dep_parent):
        return dep_path
    return to_template_path(dep_path)


def get_value(values: Any, path: str, default: Any = None) -> Any:
    """Read a nested value; missing keys or out-of-range indices give ``default``."""
    node = values
    for part in split_path(path):
        if isinstance(node, dict):
            node = node.get(part, _MISSING)
        elif isinstance(node, list) and is_index(part):
            pos = int(part)
            node = node[pos] if pos < len(node) else _MISSING
        else:
            return default
        if node is _MISSING:
            return default
    return node


def set_value(values: dict, path: str, value: Any) -> None:
    """Write a nested value, creating missing containers along the way."""
    parts = split_path(path)
    if not parts:
        return
    node: Any = values
    for idx, part in enumerate(parts[:-1]):
        following = parts[idx + 1]
        fresh: Any = [] if is_index(following) else {}
        if isinstance(node, list) and is_index(part):
            pos = int(part)
            while len(node) <= pos:
                node.append(None)
            if not isinstance(node[pos], (dict, list)):
                node[pos] = fresh
            node = node[pos]
        elif isinstance(node, dict):
            if not isinstance(node.get(part), (dict, list)):
                node[part] = fresh
            node = node[part]
        else:
            raise MalformedPathError(path, f"Cannot descend into {type(node).__name__} at {part!r} of {path!r}")
    last = parts[-1]
    if isinstance(node, list) and is_index(last):
        pos = int(last)
        while len(node) <= pos:
            node.append(None)
        node[pos] = value
    elif isinstance(node, dict):
        node[last] = value
    else:
        raise MalformedPathError(path, f"Cannot assign {last!r} on {type(node).__name__} in {path!r}")


def serialize_value(value: Any) -> str:
    """Stable JSON text for a form value (used in cache keys)."""
    return json.dumps(value, sort_keys=True, default=str)
