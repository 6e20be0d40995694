"""Derivation function table and the context passed to each call."""
from __future__ import annotations

import inspect
import logging
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping

from .errors import DerivationFunctionError, UnknownDerivationFunctionError
from .path_util import ArrayLevel, extract_array_context, extract_array_levels

logger = logging.getLogger(__name__)

DerivationFunc = Callable[..., Any]


@dataclass(frozen=True)
class LinkageContext:
    """Where a derivation runs.

    ``array_path``/``array_index`` describe the outermost array holding the
    field; ``array_levels`` lists every level so nested indices stay reachable.
    """

    field_path: str
    array_path: str | None = None
    array_index: int | None = None
    array_levels: tuple[ArrayLevel, ...] = field(default_factory=tuple)

    @classmethod
    def for_field(cls, field_path: str) -> "LinkageContext":
        ctx = extract_array_context(field_path)
        return cls(
            field_path=field_path,
            array_path=ctx.array_path if ctx else None,
            array_index=ctx.array_index if ctx else None,
            array_levels=tuple(extract_array_levels(field_path)),
        )


class DerivationRegistry(MutableMapping):
    """Explicit name -> callable table.

    Functions take ``(values, context)`` and may be sync or async.

    Example:
        >>> functions = DerivationRegistry()
        >>> @functions.register()
        ... def is_company(values, context):
        ...     return values.get("type") == "company"
        >>> "is_company" in functions
        True
    """

    def __init__(self, functions: Mapping[str, DerivationFunc] | None = None) -> None:
        self._functions: dict[str, DerivationFunc] = {}
        for name, fn in (functions or {}).items():
            self[name] = fn

    def __getitem__(self, name: str) -> DerivationFunc:
        return self._functions[name]

    def __setitem__(self, name: str, fn: DerivationFunc) -> None:
        if not isinstance(name, str) or not name:
            raise ValueError(f"Derivation function name must be a non-empty string; got {name!r}")
        if not callable(fn):
            raise TypeError(f"Derivation function {name!r} must be callable")
        self._functions[name] = fn

    def __delitem__(self, name: str) -> None:
        del self._functions[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._functions)

    def __len__(self) -> int:
        return len(self._functions)

    def __repr__(self) -> str:
        return f"DerivationRegistry({sorted(self._functions)!r})"

    def register(self, name: str | None = None) -> Callable[[DerivationFunc], DerivationFunc]:
        """Decorator that registers a function under ``name`` (default: its __name__)."""

        def decorator(fn: DerivationFunc) -> DerivationFunc:
            self[name or fn.__name__] = fn
            return fn

        return decorator

    def get(self, name: str, default: Any = None) -> DerivationFunc:  # type: ignore[override]
        """Look up a function; unlike dict.get a missing name raises."""
        try:
            return self._functions[name]
        except KeyError:
            raise UnknownDerivationFunctionError(name) from None

    async def call(self, name: str, values: Mapping[str, Any], context: LinkageContext) -> Any:
        """Call ``name`` and await its result when it is awaitable.

        Raises:
            UnknownDerivationFunctionError: ``name`` is not registered.
            DerivationFunctionError: The function raised.
        """
        fn = self.get(name)
        try:
            result = fn(values, context)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            raise DerivationFunctionError(name, context.field_path, exc) from exc
        return result
