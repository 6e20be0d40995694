"""Value store interface and an in-memory implementation."""
from __future__ import annotations

import copy
import logging
from typing import Any, Callable, Mapping, Protocol, runtime_checkable

from .path_util import get_value, set_value

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[str], None]
Unsubscribe = Callable[[], None]


@runtime_checkable
class ValueStore(Protocol):
    """What the engine needs from the host form state."""

    def get_values(self) -> dict[str, Any]: ...

    def set_value(self, field_path: str, value: Any, *, should_validate: bool = False, should_dirty: bool = False) -> None: ...

    def subscribe(self, callback: ChangeCallback) -> Unsubscribe: ...


class FormStore:
    """Nested dict of form values with synchronous change notifications.

    Example:
        >>> store = FormStore({"price": 100})
        >>> seen = []
        >>> unsubscribe = store.subscribe(seen.append)
        >>> store.set_value("quantity", 2)
        >>> seen
        ['quantity']
    """

    def __init__(self, values: Mapping[str, Any] | None = None) -> None:
        self._values: dict[str, Any] = copy.deepcopy(dict(values or {}))
        self._subscribers: list[ChangeCallback] = []
        # (field_path, should_validate, should_dirty) per write, for inspection.
        self.writes: list[tuple[str, bool, bool]] = []

    def get_values(self) -> dict[str, Any]:
        return self._values

    def get_value(self, field_path: str, default: Any = None) -> Any:
        return get_value(self._values, field_path, default)

    def set_value(self, field_path: str, value: Any, *, should_validate: bool = False, should_dirty: bool = False) -> None:
        set_value(self._values, field_path, value)
        self.writes.append((field_path, should_validate, should_dirty))
        self._notify(field_path)

    def replace(self, values: Mapping[str, Any]) -> None:
        """Swap the whole value tree and notify with the empty root path."""
        self._values = copy.deepcopy(dict(values))
        self._notify("")

    def subscribe(self, callback: ChangeCallback) -> Unsubscribe:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, field_path: str) -> None:
        for callback in list(self._subscribers):
            callback(field_path)
