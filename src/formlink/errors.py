"""Exception types raised by the linkage engine."""
from __future__ import annotations


class LinkageError(Exception):
    """Base class for linkage errors."""


class MalformedPathError(LinkageError, ValueError):
    """A field reference uses an unsupported path syntax."""

    def __init__(self, ref: str, message: str | None = None) -> None:
        self.ref = ref
        super().__init__(
            message
            or f"Unsupported relative path format: {ref!r}. Only './fieldName' sibling references are allowed"
        )


class UnsupportedOperatorError(LinkageError, ValueError):
    """A condition uses an operator outside the closed operator set."""

    def __init__(self, operator: object) -> None:
        self.operator = operator
        super().__init__(f"Unsupported condition operator: {operator!r}")


class CircularDependencyError(LinkageError, ValueError):
    """The dependency graph contains a cycle (raised only when asked to)."""

    def __init__(self, cycle: list[str], message: str | None = None) -> None:
        self.cycle = list(cycle)
        super().__init__(message or f"Circular dependency detected: {' -> '.join(self.cycle)}")


class UnknownDerivationFunctionError(LinkageError, LookupError):
    """A linkage names a derivation function that is not registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Linkage function {name!r} not found")


class DerivationFunctionError(LinkageError):
    """A derivation function raised while computing a field."""

    def __init__(self, name: str, field_path: str | None, cause: BaseException) -> None:
        self.name = name
        self.field_path = field_path
        self.cause = cause
        super().__init__(f"Linkage function {name!r} failed for {field_path!r}: {cause}")
