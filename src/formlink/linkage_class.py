"""Linkage data model: effects, relationship configs and results.

Configs are immutable. Path resolution returns new instances so a template
declared on an item schema can be instantiated once per array element.
"""
from __future__ import annotations

import warnings
from dataclasses import dataclass, fields, replace
from typing import Any, Callable, Iterator, Mapping

from .condition_class import Condition
from .expression_util import FieldExpression, compile_expression
from .path_util import is_relative, resolve_dependency_path, resolve_relative, to_field_path
from .registry import ALLOWED_LINKAGE_TYPES, STATE_KEYS
from .utils import ensure_list, ensure_mapping

WarnFunc = Callable[[str, type[Warning] | None], None]

_EFFECT_KEYS = frozenset({"state", "value", "function", "expression", "options"})
_CONFIG_KEYS = frozenset({"type", "dependencies", "when", "fulfill", "otherwise"})


def _check_ref(ref: object, *, owner: str) -> str:
    """Reject non-string and malformed references at parse time."""
    if not isinstance(ref, str) or not ref:
        raise ValueError(f"{owner} references must be non-empty strings; got {ref!r}")
    if is_relative(ref):
        # Validate syntax only; the context segment is discarded.
        resolve_relative(ref, "_")
    else:
        to_field_path(ref)
    return ref


@dataclass(frozen=True)
class Effect:
    """What a relationship does when its condition holds (``fulfill``) or not (``otherwise``).

    Precedence: ``function`` > ``expression`` > literal ``value``. A literal
    ``options`` list only applies when there is no ``function``. A ``None``
    value means "no literal value".
    """

    state: Mapping[str, bool] | None = None
    value: Any = None
    function: str | None = None
    expression: FieldExpression | None = None
    options: tuple[Any, ...] | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | "Effect" | None) -> "Effect | None":
        if data is None or isinstance(data, Effect):
            return data
        data = ensure_mapping(data, name="Linkage effect")
        unknown = set(data) - _EFFECT_KEYS
        if unknown:
            raise ValueError(f"Unknown linkage effect key(s): {', '.join(sorted(unknown))}")
        state = data.get("state")
        if state is not None:
            state = ensure_mapping(state, name="Linkage effect state")
            bad = set(state) - set(STATE_KEYS)
            if bad:
                raise ValueError(f"Unknown state key(s): {', '.join(sorted(bad))}")
            state = {key: bool(val) for key, val in state.items()}
        function = data.get("function")
        if function is not None and not isinstance(function, str):
            raise ValueError(f"Effect function must be a function name; got {function!r}")
        expression = data.get("expression")
        if expression is not None and not isinstance(expression, FieldExpression):
            expression = compile_expression(expression)
        options = data.get("options")
        if options is not None:
            options = tuple(ensure_list(options, name="Effect options", item_desc="option entries"))
        return cls(
            state=state,
            value=data.get("value"),
            function=function,
            expression=expression,
            options=options,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.state is not None:
            out["state"] = dict(self.state)
        if self.value is not None:
            out["value"] = self.value
        if self.function is not None:
            out["function"] = self.function
        if self.expression is not None:
            out["expression"] = self.expression.source
        if self.options is not None:
            out["options"] = list(self.options)
        return out

    def fields(self) -> tuple[str, ...]:
        return self.expression.fields() if self.expression is not None else ()

    def resolve_paths(self, context_path: str) -> "Effect":
        if self.expression is None:
            return self
        return replace(self, expression=self.expression.resolve_paths(context_path))


@dataclass(frozen=True)
class LinkageConfig:
    """A declarative cross-field relationship attached to one field.

    ``when`` is a Condition, the name of a boolean derivation function, or None
    (always fulfilled). ``dependencies`` must name every field the relationship
    reads; they are never discovered from the body.

    Example:
        >>> cfg = LinkageConfig.from_dict({
        ...     "type": "visibility",
        ...     "dependencies": ["./type"],
        ...     "when": {"field": "./type", "operator": "==", "value": "company"},
        ...     "fulfill": {"state": {"visible": True}},
        ...     "otherwise": {"state": {"visible": False}},
        ... })
        >>> cfg.resolve_paths("contacts.0.companyName").dependencies
        ('contacts.0.type',)
    """

    type: str
    dependencies: tuple[str, ...] = ()
    when: Condition | str | None = None
    fulfill: Effect | None = None
    otherwise: Effect | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | "LinkageConfig") -> "LinkageConfig":
        """Parse the schema form.

        Raises:
            ValueError: Unknown type, unknown keys or malformed shapes.
            MalformedPathError: A reference uses an unsupported path syntax.
            UnsupportedOperatorError: A condition uses an unknown operator.
        """
        if isinstance(data, LinkageConfig):
            return data
        data = ensure_mapping(data, name="Linkage config")
        unknown = set(data) - _CONFIG_KEYS
        if unknown:
            raise ValueError(f"Unknown linkage config key(s): {', '.join(sorted(unknown))}")
        kind = data.get("type")
        if kind not in ALLOWED_LINKAGE_TYPES:
            raise ValueError(
                f"Unknown linkage type {kind!r}; expected one of {', '.join(ALLOWED_LINKAGE_TYPES)}"
            )
        try:
            raw_deps = ensure_list(data.get("dependencies"), name="Linkage dependencies", item_desc="field paths")
        except TypeError as exc:
            raise ValueError(str(exc)) from exc
        deps = tuple(_check_ref(dep, owner="Dependency") for dep in raw_deps)
        when = data.get("when")
        if isinstance(when, str):
            if not when:
                raise ValueError("Linkage 'when' function name must not be empty")
        elif when is not None:
            when = Condition.from_dict(when)
            for ref in when.fields():
                _check_ref(ref, owner="Condition")
        fulfill = Effect.from_dict(data.get("fulfill"))
        otherwise = Effect.from_dict(data.get("otherwise"))
        for effect in (fulfill, otherwise):
            for ref in effect.fields() if effect is not None else ():
                _check_ref(ref, owner="Expression")
        return cls(type=kind, dependencies=deps, when=when, fulfill=fulfill, otherwise=otherwise)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type, "dependencies": list(self.dependencies)}
        if isinstance(self.when, Condition):
            out["when"] = self.when.to_dict()
        elif self.when is not None:
            out["when"] = self.when
        if self.fulfill is not None:
            out["fulfill"] = self.fulfill.to_dict()
        if self.otherwise is not None:
            out["otherwise"] = self.otherwise.to_dict()
        return out

    def referenced_fields(self) -> Iterator[str]:
        """Yield fields read by the condition and formula effects (as written)."""
        if isinstance(self.when, Condition):
            yield from self.when.fields()
        for effect in (self.fulfill, self.otherwise):
            if effect is not None:
                yield from effect.fields()

    def uses_function(self) -> bool:
        """True when any part of the relationship calls a derivation function."""
        if isinstance(self.when, str):
            return True
        return any(effect is not None and effect.function for effect in (self.fulfill, self.otherwise))

    def function_names(self) -> Iterator[str]:
        if isinstance(self.when, str):
            yield self.when
        for effect in (self.fulfill, self.otherwise):
            if effect is not None and effect.function:
                yield effect.function

    def resolve_paths(self, context_path: str) -> "LinkageConfig":
        """Return a copy whose references are absolute for ``context_path``."""
        return replace(
            self,
            dependencies=tuple(resolve_dependency_path(dep, context_path) for dep in self.dependencies),
            when=self.when.resolve_paths(context_path) if isinstance(self.when, Condition) else self.when,
            fulfill=self.fulfill.resolve_paths(context_path) if self.fulfill is not None else None,
            otherwise=self.otherwise.resolve_paths(context_path) if self.otherwise is not None else None,
        )

    def check_dependencies(self, field_path: str, *, warn: WarnFunc = warnings.warn) -> None:
        """Warn about referenced fields missing from ``dependencies`` and unused declarations.

        Unused declarations are only reported when no derivation function could
        read them.
        """
        declared = {resolve_dependency_path(dep, field_path) for dep in self.dependencies}
        referenced = {resolve_dependency_path(ref, field_path) for ref in self.referenced_fields()}
        for missing in sorted(referenced - declared):
            warn(f"Linkage on {field_path!r} reads {missing!r} without declaring it as a dependency", UserWarning)
        if not self.uses_function():
            for unused in sorted(declared - referenced):
                warn(f"Linkage on {field_path!r} declares unused dependency {unused!r}", UserWarning)


@dataclass(frozen=True)
class LinkageResult:
    """Derived state for one field. ``None`` means "no opinion" for that key."""

    visible: bool | None = None
    disabled: bool | None = None
    readonly: bool | None = None
    value: Any = None
    options: list[Any] | None = None
    schema: Mapping[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LinkageResult":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown result key(s): {', '.join(sorted(unknown))}")
        return cls(**data)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}

    def merged(self, other: "LinkageResult") -> "LinkageResult":
        """Shallow merge: keys set on ``other`` win."""
        return replace(self, **other.to_dict())

    def is_empty(self) -> bool:
        return not self.to_dict()
