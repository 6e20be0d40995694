"""Formula effects: Sympy expressions over field paths.

A formula references fields by dotted path (``price * quantity``,
``order.items.0.qty``) or by sibling reference (``./price * ./quantity``).
Paths are mapped to stable Sympy symbols, parsed once and lambdified for fast
numeric evaluation.
"""
from __future__ import annotations

import re
from tokenize import TokenError
from dataclasses import dataclass, replace
from typing import Any, Callable, Mapping

import sympy as sp
from sympy.parsing.sympy_parser import parse_expr

from .path_util import get_value, resolve_dependency_path
from .utils import safe_float

# Field references: optional './' then identifier segments or numeric indices.
_REF_RE = re.compile(r"(?<![\w.])(?:\./)?[A-Za-z_]\w*(?:\.(?:[A-Za-z_]\w*|\d+))*")
_RESERVED = frozenset({"pi", "oo"})
_SYMBOLS: dict[str, sp.Symbol] = {}


def symbol(name: str) -> sp.Symbol:
    """Get a stable Sympy symbol for a placeholder name."""
    sym = _SYMBOLS.get(name)
    if sym is None:
        sym = sp.Symbol(name, real=True)
        _SYMBOLS[name] = sym
    return sym


def numeric_value(expr: object) -> float | None:
    """Evaluate a Sympy (or plain) value to a finite float, or None."""
    if isinstance(expr, sp.Basic):
        if expr.free_symbols:
            return None
        try:
            expr = expr.evalf()
        except Exception:
            return None
    return safe_float(expr)


def _extract_refs(source: str) -> tuple[str, list[str]]:
    """Replace field references with placeholders; return (text, refs in placeholder order)."""
    refs: list[str] = []
    index: dict[str, int] = {}

    def substitute(match: re.Match[str]) -> str:
        ref = match.group(0)
        rest = source[match.end():].lstrip()
        # Function calls (sqrt(...), Max(...)) and constants stay Sympy names.
        if rest.startswith("(") or ref in _RESERVED:
            return ref
        if ref not in index:
            index[ref] = len(refs)
            refs.append(ref)
        return f"_f{index[ref]}"

    return _REF_RE.sub(substitute, source), refs


@dataclass(frozen=True)
class FieldExpression:
    """A compiled formula: source text, referenced paths and numeric callable."""

    source: str
    refs: tuple[str, ...]
    expr: sp.Expr
    fn: Callable[..., object] | None

    def fields(self) -> tuple[str, ...]:
        return self.refs

    def resolve_paths(self, context_path: str) -> "FieldExpression":
        """Return a copy whose references are absolute for ``context_path``."""
        return replace(self, refs=tuple(resolve_dependency_path(ref, context_path) for ref in self.refs))

    def evaluate(self, values: Mapping[str, Any]) -> float | None:
        """Evaluate against a value snapshot; None when an input is missing or non-numeric."""
        args: list[float] = []
        for ref in self.refs:
            number = safe_float(get_value(values, ref))
            if number is None:
                return None
            args.append(number)
        if self.fn is not None:
            try:
                return safe_float(self.fn(*args))
            except (ArithmeticError, ValueError, TypeError):
                return None
        subs = {symbol(f"_f{idx}"): sp.Float(arg) for idx, arg in enumerate(args)}
        return numeric_value(self.expr.subs(subs))


def compile_expression(source: str) -> FieldExpression:
    """Parse a formula into a FieldExpression.

    Raises:
        ValueError: If the text is not a valid Sympy expression.

    Example:
        >>> compile_expression("price * quantity").evaluate({"price": 100, "quantity": 2})
        200.0
    """
    if not isinstance(source, str) or not source.strip():
        raise ValueError(f"Expression must be a non-empty string; got {source!r}")
    text, refs = _extract_refs(source)
    local_dict = {f"_f{idx}": symbol(f"_f{idx}") for idx in range(len(refs))}
    try:
        expr = parse_expr(text, local_dict=local_dict)
    except (SyntaxError, TokenError, TypeError, sp.SympifyError) as exc:
        raise ValueError(f"Invalid expression {source!r}: {exc}") from exc
    if isinstance(expr, bool) or not isinstance(expr, sp.Expr):
        raise ValueError(f"Expression {source!r} must be arithmetic")
    syms = [local_dict[f"_f{idx}"] for idx in range(len(refs))]
    try:
        fn = sp.lambdify(syms, expr, "math")
    except Exception:
        fn = None
    return FieldExpression(source=source, refs=tuple(refs), expr=expr, fn=fn)
