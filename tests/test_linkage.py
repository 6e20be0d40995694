import math

import pytest

from formlink.errors import MalformedPathError, UnsupportedOperatorError
from formlink.expression_util import compile_expression
from formlink.linkage_class import Effect, LinkageConfig, LinkageResult


def test_expression_evaluates_field_paths() -> None:
    expr = compile_expression("price * quantity")
    assert expr.fields() == ("price", "quantity")
    assert expr.evaluate({"price": 100, "quantity": 2}) == 200
    assert expr.evaluate({"price": 100}) is None
    assert expr.evaluate({"price": 100, "quantity": "two"}) is None


def test_expression_functions_and_relative_refs() -> None:
    expr = compile_expression("sqrt(./width**2 + ./height**2)")
    resolved = expr.resolve_paths("shapes.0.diagonal")
    assert resolved.fields() == ("shapes.0.width", "shapes.0.height")
    values = {"shapes": [{"width": 3, "height": 4}]}
    assert math.isclose(resolved.evaluate(values), 5.0)
    assert compile_expression("order.lines.0.qty * 2").evaluate({"order": {"lines": [{"qty": 3}]}}) == 6


@pytest.mark.parametrize("source", ["", "price *", "price > 3"])
def test_invalid_expressions_raise(source: str) -> None:
    with pytest.raises(ValueError):
        compile_expression(source)


def test_config_round_trip_and_resolution() -> None:
    raw = {
        "type": "computed",
        "dependencies": ["./price", "./quantity"],
        "fulfill": {"expression": "./price * ./quantity"},
    }
    config = LinkageConfig.from_dict(raw)
    assert config.to_dict() == raw
    resolved = config.resolve_paths("items.3.total")
    assert resolved.dependencies == ("items.3.price", "items.3.quantity")
    assert resolved.fulfill.expression.fields() == ("items.3.price", "items.3.quantity")
    # Templates are not mutated.
    assert config.dependencies == ("./price", "./quantity")


def test_config_validation_errors() -> None:
    with pytest.raises(ValueError):
        LinkageConfig.from_dict({"type": "color", "dependencies": []})
    with pytest.raises(ValueError):
        LinkageConfig.from_dict({"type": "value", "dependencies": "price"})
    with pytest.raises(ValueError):
        LinkageConfig.from_dict({"type": "value", "dependencies": [], "target": 1})
    with pytest.raises(MalformedPathError):
        LinkageConfig.from_dict({"type": "value", "dependencies": ["../price"]})
    with pytest.raises(UnsupportedOperatorError):
        LinkageConfig.from_dict(
            {"type": "visibility", "dependencies": ["a"], "when": {"field": "a", "operator": "like"}}
        )
    with pytest.raises(ValueError):
        Effect.from_dict({"state": {"hidden": True}})


def test_dependency_warnings() -> None:
    undeclared = LinkageConfig.from_dict(
        {"type": "visibility", "dependencies": [], "when": {"field": "a", "operator": "isEmpty"}}
    )
    with pytest.warns(UserWarning, match="without declaring"):
        undeclared.check_dependencies("x")

    unused = LinkageConfig.from_dict(
        {"type": "visibility", "dependencies": ["a", "b"], "when": {"field": "a", "operator": "isEmpty"}}
    )
    with pytest.warns(UserWarning, match="unused dependency 'b'"):
        unused.check_dependencies("x")

    messages: list[str] = []
    with_function = LinkageConfig.from_dict({"type": "value", "dependencies": ["a"], "when": "is_ready"})
    with_function.check_dependencies("x", warn=lambda msg, category=None: messages.append(msg))
    assert messages == []
    assert with_function.uses_function()
    assert list(with_function.function_names()) == ["is_ready"]


def test_result_merge_and_to_dict() -> None:
    base = LinkageResult(visible=True, value=3)
    merged = base.merged(LinkageResult(disabled=True, value=4))
    assert merged.to_dict() == {"visible": True, "disabled": True, "value": 4}
    assert LinkageResult().is_empty()
    assert LinkageResult.from_dict({"options": [1, 2]}).options == [1, 2]
