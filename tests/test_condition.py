import pytest

from formlink.condition_class import Condition, ConditionEvaluator
from formlink.errors import MalformedPathError, UnsupportedOperatorError

VALUES = {
    "type": "company",
    "age": 30,
    "tags": ["vip", "new"],
    "note": "urgent call",
    "empty": "",
    "items": [],
    "active": True,
    "count": 1,
}


@pytest.mark.parametrize(
    ("operator", "field", "value", "expected"),
    [
        ("==", "type", "company", True),
        ("!=", "type", "company", False),
        (">", "age", 18, True),
        ("<", "age", 18, False),
        (">=", "age", 30, True),
        ("<=", "age", 29, False),
        ("in", "type", ["company", "personal"], True),
        ("notIn", "type", ["personal"], True),
        ("includes", "tags", "vip", True),
        ("includes", "note", "urgent", False),
        ("in", "type", "my company", False),
        ("notIn", "type", "personal", False),
        ("notIn", "missing", ["personal"], True),
        ("notIncludes", "missing", "x", False),
        ("notIncludes", "note", "x", False),
        ("includes", "tags", ["vip"], False),
        ("==", "active", 1, False),
        ("!=", "active", 1, True),
        ("==", "count", True, False),
        ("in", "count", [True], False),
        ("==", "count", 1.0, True),
        ("notIncludes", "tags", "old", True),
        ("isEmpty", "empty", None, True),
        ("isEmpty", "items", None, True),
        ("isEmpty", "missing", None, True),
        ("isNotEmpty", "tags", None, True),
    ],
)
def test_operators(operator: str, field: str, value: object, expected: bool) -> None:
    expr = {"field": field, "operator": operator, "value": value}
    assert ConditionEvaluator.evaluate(expr, VALUES) is expected


def test_ordering_on_missing_or_incomparable_values_is_false() -> None:
    assert not ConditionEvaluator.evaluate({"field": "missing", "operator": ">", "value": 1}, VALUES)
    assert not ConditionEvaluator.evaluate({"field": "type", "operator": "<", "value": 3}, VALUES)


def test_and_or_groups() -> None:
    base_true_and_false = {
        "field": "type",
        "operator": "==",
        "value": "company",
        "and": [{"field": "age", "operator": ">", "value": 40}],
    }
    assert not ConditionEvaluator.evaluate(base_true_and_false, VALUES)

    base_false_or_true = {
        "field": "type",
        "operator": "==",
        "value": "personal",
        "or": [{"field": "age", "operator": "==", "value": 30}],
    }
    assert ConditionEvaluator.evaluate(base_false_or_true, VALUES)

    pure_group = {"or": [{"field": "age", "operator": "<", "value": 10}, {"field": "type", "operator": "isNotEmpty"}]}
    assert ConditionEvaluator.evaluate(pure_group, VALUES)
    assert ConditionEvaluator.evaluate({}, VALUES)


def test_unknown_operator_is_rejected() -> None:
    with pytest.raises(UnsupportedOperatorError):
        Condition.from_dict({"field": "age", "operator": "~=", "value": 1})
    with pytest.raises(UnsupportedOperatorError):
        ConditionEvaluator.evaluate(Condition(field="age", operator="~="), VALUES)


def test_malformed_condition_shapes() -> None:
    with pytest.raises(ValueError):
        Condition.from_dict({"field": "age"})
    with pytest.raises(ValueError):
        Condition.from_dict({"and": {"field": "age", "operator": "isEmpty"}})


def test_relative_reference_must_be_resolved_first() -> None:
    cond = Condition.from_dict({"field": "./type", "operator": "==", "value": "company"})
    with pytest.raises(MalformedPathError):
        ConditionEvaluator.evaluate(cond, VALUES)

    resolved = cond.resolve_paths("contacts.0.companyName")
    assert resolved.field == "contacts.0.type"
    values = {"contacts": [{"type": "company"}]}
    assert ConditionEvaluator.evaluate(resolved, values)


def test_fields_lists_nested_references() -> None:
    cond = Condition.from_dict(
        {
            "field": "a",
            "operator": "isEmpty",
            "and": [{"field": "b", "operator": "isEmpty"}],
            "or": [{"field": "c", "operator": "isEmpty"}],
        }
    )
    assert list(cond.fields()) == ["a", "b", "c"]
    assert Condition.from_dict(cond.to_dict()) == cond
