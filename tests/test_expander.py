from formlink.expander_class import ArrayLinkageExpander
from formlink.linkage_class import LinkageConfig
from formlink.path_util import ArrayContext

COMPANY_NAME = LinkageConfig.from_dict(
    {
        "type": "visibility",
        "dependencies": ["./type"],
        "when": {"field": "./type", "operator": "==", "value": "company"},
        "fulfill": {"state": {"visible": True}},
        "otherwise": {"state": {"visible": False}},
    }
)


def _contacts(*types: str) -> dict:
    return {"contacts": [{"type": t} for t in types]}


def test_template_expands_per_element_and_reindexes() -> None:
    expander = ArrayLinkageExpander()
    linkages = {"contacts.companyName": COMPANY_NAME}

    expanded = expander.expand(linkages, _contacts("company", "personal", "company"))
    assert list(expanded) == [
        "contacts.0.companyName",
        "contacts.1.companyName",
        "contacts.2.companyName",
    ]
    assert expanded["contacts.1.companyName"].dependencies == ("contacts.1.type",)
    assert expanded["contacts.1.companyName"].when.field == "contacts.1.type"

    shrunk = expander.expand(linkages, _contacts("company", "company"))
    assert list(shrunk) == ["contacts.0.companyName", "contacts.1.companyName"]
    assert shrunk["contacts.1.companyName"].dependencies == ("contacts.1.type",)


def test_empty_missing_and_non_list_arrays_yield_nothing() -> None:
    expander = ArrayLinkageExpander(array_paths=["contacts"])
    linkages = {"contacts.companyName": COMPANY_NAME}
    assert expander.expand(linkages, {"contacts": []}) == {}
    assert expander.expand(linkages, {}) == {}
    assert expander.expand(linkages, {"contacts": "oops"}) == {}


def test_nested_arrays_resolve_parent_pointers() -> None:
    config = LinkageConfig.from_dict(
        {
            "type": "visibility",
            "dependencies": ["#/properties/departments/items/properties/type"],
            "when": {
                "field": "#/properties/departments/items/properties/type",
                "operator": "==",
                "value": "tech",
            },
        }
    )
    values = {
        "departments": [
            {"type": "tech", "employees": [{}, {}]},
            {"type": "sales", "employees": [{}]},
        ]
    }
    expanded = ArrayLinkageExpander().expand({"departments.employees.techStack": config}, values)
    assert list(expanded) == [
        "departments.0.employees.0.techStack",
        "departments.0.employees.1.techStack",
        "departments.1.employees.0.techStack",
    ]
    assert expanded["departments.1.employees.0.techStack"].dependencies == ("departments.1.type",)


def test_plain_and_concrete_keys_resolve_in_place() -> None:
    expander = ArrayLinkageExpander()
    city = LinkageConfig.from_dict({"type": "disabled", "dependencies": ["./country"]})
    expanded = expander.expand({"user.city": city}, {})
    assert list(expanded) == ["user.city"]
    assert expanded["user.city"].dependencies == ("user.country",)

    concrete = expander.expand({"contacts.1.companyName": COMPANY_NAME}, _contacts("a", "company"))
    assert list(concrete) == ["contacts.1.companyName"]
    assert concrete["contacts.1.companyName"].dependencies == ("contacts.1.type",)


def test_array_context() -> None:
    assert ArrayLinkageExpander.array_context("contacts.2.companyName") == ArrayContext("contacts", 2)
    assert ArrayLinkageExpander.array_context("total") is None
