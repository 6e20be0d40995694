import pytest

from formlink.registry import (
    ALLOWED_LINKAGE_TYPES,
    ALLOWED_OPERATORS,
    RESULT_ROUTING,
    STATE_KEYS,
    VALUE_LINKAGE_TYPES,
    EngineSettings,
    load_engine_defaults,
)


def test_vocabulary_is_loaded_from_yaml() -> None:
    assert ALLOWED_LINKAGE_TYPES == ("visibility", "disabled", "readonly", "value", "computed", "options", "schema")
    assert VALUE_LINKAGE_TYPES == ("value", "computed")
    assert len(ALLOWED_OPERATORS) == 12
    assert "notIncludes" in ALLOWED_OPERATORS
    assert STATE_KEYS == ("visible", "disabled", "readonly")
    assert set(RESULT_ROUTING) == set(ALLOWED_LINKAGE_TYPES)
    assert RESULT_ROUTING["computed"] == "value"


def test_engine_settings_from_defaults() -> None:
    settings = EngineSettings.from_defaults()
    assert settings == EngineSettings(**load_engine_defaults())
    assert settings.cache_max_size == 1000
    assert not settings.throw_on_cycle

    custom = EngineSettings.from_defaults(throw_on_cycle=True, cache_max_size=10)
    assert custom.throw_on_cycle
    assert custom.cache_max_size == 10


def test_engine_settings_reject_bad_overrides() -> None:
    with pytest.raises(ValueError, match="colour"):
        EngineSettings.from_defaults(colour="red")
    with pytest.raises(ValueError):
        EngineSettings.from_defaults(cache_max_size=0)
