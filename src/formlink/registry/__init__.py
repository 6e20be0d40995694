"""Registry module for the linkage vocabulary and engine defaults."""
from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from ..utils import load_yaml

# Registry paths
REGISTRY_PATH = Path(__file__).resolve().parent
LINKAGE_PATH = REGISTRY_PATH / "allowed_linkage.yaml"
ENGINE_DEFAULTS_PATH = REGISTRY_PATH / "engine_defaults.yaml"

# Private caches
_ALLOWED_LINKAGE: dict[str, Any] | None = None
_ENGINE_DEFAULTS: dict[str, Any] | None = None


def load_allowed_linkage() -> dict[str, Any]:
    """Load the linkage vocabulary. Args: none. Returns: dict."""
    global _ALLOWED_LINKAGE
    if _ALLOWED_LINKAGE is None:
        data = load_yaml(LINKAGE_PATH)
        for key in ("linkage_types", "value_linkage_types", "operators", "result_keys", "state_keys"):
            data[key] = tuple(str(item) for item in data.get(key) or ())
        data["result_routing"] = {str(k): str(v) for k, v in (data.get("result_routing") or {}).items()}
        _ALLOWED_LINKAGE = data
    return _ALLOWED_LINKAGE


def load_engine_defaults() -> dict[str, Any]:
    """Load engine defaults. Args: none. Returns: dict."""
    global _ENGINE_DEFAULTS
    if _ENGINE_DEFAULTS is None:
        _ENGINE_DEFAULTS = load_yaml(ENGINE_DEFAULTS_PATH)
    return _ENGINE_DEFAULTS


# Public constants loaded from the vocabulary
ALLOWED_LINKAGE_TYPES = load_allowed_linkage()["linkage_types"]
VALUE_LINKAGE_TYPES = load_allowed_linkage()["value_linkage_types"]
ALLOWED_OPERATORS = load_allowed_linkage()["operators"]
RESULT_KEYS = load_allowed_linkage()["result_keys"]
STATE_KEYS = load_allowed_linkage()["state_keys"]
RESULT_ROUTING = load_allowed_linkage()["result_routing"]


@dataclass
class EngineSettings:
    """Per-engine configuration, seeded from engine_defaults.yaml.

    Attributes:
        throw_on_cycle: Raise CircularDependencyError instead of logging cycles.
        write_back: Write value/computed results back to the value store.
        cache_results: Cache results of relationships that call no derivation function.
        cache_max_size: LRU capacity of the result cache.
        verbose: INFO-level engine logging.
    """

    throw_on_cycle: bool = False
    write_back: bool = True
    cache_results: bool = False
    cache_max_size: int = 1000
    verbose: bool = False

    @classmethod
    def from_defaults(cls, **overrides: Any) -> "EngineSettings":
        """Build settings from the packaged defaults, applying keyword overrides."""
        known = {f.name for f in fields(cls)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"Unknown engine setting(s): {', '.join(sorted(unknown))}")
        data = {k: v for k, v in load_engine_defaults().items() if k in known}
        data.update(overrides)
        settings = cls(**data)
        if settings.cache_max_size < 1:
            raise ValueError("cache_max_size must be a positive integer")
        return settings
