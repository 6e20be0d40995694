from .condition_class import Condition, ConditionEvaluator
from .derivation_class import DerivationRegistry, LinkageContext
from .engine_class import LinkageEngine, LinkageResultMap
from .errors import (
    CircularDependencyError,
    DerivationFunctionError,
    LinkageError,
    MalformedPathError,
    UnknownDerivationFunctionError,
    UnsupportedOperatorError,
)
from .expander_class import ArrayLinkageExpander
from .graph_class import DependencyGraph, GraphValidation
from .linkage_class import Effect, LinkageConfig, LinkageResult
from .loader import (
    collect_array_paths,
    load_linkages,
    load_schema,
    load_values,
    parse_schema_linkages,
    transform_to_absolute_paths,
)
from .cache_util import LinkageResultCache, generate_cache_key
from .registry import (
    ALLOWED_LINKAGE_TYPES,
    ALLOWED_OPERATORS,
    RESULT_KEYS,
    STATE_KEYS,
    VALUE_LINKAGE_TYPES,
    EngineSettings,
)
from .store_class import FormStore, ValueStore
from .taskqueue_class import LinkageTaskQueue, Task
