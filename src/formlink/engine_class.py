"""LinkageEngine: keep derived field state in sync with form values."""
from __future__ import annotations

import asyncio
import copy
import itertools
import logging
import warnings
from typing import Any, Iterable, Mapping

from .cache_util import LinkageResultCache, generate_cache_key
from .condition_class import ConditionEvaluator
from .derivation_class import DerivationFunc, DerivationRegistry, LinkageContext
from .errors import CircularDependencyError, DerivationFunctionError, UnknownDerivationFunctionError
from .expander_class import ArrayLinkageExpander
from .graph_class import CycleCallback, DependencyGraph
from .linkage_class import Effect, LinkageConfig, LinkageResult, WarnFunc
from .loader import collect_array_paths, parse_schema_linkages
from .path_util import ancestor_paths, get_value, set_value
from .registry import RESULT_ROUTING, STATE_KEYS, VALUE_LINKAGE_TYPES, EngineSettings
from .store_class import Unsubscribe, ValueStore
from .taskqueue_class import LinkageTaskQueue
from .utils import values_equal

logger = logging.getLogger(__name__)

LinkageResultMap = dict[str, LinkageResult]


class LinkageEngine:
    """Evaluate declared relationships against a value store.

    Args:
        store: Host form state (see ValueStore).
        linkages: Declared relationships keyed by field or template path.
        functions: Derivation functions by name (mapping or DerivationRegistry).
        settings: Engine settings; defaults come from engine_defaults.yaml.
        on_cycle_detected: Called with the cycle whenever one is found.
        verbose: INFO-level logging for this engine.
        array_paths: Template paths of schema arrays, used by expansion. A
            template whose array is missing from the values expands to nothing
            only when its array is listed here (see from_schema).
        warn: Sink for configuration warnings.

    Example:
        >>> from formlink import FormStore
        >>> store = FormStore({"price": 100, "quantity": 2})
        >>> engine = LinkageEngine(store, {"total": {
        ...     "type": "computed", "dependencies": ["price", "quantity"],
        ...     "fulfill": {"expression": "price * quantity"}}})
        >>> asyncio.run(engine.initialize())["total"].value
        200.0
    """

    def __init__(
        self,
        store: ValueStore,
        linkages: Mapping[str, LinkageConfig | Mapping[str, Any]] | None = None,
        functions: Mapping[str, DerivationFunc] | None = None,
        *,
        settings: EngineSettings | None = None,
        on_cycle_detected: CycleCallback | None = None,
        verbose: bool = False,
        array_paths: Iterable[str] | None = None,
        warn: WarnFunc = warnings.warn,
    ) -> None:
        self.store = store
        self.settings = settings or EngineSettings.from_defaults()
        self.verbose = verbose or self.settings.verbose
        self.on_cycle_detected = on_cycle_detected
        self.warn_sink = warn
        # Per-instance logger with structured context.
        base_logger = logger.getChild(self.__class__.__name__)
        base_logger.setLevel(logging.INFO if self.verbose else logging.WARNING)
        self._log = logging.LoggerAdapter(
            base_logger,
            {"engine_id": id(self), "cycle_id": None, "n_linkages": 0},
        )
        self.queue = LinkageTaskQueue()
        self.cache = LinkageResultCache(self.settings.cache_max_size)
        self._expander = ArrayLinkageExpander(array_paths)
        self._cycles = itertools.count(1)
        self._active_cycles = 0
        self._pending: set[asyncio.Task] = set()
        self.functions = DerivationRegistry()
        self.set_linkages(linkages or {}, functions)

    @classmethod
    def from_schema(
        cls,
        store: ValueStore,
        schema: Mapping[str, Any],
        functions: Mapping[str, DerivationFunc] | None = None,
        **kwargs: Any,
    ) -> "LinkageEngine":
        """Build an engine from the linkages declared in ``schema``.

        The schema's array properties become the expansion hint, so templates
        under an array that is absent from the values expand to nothing.
        Without the hint a missing array cannot be told apart from a missing
        object, and the template key is kept as a plain field path.
        """
        kwargs.setdefault("array_paths", collect_array_paths(schema))
        return cls(store, parse_schema_linkages(schema), functions, **kwargs)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def set_linkages(
        self,
        linkages: Mapping[str, LinkageConfig | Mapping[str, Any]],
        functions: Mapping[str, DerivationFunc] | None = None,
    ) -> None:
        """Swap the declared relationships (and optionally the functions); all state is discarded.

        Raises:
            ValueError: A config is malformed (includes MalformedPathError and
                UnsupportedOperatorError).
        """
        parsed: dict[str, LinkageConfig] = {}
        for field_path, raw in linkages.items():
            config = LinkageConfig.from_dict(raw)
            config.check_dependencies(field_path, warn=self.warn_sink)
            parsed[field_path] = config
        if functions is not None:
            self.functions = functions if isinstance(functions, DerivationRegistry) else DerivationRegistry(functions)
        self._linkages = parsed
        self._expanded: dict[str, LinkageConfig] = {}
        self._graph = DependencyGraph()
        self._built = False
        self._results: LinkageResultMap = {}
        self.queue.clear()
        self.cache.clear()
        for field_path, config in parsed.items():
            for name in config.function_names():
                if name not in self.functions:
                    self._log.info("Linkage on %s names unregistered function %r", field_path, name)
        self._log.debug("Loaded %s declared linkages", len(parsed))

    @property
    def linkages(self) -> dict[str, LinkageConfig]:
        return dict(self._linkages)

    @property
    def expanded_linkages(self) -> dict[str, LinkageConfig]:
        return dict(self._expanded)

    @property
    def graph(self) -> DependencyGraph:
        return self._graph

    @property
    def results(self) -> LinkageResultMap:
        return dict(self._results)

    def get_result(self, field_path: str) -> LinkageResult | None:
        return self._results.get(field_path)

    def is_field_hidden(self, field_path: str) -> bool:
        """True when the field or any ancestor has ``visible`` set to False."""
        for path in (*ancestor_paths(field_path), field_path):
            result = self._results.get(path)
            if result is not None and result.visible is False:
                return True
        return False

    # ------------------------------------------------------------------
    # Recompute entry points
    # ------------------------------------------------------------------
    async def initialize(
        self,
        linkages: Mapping[str, LinkageConfig | Mapping[str, Any]] | None = None,
        functions: Mapping[str, DerivationFunc] | None = None,
    ) -> LinkageResultMap:
        """Expand, build the graph and evaluate every relationship in dependency order."""
        if linkages is not None:
            self.set_linkages(linkages, functions)
        elif functions is not None:
            self.functions = functions if isinstance(functions, DerivationRegistry) else DerivationRegistry(functions)
        return await self.refresh()

    async def refresh(self) -> LinkageResultMap:
        """Force a full recompute against the current store values."""
        self._rebuild(self.store.get_values(), force=True)
        return await self._full_cycle()

    async def on_field_changed(self, changed: str) -> LinkageResultMap:
        """Recompute the relationships affected by a change to ``changed``.

        Returns:
            The results committed by this cycle (empty when nothing depends on
            ``changed``). A change in the expanded relationship set, as when an
            array element is added or removed, triggers a full refresh.
        """
        if self._rebuild(self.store.get_values(), force=not changed):
            self._log.info("Relationship set changed on %r; refreshing", changed)
            return await self._full_cycle()
        affected = [path for path in self._graph.get_affected_fields(changed) if path in self._expanded]
        if not affected:
            return {}
        self._log.debug("Change to %s affects %s", changed, ", ".join(affected))
        return await self._run_cycle(affected)

    def attach(self) -> Unsubscribe:
        """Subscribe to the store; each change is scheduled on the running event loop.

        Notifications for fields the engine is writing itself are ignored.
        """

        def on_change(field_path: str) -> None:
            if self.queue.is_field_updating(field_path):
                self._log.debug("Ignoring engine write to %s", field_path)
                return
            self.schedule(field_path)

        return self.store.subscribe(on_change)

    def schedule(self, changed: str) -> asyncio.Task:
        """Run ``on_field_changed`` as a task on the running loop."""
        task = asyncio.get_running_loop().create_task(self.on_field_changed(changed))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def settle(self) -> None:
        """Wait until every scheduled recompute has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _rebuild(self, values: Mapping[str, Any], *, force: bool = False) -> bool:
        """Re-expand templates; rebuild the graph when the expanded set changed."""
        expanded = self._expander.expand(self._linkages, values)
        if not force and self._built and expanded == self._expanded:
            return False
        self._expanded = expanded
        self._graph = DependencyGraph.from_linkages(expanded)
        self._built = True
        self._log.extra["n_linkages"] = len(expanded)
        for stale in [path for path in self._results if path not in expanded]:
            del self._results[stale]
        return True

    def _handle_cycle(self, cycle: list[str]) -> None:
        self._log.error("Circular dependency detected: %s", " -> ".join(cycle))
        if self.on_cycle_detected is not None:
            self.on_cycle_detected(cycle)
        if self.settings.throw_on_cycle:
            raise CircularDependencyError(cycle)

    async def _full_cycle(self) -> LinkageResultMap:
        order = self._graph.topological_sort(list(self._expanded), on_cycle=self._handle_cycle)
        await self._run_cycle(order)
        return dict(self._results)

    async def _run_cycle(self, targets: list[str]) -> LinkageResultMap:
        """Evaluate ``targets`` in order against one snapshot.

        Every target gets a fresh timestamp up front; a target whose timestamp
        is superseded by a later cycle is skipped or its result dropped.
        """
        cycle_id = next(self._cycles)
        self._log.extra["cycle_id"] = cycle_id
        tokens = {path: self.queue.enqueue(path, targets) for path in targets}
        snapshot = copy.deepcopy(self.store.get_values())
        committed: LinkageResultMap = {}
        self._active_cycles += 1
        self.queue.processing = True
        try:
            for field_path in targets:
                token = tokens[field_path]
                config = self._expanded.get(field_path)
                if config is None:
                    self.queue.complete(field_path, token)
                    continue
                if not self.queue.is_task_valid(field_path, token):
                    self._log.debug("Skipping superseded task for %s (cycle %s)", field_path, cycle_id)
                    continue
                try:
                    result = await self._evaluate(field_path, config, snapshot)
                    if not self.queue.is_task_valid(field_path, token):
                        self._log.debug("Dropping stale result for %s (cycle %s)", field_path, cycle_id)
                        continue
                    self._commit(field_path, config, result, snapshot)
                except UnknownDerivationFunctionError as exc:
                    self._log.warning("%s; keeping previous state of %s", exc, field_path)
                    continue
                except DerivationFunctionError as exc:
                    self._log.warning("%s", exc)
                    continue
                except Exception as exc:
                    self._log.warning("Linkage for %s failed: %s", field_path, exc)
                    continue
                finally:
                    self.queue.complete(field_path, token)
                committed[field_path] = result
        finally:
            self._active_cycles -= 1
            self.queue.processing = self._active_cycles > 0
        self._log.info("Cycle %s committed %s of %s fields", cycle_id, len(committed), len(targets))
        return committed

    def _commit(self, field_path: str, config: LinkageConfig, result: LinkageResult, snapshot: dict) -> None:
        self._results[field_path] = result
        if config.type not in VALUE_LINKAGE_TYPES or result.value is None:
            return
        set_value(snapshot, field_path, result.value)
        if not self.settings.write_back:
            return
        current = get_value(self.store.get_values(), field_path)
        if values_equal(current, result.value):
            return
        with self.queue.updating(field_path):
            self.store.set_value(field_path, result.value, should_validate=False, should_dirty=False)
        self._log.debug("Wrote %s = %r", field_path, result.value)

    async def _evaluate(self, field_path: str, config: LinkageConfig, values: Mapping[str, Any]) -> LinkageResult:
        """Evaluate one relationship for one concrete field."""
        cache_key = None
        if self.settings.cache_results and not config.uses_function():
            cache_key = generate_cache_key(field_path, config.dependencies, values)
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached
        context = LinkageContext.for_field(field_path)
        fulfilled = await self._check_when(config, values, context)
        effect = config.fulfill if fulfilled else config.otherwise
        result = await self._apply_effect(config, effect, values, context)
        if cache_key is not None:
            self.cache.set(cache_key, result)
        return result

    async def _check_when(self, config: LinkageConfig, values: Mapping[str, Any], context: LinkageContext) -> bool:
        if config.when is None:
            return True
        if isinstance(config.when, str):
            try:
                return bool(await self.functions.call(config.when, values, context))
            except UnknownDerivationFunctionError as exc:
                self._log.warning("%s; treating condition of %s as false", exc, context.field_path)
                return False
        return ConditionEvaluator.evaluate(config.when, values)

    async def _apply_effect(
        self,
        config: LinkageConfig,
        effect: Effect | None,
        values: Mapping[str, Any],
        context: LinkageContext,
    ) -> LinkageResult:
        if effect is None:
            return LinkageResult()
        data: dict[str, Any] = dict(effect.state or {})
        if effect.function:
            computed = await self.functions.call(effect.function, values, context)
            self._route(context.field_path, config.type, computed, data)
        else:
            if effect.expression is not None:
                self._route(context.field_path, config.type, effect.expression.evaluate(values), data)
            elif effect.value is not None:
                data["value"] = effect.value
            if effect.options is not None:
                data["options"] = list(effect.options)
        return LinkageResult(**data)

    def _route(self, field_path: str, linkage_type: str, computed: Any, data: dict[str, Any]) -> None:
        """Store a computed value under the result key of ``linkage_type``."""
        if computed is None:
            return
        key = RESULT_ROUTING[linkage_type]
        if key in STATE_KEYS:
            data[key] = bool(computed)
        elif key == "options":
            if not isinstance(computed, (list, tuple)):
                self._log.warning(
                    "Ignoring options for %s: expected a list, got %s", field_path, type(computed).__name__
                )
                return
            data[key] = list(computed)
        else:
            data[key] = computed
