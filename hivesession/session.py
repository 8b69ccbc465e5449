"""Session state container wiring configuration, backends, catalog and rule chain."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, TypeVar

from .catalog import FunctionRegistry, SessionCatalog, TableIdentifier
from .conf import (
    CASE_SENSITIVE,
    CONVERT_CTAS,
    CONVERT_METASTORE_ORC,
    CONVERT_METASTORE_PARQUET,
    CONVERT_METASTORE_PARQUET_WITH_SCHEMA_MERGING,
    HIVE_THRIFT_SERVER_ASYNC,
    RESERVED_KEYWORDS_KEY,
    RUN_SQL_ON_FILES,
    ConfEntry,
    ConfStore,
    NativeConf,
)
from .config import SessionSettings
from .connections import BackendConnection, BackendFactory, create_backend
from .errors import ResourceRegistrationError
from .models import BackendRole
from .plans import LogicalPlan, PhysicalPlan, Rule, Strategy
from .resources import ResolutionContext, ResourceLoader, set_thread_resolution_context
from .routing import StatementRouter
from .rules import Analyzer, build_analysis_rules, build_check_rules
from .strategies import Planner, build_planning_strategies
from .sync import ConfSynchronizer

LOG = logging.getLogger(__name__)

T = TypeVar("T")

TableAnalyzer = Callable[[BackendConnection, TableIdentifier], None]


def analyze_table_statistics(backend: BackendConnection, table: TableIdentifier) -> None:
    """Ask the metadata backend to refresh size statistics for ``table``."""

    backend.run_statement(f"ANALYZE TABLE {table.qualified()} COMPUTE STATISTICS NOSCAN")


@dataclass(slots=True)
class SessionContext:
    """Collaborators shared by the sessions of one engine instance."""

    settings: SessionSettings = field(default_factory=SessionSettings)
    backend_factory: BackendFactory = create_backend
    resource_loader: ResourceLoader = field(default_factory=ResourceLoader)
    function_registry: FunctionRegistry = field(default_factory=FunctionRegistry)
    extra_strategies: list[Strategy] = field(default_factory=list)
    table_analyzer: TableAnalyzer = analyze_table_statistics

    def new_backend(self, role: BackendRole) -> BackendConnection:
        """Open a fresh backend session for ``role``."""

        profile = self.settings.profile_for(role).to_profile()
        return self.backend_factory(profile, role)


@dataclass(frozen=True, slots=True)
class QueryExecution:
    """Logical plan alongside its analyzed and physical forms."""

    logical: LogicalPlan
    analyzed: LogicalPlan
    physical: PhysicalPlan


class memoized(Generic[T]):
    """Build a member on first access, at most once per instance.

    The owning instance must provide a re-entrant ``_init_lock``; builders of later
    members read earlier ones while holding it.
    """

    def __init__(self, builder: Callable[[Any], T]) -> None:
        self._builder = builder
        self.__doc__ = builder.__doc__

    def __set_name__(self, owner: type, name: str) -> None:
        self._slot = f"_memo_{name}"

    def __get__(self, instance: Any, owner: type | None = None) -> T:
        if instance is None:
            return self  # type: ignore[return-value]
        values = instance.__dict__
        if self._slot in values:
            return values[self._slot]
        with instance._init_lock:
            if self._slot not in values:
                values[self._slot] = self._builder(instance)
            return values[self._slot]


class SessionState:
    """All session-specific state for one engine session.

    Members are built lazily in dependency order: configuration store, backend
    connections, native conf, synchronizer, catalog, then the rule chain. The
    container is meant for a single logical owner; callers serialise ``set_conf``,
    ``add_resource`` and statement execution on one instance.
    """

    def __init__(self, context: SessionContext | None = None) -> None:
        self._context = context or SessionContext()
        self._init_lock = threading.RLock()
        try:
            self.set_default_override_confs()
            for key, value in self._context.settings.conf.items():
                self.set_conf(key, value)
        except BaseException:
            self.close()
            raise

    @property
    def context(self) -> SessionContext:
        return self._context

    @memoized
    def conf(self) -> ConfStore:
        """Authoritative session configuration."""

        # Identifier resolution defaults to case-insensitive for these sessions.
        return ConfStore(default_overrides={CASE_SENSITIVE.key: "false"})

    @memoized
    def execution_backend(self) -> BackendConnection:
        """Backend used for direct statement execution."""

        return self._context.new_backend(BackendRole.EXECUTION)

    @memoized
    def metadata_backend(self) -> BackendConnection:
        """Backend used for metastore operations."""

        return self._context.new_backend(BackendRole.METADATA)

    @memoized
    def native_conf(self) -> NativeConf:
        """Backend-native configuration, seeded from the execution backend.

        Every native property is copied into the session conf on creation.
        """

        snapshot = dict(self.execution_backend.native_conf())
        self.conf._set_all(snapshot.items())
        return NativeConf(snapshot)

    @memoized
    def synchronizer(self) -> ConfSynchronizer:
        return ConfSynchronizer(self.conf, self.execution_backend, self.metadata_backend, self.native_conf)

    @memoized
    def catalog(self) -> SessionCatalog:
        """Catalog bound to the metadata backend."""

        return SessionCatalog(
            self.metadata_backend,
            self._context,
            self._context.resource_loader,
            self._context.function_registry,
            self.conf,
            self.native_conf,
        )

    @memoized
    def analyzer(self) -> Analyzer:
        """Analyzer using the catalog-aware resolution rules."""

        return Analyzer(
            build_analysis_rules(self.catalog, self.conf),
            build_check_rules(self.catalog, self.conf),
        )

    @memoized
    def planner(self) -> Planner:
        """Planner with experimental strategies ahead of the built-in chain."""

        return Planner(
            build_planning_strategies(self.conf, self._context.extra_strategies, catalog=self.catalog)
        )

    @memoized
    def router(self) -> StatementRouter:
        return StatementRouter(self.metadata_backend, self.execution_backend)

    @property
    def resolution_rules(self) -> tuple[Rule, ...]:
        return self.analyzer.resolution_rules

    @property
    def planning_strategies(self) -> tuple[Strategy, ...]:
        return self.planner.strategies

    def set_default_override_confs(self) -> None:
        """Keep backend defaults from changing how statements are parsed.

        SQL11 reserved keywords stay usable as identifiers.
        """

        self.set_conf(RESERVED_KEYWORDS_KEY, "false")

    def set_conf(self, key: str, value: str) -> None:
        """Set ``key`` in the session conf, both backends and the native conf."""

        self.synchronizer.set_conf(key, value)

    def get_conf(self, key: str, default: str | None = None) -> str | None:
        return self.conf.get(key, default)

    def get_entry(self, entry: ConfEntry[T]) -> T:
        return self.conf.get_entry(entry)

    def get_all_confs(self) -> dict[str, str]:
        return self.conf.get_all()

    def add_resource(self, path: str) -> None:
        """Register a resource locally and with both backends.

        Side effect: replaces the calling thread's resolution context with the
        execution backend's resources. This is thread-wide and never rolled back.
        """

        self._context.resource_loader.add_resource(path)
        accepted: list[str] = []
        failures: dict[str, BaseException] = {}
        for backend in (self.execution_backend, self.metadata_backend):
            try:
                backend.add_resource(path)
            except Exception as exc:
                failures[backend.role.value] = exc
            else:
                accepted.append(backend.role.value)
        set_thread_resolution_context(
            ResolutionContext(source=BackendRole.EXECUTION, resources=self.execution_backend.resources)
        )
        if failures:
            LOG.warning(
                "Resource registered on some backends only",
                extra={"path": path, "accepted": tuple(accepted), "failed": tuple(failures)},
            )
            raise ResourceRegistrationError(path, accepted=accepted, failures=failures)

    def analyze(self, table_name: str) -> None:
        """Refresh backend-side size statistics for a table in the current database."""

        self.catalog.analyze_table(table_name)

    def run_native_sql(self, sql: str) -> list[str]:
        """Pass statement text straight to the backend(s) chosen by its category."""

        return self.router.route(sql)

    def execute_plan(self, plan: LogicalPlan) -> QueryExecution:
        analyzed = self.analyzer.execute(plan)
        return QueryExecution(logical=plan, analyzed=analyzed, physical=self.planner.plan(analyzed))

    def close(self) -> None:
        """Shut down backends that were opened by this session."""

        for slot in ("_memo_execution_backend", "_memo_metadata_backend"):
            backend = self.__dict__.get(slot)
            shutdown = getattr(backend, "shutdown", None)
            if shutdown is not None:
                shutdown()

    @property
    def convert_metastore_parquet(self) -> bool:
        """Scan parquet SerDe tables with the built-in parquet source (default true)."""

        return self.conf.get_entry(CONVERT_METASTORE_PARQUET)

    @property
    def convert_metastore_parquet_with_schema_merging(self) -> bool:
        """Merge compatible parquet schemas across files (default false).

        Only effective when ``convert_metastore_parquet`` is true.
        """

        return self.conf.get_entry(CONVERT_METASTORE_PARQUET_WITH_SCHEMA_MERGING)

    @property
    def convert_metastore_orc(self) -> bool:
        """Scan ORC SerDe tables with the built-in ORC source (default false)."""

        return self.conf.get_entry(CONVERT_METASTORE_ORC)

    @property
    def convert_ctas(self) -> bool:
        """Create CTAS targets without storage clauses as data source tables (default false)."""

        return self.conf.get_entry(CONVERT_CTAS)

    @property
    def hive_thrift_server_async(self) -> bool:
        """Run thrift server queries on a thread pool (default true)."""

        return self.conf.get_entry(HIVE_THRIFT_SERVER_ASYNC)

    @property
    def hive_thrift_server_single_session(self) -> bool:
        return self._context.settings.thrift_server_single_session

    @property
    def case_sensitive_analysis(self) -> bool:
        return self.conf.get_entry(CASE_SENSITIVE)

    @property
    def run_sql_on_file(self) -> bool:
        return self.conf.get_entry(RUN_SQL_ON_FILES)


__all__ = [
    "QueryExecution",
    "SessionContext",
    "SessionState",
    "analyze_table_statistics",
    "memoized",
]
