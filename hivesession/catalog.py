"""Session catalog and the rules/strategies it contributes to the rule chain."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Mapping

from sqlglot import exp
from sqlglot.errors import SqlglotError

from .conf import (
    CASE_SENSITIVE,
    CONVERT_CTAS,
    CONVERT_METASTORE_ORC,
    CONVERT_METASTORE_PARQUET,
    CONVERT_METASTORE_PARQUET_WITH_SCHEMA_MERGING,
    DEFAULT_DATA_SOURCE_NAME,
    ConfStore,
    NativeConf,
)
from .connections import BackendConnection
from .plans import LogicalPlan, Rule, Strategy, node
from .resources import ResourceLoader

if TYPE_CHECKING:
    from .session import SessionContext

LOG = logging.getLogger(__name__)

DEFAULT_DATABASE = "default"
WAREHOUSE_DIR_KEY = "hive.metastore.warehouse.dir"
DEFAULT_WAREHOUSE_DIR = "/user/hive/warehouse"

# Storage formats that can be read without the backend SerDe.
CTAS_CONVERTIBLE_FORMATS = frozenset({"textfile", "sequencefile"})


@dataclass(frozen=True, slots=True)
class TableIdentifier:
    """Parsed ``[database.]table`` reference."""

    table: str
    database: str | None = None

    def qualified(self) -> str:
        if self.database:
            return f"{self.database}.{self.table}"
        return self.table


def parse_table_name(name: str, *, dialect: str = "hive") -> TableIdentifier:
    """Parse a possibly quoted, possibly qualified table name."""

    if not name or not name.strip():
        raise ValueError("Table name must not be empty")
    try:
        table = exp.to_table(name.strip(), dialect=dialect)
    except SqlglotError as exc:
        raise ValueError(f"Invalid table name '{name}': {exc}") from exc
    return TableIdentifier(table=table.name, database=table.db or None)


class FunctionRegistry:
    """Functions known to the session, keyed by lower-cased name."""

    def __init__(self, functions: Mapping[str, str] | None = None) -> None:
        self._functions: dict[str, str] = {}
        for name, description in (functions or {}).items():
            self.register(name, description)

    def register(self, name: str, description: str = "") -> None:
        self._functions[name.lower()] = description

    def lookup(self, name: str) -> str | None:
        return self._functions.get(name.lower())

    def names(self) -> tuple[str, ...]:
        return tuple(sorted(self._functions))


class SessionCatalog:
    """Catalog bound to the metadata backend of a single session."""

    def __init__(
        self,
        metadata_backend: BackendConnection,
        context: SessionContext,
        resource_loader: ResourceLoader,
        function_registry: FunctionRegistry,
        conf: ConfStore,
        native_conf: NativeConf,
    ) -> None:
        self._metadata = metadata_backend
        self._context = context
        self._resource_loader = resource_loader
        self._functions = function_registry
        self._conf = conf
        self._native_conf = native_conf
        self._current_database = DEFAULT_DATABASE

    @property
    def current_database(self) -> str:
        return self._current_database

    def set_current_database(self, database: str) -> None:
        self._current_database = self._normalize(database)

    def qualify(self, name: str) -> TableIdentifier:
        """Resolve ``name`` against the current database."""

        ident = parse_table_name(name)
        return TableIdentifier(
            table=self._normalize(ident.table),
            database=self._normalize(ident.database) if ident.database else self._current_database,
        )

    @property
    def resources(self) -> tuple[str, ...]:
        """Resources registered with the session, in registration order."""

        return self._resource_loader.paths

    def analyze_table(self, name: str) -> TableIdentifier:
        """Refresh backend statistics for ``name`` and return the resolved identifier."""

        table = self.qualify(name)
        self._context.table_analyzer(self._metadata, table)
        return table

    def lookup_function(self, name: str) -> str | None:
        return self._functions.lookup(name)

    def list_functions(self) -> tuple[str, ...]:
        """Functions from the local registry and the metadata backend."""

        names = set(self._functions.names())
        for line in self._metadata.run_statement("SHOW FUNCTIONS"):
            if line.strip():
                names.add(line.strip().lower())
        return tuple(sorted(names))

    def default_table_location(self, ident: TableIdentifier) -> str:
        """Warehouse path a managed table is created under."""

        warehouse = self._native_conf.get(WAREHOUSE_DIR_KEY, DEFAULT_WAREHOUSE_DIR).rstrip("/")
        if ident.database and ident.database != DEFAULT_DATABASE:
            return f"{warehouse}/{ident.database}.db/{ident.table}"
        return f"{warehouse}/{ident.table}"

    def contributed_analysis_rules(self) -> tuple[Rule, ...]:
        """Format-conversion rules, then table creation and insertion casts."""

        return (
            Rule("ParquetConversions", self._convert_parquet),
            Rule("OrcConversions", self._convert_orc),
            Rule("CreateTables", self._create_tables),
            Rule("PreInsertionCasts", self._pre_insertion_casts),
        )

    def embedded_strategies(self) -> Mapping[str, Strategy]:
        """Backend-specific planning strategies, by name."""

        strategies = (
            Strategy("HiveCommandStrategy", _hive_commands),
            Strategy("HiveDDLStrategy", _hive_ddl),
            Strategy("HiveTableScans", _hive_table_scans),
            Strategy("DataSinks", _data_sinks),
            Strategy("Scripts", _scripts),
        )
        return {strategy.name: strategy for strategy in strategies}

    def _normalize(self, name: str) -> str:
        if self._conf.get_entry(CASE_SENSITIVE):
            return name
        return name.lower()

    def _convert_parquet(self, plan: LogicalPlan) -> LogicalPlan:
        if not self._conf.get_entry(CONVERT_METASTORE_PARQUET):
            return plan
        merge_schema = self._conf.get_entry(CONVERT_METASTORE_PARQUET_WITH_SCHEMA_MERGING)
        return plan.transform_up(lambda n: _convert_serde(n, "parquet", merge_schema=merge_schema))

    def _convert_orc(self, plan: LogicalPlan) -> LogicalPlan:
        if not self._conf.get_entry(CONVERT_METASTORE_ORC):
            return plan
        return plan.transform_up(lambda n: _convert_serde(n, "orc"))

    def _create_tables(self, plan: LogicalPlan) -> LogicalPlan:
        convert = self._conf.get_entry(CONVERT_CTAS)
        provider = self._conf.get_entry(DEFAULT_DATA_SOURCE_NAME)

        def _rule(n: LogicalPlan) -> LogicalPlan:
            if n.kind != "CreateTableAsSelect":
                return n
            file_format = (n.attr("file_format") or "textfile").lower()
            if not n.attr("location"):
                n = n.with_attrs(location=self.default_table_location(self.qualify(n.attr("table"))))
            if convert and not n.attr("serde") and file_format in CTAS_CONVERTIBLE_FORMATS:
                return LogicalPlan("CreateDataSourceTableAsSelect", n.children, {**n.attrs, "provider": provider})
            return LogicalPlan("CreateHiveTableAsSelect", n.children, dict(n.attrs))

        return plan.transform_up(_rule)

    def _pre_insertion_casts(self, plan: LogicalPlan) -> LogicalPlan:
        def _rule(n: LogicalPlan) -> LogicalPlan:
            target = n.attr("table")
            if n.kind != "InsertIntoTable" or target is None or target.kind != "MetastoreRelation":
                return n
            return cast_insert_query(n, target, rename=False)

        return plan.transform_up(_rule)


def cast_insert_query(insert: LogicalPlan, target: LogicalPlan, *, rename: bool) -> LogicalPlan:
    """Wrap the insert's query in a casting projection when its types differ."""

    (query,) = insert.children
    expected_types = tuple(target.attr("column_types") or ())
    actual_types = tuple(query.attr("output_types") or ())
    if not expected_types or not actual_types:
        return insert
    names = tuple(target.attr("columns") or ())
    needs_rename = rename and names and tuple(query.attr("output_names") or ()) != names
    if expected_types == actual_types and not needs_rename:
        return insert
    attrs: dict[str, object] = {"casts": expected_types, "output_types": expected_types}
    if rename and names:
        attrs["output_names"] = names
    return insert.with_children((node("Project", query, **attrs),))


def _convert_serde(n: LogicalPlan, file_format: str, *, merge_schema: bool = False) -> LogicalPlan:
    if n.kind != "MetastoreRelation" or file_format not in (n.attr("serde") or "").lower():
        return n
    attrs = {
        "table": n.attr("table"),
        "format": file_format,
        "location": n.attr("location"),
        "columns": n.attr("columns"),
        "column_types": n.attr("column_types"),
    }
    if file_format == "parquet":
        attrs["merge_schema"] = merge_schema
    LOG.debug("Converted metastore relation", extra={"table": n.attr("table"), "format": file_format})
    return LogicalPlan("LogicalRelation", (), attrs)


def _hive_commands(plan: LogicalPlan) -> tuple[str, ...]:
    target = plan.attr("table")
    if plan.kind == "DescribeTable" and target is not None and target.kind == "MetastoreRelation":
        return ("DescribeHiveTableExec",)
    if plan.kind == "NativeCommand":
        return ("NativeCommandExec",)
    return ()


def _hive_ddl(plan: LogicalPlan) -> tuple[str, ...]:
    if plan.kind == "CreateHiveTableAsSelect":
        return ("CreateHiveTableAsSelectExec",)
    return ()


def _hive_table_scans(plan: LogicalPlan) -> tuple[str, ...]:
    if plan.kind == "MetastoreRelation":
        return ("HiveTableScanExec",)
    return ()


def _data_sinks(plan: LogicalPlan) -> tuple[str, ...]:
    target = plan.attr("table")
    if plan.kind == "InsertIntoTable" and target is not None and target.kind == "MetastoreRelation":
        return ("InsertIntoHiveTableExec",)
    return ()


def _scripts(plan: LogicalPlan) -> tuple[str, ...]:
    if plan.kind == "ScriptTransformation":
        return ("ScriptTransformationExec",)
    return ()


__all__ = [
    "DEFAULT_DATABASE",
    "FunctionRegistry",
    "SessionCatalog",
    "TableIdentifier",
    "cast_insert_query",
    "parse_table_name",
]
