"""Assembly of the analysis rule chain and the fixed-point analyzer."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Protocol, Sequence

from .catalog import cast_insert_query, parse_table_name
from .conf import CASE_SENSITIVE, RUN_SQL_ON_FILES, ConfStore
from .errors import AnalysisError, RuleChainConstructionError
from .plans import LogicalPlan, Rule, Strategy

LOG = logging.getLogger(__name__)

FILE_FORMATS = frozenset({"parquet", "orc", "json", "csv", "text"})

MAX_ITERATIONS = 100


class RuleContributor(Protocol):
    """Catalog surface the assembler depends on."""

    def contributed_analysis_rules(self) -> Sequence[Rule]: ...

    def embedded_strategies(self) -> Mapping[str, Strategy]: ...


def build_analysis_rules(catalog: RuleContributor, conf: ConfStore) -> tuple[Rule, ...]:
    """Ordered resolution rules: catalog rules, generic rules, then file resolution."""

    try:
        contributed = tuple(catalog.contributed_analysis_rules())
    except Exception as exc:
        raise RuleChainConstructionError(f"Catalog failed to contribute analysis rules: {exc}") from exc
    rules = contributed + (
        Rule("PreInsertCastAndRename", pre_insert_cast_and_rename),
        Rule("DataSourceAnalysis", data_source_analysis),
    )
    if conf.get_entry(RUN_SQL_ON_FILES):
        rules += (Rule("ResolveDataSource", resolve_data_source),)
    return rules


def build_check_rules(catalog: RuleContributor, conf: ConfStore) -> tuple[Rule, ...]:
    """Rules run once after resolution; they raise instead of rewriting."""

    case_sensitive = conf.get_entry(CASE_SENSITIVE)

    def _check(plan: LogicalPlan) -> LogicalPlan:
        pre_write_check(plan, case_sensitive=case_sensitive)
        return plan

    return (Rule("PreWriteCheck", _check),)


def pre_insert_cast_and_rename(plan: LogicalPlan) -> LogicalPlan:
    """Align an insert's query with a data source table's columns."""

    def _rule(n: LogicalPlan) -> LogicalPlan:
        target = n.attr("table")
        if n.kind != "InsertIntoTable" or target is None or target.kind != "LogicalRelation":
            return n
        (query,) = n.children
        expected = tuple(target.attr("columns") or ())
        actual = tuple(query.attr("output_names") or ())
        if expected and actual and len(expected) != len(actual):
            raise AnalysisError(
                f"{target.attr('table')} requires that the data to be inserted have the same "
                f"number of columns as the target table: target table has {len(expected)} "
                f"column(s) but the inserted data has {len(actual)} column(s)."
            )
        return cast_insert_query(n, target, rename=True)

    return plan.transform_up(_rule)


def data_source_analysis(plan: LogicalPlan) -> LogicalPlan:
    """Turn inserts into data source tables into write commands."""

    def _rule(n: LogicalPlan) -> LogicalPlan:
        target = n.attr("table")
        if n.kind != "InsertIntoTable" or target is None or target.kind != "LogicalRelation":
            return n
        attrs = {"table": target, "overwrite": bool(n.attr("overwrite", False))}
        if target.attr("format") in FILE_FORMATS:
            attrs.update(location=target.attr("location"), format=target.attr("format"))
            return LogicalPlan("InsertIntoHadoopFsRelationCommand", n.children, attrs)
        return LogicalPlan("InsertIntoDataSourceCommand", n.children, attrs)

    return plan.transform_up(_rule)


def resolve_data_source(plan: LogicalPlan) -> LogicalPlan:
    """Resolve ``format.`path``` references into direct file relations."""

    def _rule(n: LogicalPlan) -> LogicalPlan:
        if n.kind != "UnresolvedRelation":
            return n
        try:
            ident = parse_table_name(n.attr("name", ""))
        except ValueError:
            return n
        if ident.database is None or ident.database.lower() not in FILE_FORMATS:
            return n
        return LogicalPlan(
            "LogicalRelation",
            (),
            {"table": ident.table, "format": ident.database.lower(), "location": ident.table},
        )

    return plan.transform_up(_rule)


def pre_write_check(plan: LogicalPlan, *, case_sensitive: bool = False) -> None:
    """Reject writes that read from their own target."""

    for n in plan.walk():
        target = n.attr("table") if n.kind.startswith("Insert") else None
        if target is None:
            continue
        if target.kind not in {"LogicalRelation", "MetastoreRelation"}:
            raise AnalysisError(f"Inserting into {target.kind} is not allowed.")
        written = _relation_key(target, case_sensitive)
        for child in n.children:
            for scanned in child.walk():
                if scanned.kind in {"LogicalRelation", "MetastoreRelation"} and (
                    _relation_key(scanned, case_sensitive) == written
                ):
                    raise AnalysisError("Cannot insert overwrite into table that is also being read from.")


def _relation_key(relation: LogicalPlan, case_sensitive: bool) -> str:
    name = str(relation.attr("location") or relation.attr("table"))
    return name if case_sensitive else name.lower()


class Analyzer:
    """Applies resolution rules to a fixed point, then runs check rules."""

    def __init__(
        self,
        resolution_rules: Iterable[Rule],
        check_rules: Iterable[Rule] = (),
        *,
        max_iterations: int = MAX_ITERATIONS,
    ) -> None:
        self._resolution_rules = tuple(resolution_rules)
        self._check_rules = tuple(check_rules)
        self._max_iterations = max_iterations

    @property
    def resolution_rules(self) -> tuple[Rule, ...]:
        return self._resolution_rules

    @property
    def check_rules(self) -> tuple[Rule, ...]:
        return self._check_rules

    def execute(self, plan: LogicalPlan) -> LogicalPlan:
        """Return the resolved plan; raises ``AnalysisError`` on failed checks."""

        current = plan
        for iteration in range(1, self._max_iterations + 1):
            previous = current
            for rule in self._resolution_rules:
                current = rule(current)
            if current == previous:
                LOG.debug("Analysis reached fixed point", extra={"iterations": iteration})
                break
        else:
            LOG.warning("Analysis stopped before a fixed point", extra={"max_iterations": self._max_iterations})
        for rule in self._check_rules:
            current = rule(current)
        return current


__all__ = [
    "Analyzer",
    "FILE_FORMATS",
    "MAX_ITERATIONS",
    "RuleContributor",
    "build_analysis_rules",
    "build_check_rules",
    "data_source_analysis",
    "pre_insert_cast_and_rename",
    "pre_write_check",
    "resolve_data_source",
]
