"""Planning strategies and the ordered planner that tries them."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Sequence

from .conf import AUTO_BROADCAST_JOIN_THRESHOLD, ConfStore
from .errors import PlanningError, RuleChainConstructionError
from .plans import LogicalPlan, PhysicalPlan, Strategy
from .rules import FILE_FORMATS, RuleContributor

LOG = logging.getLogger(__name__)

TERMINAL_STRATEGY = "DefaultJoin"

# Fallback order after any experimental strategies. The terminal strategy stays last.
STRATEGY_ORDER = (
    "FileSourceStrategy",
    "DataSourceStrategy",
    "HiveCommandStrategy",
    "HiveDDLStrategy",
    "DDLStrategy",
    "SpecialLimits",
    "InMemoryScans",
    "HiveTableScans",
    "DataSinks",
    "Scripts",
    "Aggregation",
    "ExistenceJoin",
    "EquiJoinSelection",
    "BasicOperators",
    "BroadcastNestedLoop",
    "CartesianProduct",
    "DefaultJoin",
)

EXISTENCE_JOIN_TYPES = frozenset({"left_semi", "left_anti", "existence"})

BASIC_OPERATORS: Mapping[str, str] = {
    "Project": "ProjectExec",
    "Filter": "FilterExec",
    "Sort": "SortExec",
    "Union": "UnionExec",
    "Limit": "GlobalLimitExec",
    "Distinct": "HashAggregateExec",
    "LocalRelation": "LocalTableScanExec",
    "OneRowRelation": "RDDScanExec",
    "Range": "RangeExec",
    "Window": "WindowExec",
    "Expand": "ExpandExec",
    "Generate": "GenerateExec",
    "Sample": "SampleExec",
    "Repartition": "ShuffleExchangeExec",
}


def _file_source(plan: LogicalPlan) -> tuple[str, ...]:
    if plan.kind == "LogicalRelation" and plan.attr("format") in FILE_FORMATS:
        return ("FileSourceScanExec",)
    return ()


def _data_source(plan: LogicalPlan) -> tuple[str, ...]:
    if plan.kind == "LogicalRelation":
        return ("DataSourceScanExec",)
    if plan.kind == "InsertIntoDataSourceCommand":
        return ("ExecutedCommandExec",)
    return ()


def _ddl(plan: LogicalPlan) -> tuple[str, ...]:
    if plan.kind in {"CreateDataSourceTableAsSelect", "CreateTableUsing", "CreateTempViewUsing"}:
        return ("ExecutedCommandExec",)
    return ()


def _special_limits(plan: LogicalPlan) -> tuple[str, ...]:
    if plan.kind != "Limit" or not plan.attr("top", False):
        return ()
    if plan.children and plan.children[0].kind == "Sort":
        return ("TakeOrderedAndProjectExec",)
    return ("CollectLimitExec",)


def _in_memory_scans(plan: LogicalPlan) -> tuple[str, ...]:
    if plan.kind == "InMemoryRelation":
        return ("InMemoryTableScanExec",)
    return ()


def _aggregation(plan: LogicalPlan) -> tuple[str, ...]:
    if plan.kind != "Aggregate":
        return ()
    if plan.attr("distinct_aggregates", False):
        return ("SortAggregateExec",)
    return ("HashAggregateExec",)


def can_broadcast(plan: LogicalPlan, threshold: int) -> bool:
    """Whether a join side is hinted or small enough to broadcast."""

    if plan.attr("broadcastable", False):
        return True
    size = plan.attr("size_in_bytes")
    return threshold > 0 and size is not None and 0 <= size <= threshold


def _existence_join(plan: LogicalPlan) -> tuple[str, ...]:
    if plan.kind == "Join" and plan.attr("join_type") in EXISTENCE_JOIN_TYPES and plan.attr("equi_keys"):
        return ("ShuffledHashJoinExec",)
    return ()


def _equi_join(threshold: int) -> Strategy:
    def _apply(plan: LogicalPlan) -> tuple[str, ...]:
        if plan.kind != "Join" or not plan.attr("equi_keys"):
            return ()
        if any(can_broadcast(child, threshold) for child in plan.children):
            return ("BroadcastHashJoinExec",)
        return ("SortMergeJoinExec",)

    return Strategy("EquiJoinSelection", _apply)


def _basic_operators(plan: LogicalPlan) -> tuple[str, ...]:
    operator = BASIC_OPERATORS.get(plan.kind)
    if operator is not None:
        return (operator,)
    if plan.kind.endswith("Command"):
        return ("ExecutedCommandExec",)
    return ()


def _broadcast_nested_loop(threshold: int) -> Strategy:
    def _apply(plan: LogicalPlan) -> tuple[str, ...]:
        if plan.kind == "Join" and any(can_broadcast(child, threshold) for child in plan.children):
            return ("BroadcastNestedLoopJoinExec",)
        return ()

    return Strategy("BroadcastNestedLoop", _apply)


def _cartesian_product(plan: LogicalPlan) -> tuple[str, ...]:
    if plan.kind == "Join" and plan.attr("join_type", "inner") == "inner" and not plan.attr("condition"):
        return ("CartesianProductExec",)
    return ()


def _default_join(plan: LogicalPlan) -> tuple[str, ...]:
    # Plans every node so the chain is total.
    if plan.kind == "Join":
        return ("BroadcastNestedLoopJoinExec",)
    return (f"{plan.kind}Exec",)


BUILTIN_STRATEGIES: Mapping[str, Strategy] = {
    strategy.name: strategy
    for strategy in (
        Strategy("FileSourceStrategy", _file_source),
        Strategy("DataSourceStrategy", _data_source),
        Strategy("DDLStrategy", _ddl),
        Strategy("SpecialLimits", _special_limits),
        Strategy("InMemoryScans", _in_memory_scans),
        Strategy("Aggregation", _aggregation),
        Strategy("ExistenceJoin", _existence_join),
        Strategy("BasicOperators", _basic_operators),
        Strategy("CartesianProduct", _cartesian_product),
        Strategy("DefaultJoin", _default_join),
    )
}


def build_planning_strategies(
    conf: ConfStore,
    extra_strategies: Iterable[Strategy] = (),
    *,
    catalog: RuleContributor,
) -> tuple[Strategy, ...]:
    """Experimental strategies first, then the fixed fallback sequence."""

    threshold = conf.get_entry(AUTO_BROADCAST_JOIN_THRESHOLD)
    builtin = dict(BUILTIN_STRATEGIES)
    for strategy in (_equi_join(threshold), _broadcast_nested_loop(threshold)):
        builtin[strategy.name] = strategy
    try:
        embedded = dict(catalog.embedded_strategies())
    except Exception as exc:
        raise RuleChainConstructionError(f"Catalog failed to contribute strategies: {exc}") from exc
    fallback: list[Strategy] = []
    for name in STRATEGY_ORDER:
        if name == TERMINAL_STRATEGY:
            strategy = builtin[name]
        else:
            strategy = embedded.get(name) or builtin.get(name)
        if strategy is None:
            raise RuleChainConstructionError(f"No planning strategy named '{name}'")
        fallback.append(strategy)
    return tuple(extra_strategies) + tuple(fallback)


class Planner:
    """Picks, per node, the first strategy producing a physical operator."""

    def __init__(self, strategies: Sequence[Strategy]) -> None:
        self._strategies = tuple(strategies)

    @property
    def strategies(self) -> tuple[Strategy, ...]:
        return self._strategies

    def plan(self, logical: LogicalPlan) -> PhysicalPlan:
        for strategy in self._strategies:
            candidates = strategy(logical)
            if candidates:
                children = tuple(self.plan(child) for child in logical.children)
                return PhysicalPlan(candidates[0], logical, children, strategy=strategy.name)
        LOG.warning("No strategy planned node", extra={"kind": logical.kind})
        raise PlanningError(f"No plan for {logical.kind}")


__all__ = [
    "BASIC_OPERATORS",
    "BUILTIN_STRATEGIES",
    "Planner",
    "STRATEGY_ORDER",
    "TERMINAL_STRATEGY",
    "build_planning_strategies",
    "can_broadcast",
]
