"""Tests for analysis rule chain assembly and the analyzer."""

from __future__ import annotations

import pytest

from hivesession.conf import RUN_SQL_ON_FILES, ConfStore
from hivesession.config import SessionSettings
from hivesession.errors import AnalysisError, RuleChainConstructionError
from hivesession.plans import LogicalPlan, Rule, node, relation
from hivesession.rules import Analyzer, build_analysis_rules, build_check_rules
from hivesession.session import SessionContext, SessionState

CATALOG_RULES = ["ParquetConversions", "OrcConversions", "CreateTables", "PreInsertionCasts"]
GENERIC_RULES = ["PreInsertCastAndRename", "DataSourceAnalysis"]

PARQUET_SERDE = "org.apache.hadoop.hive.ql.io.parquet.serde.ParquetHiveSerDe"
ORC_SERDE = "org.apache.hadoop.hive.ql.io.orc.OrcSerde"


def _session(**conf: str) -> SessionState:
    return SessionState(SessionContext(settings=SessionSettings(conf=conf)))


class _BrokenCatalog:
    def contributed_analysis_rules(self) -> tuple[Rule, ...]:
        raise RuntimeError("metastore unavailable")

    def embedded_strategies(self) -> dict[str, object]:
        return {}


def test_rule_order_with_run_sql_on_files_enabled() -> None:
    session = _session()

    names = [rule.name for rule in session.resolution_rules]

    assert names == CATALOG_RULES + GENERIC_RULES + ["ResolveDataSource"]
    assert names.count("ResolveDataSource") == 1


def test_file_resolution_rule_absent_when_flag_disabled() -> None:
    session = _session(**{RUN_SQL_ON_FILES.key: "false"})

    names = [rule.name for rule in session.resolution_rules]

    assert names == CATALOG_RULES + GENERIC_RULES


def test_check_rules_follow_resolution() -> None:
    session = _session()

    assert [rule.name for rule in session.analyzer.check_rules] == ["PreWriteCheck"]


def test_catalog_failure_is_fatal_to_construction() -> None:
    with pytest.raises(RuleChainConstructionError):
        build_analysis_rules(_BrokenCatalog(), ConfStore())


def test_rule_chain_is_built_once() -> None:
    session = _session()

    first = session.resolution_rules
    session.set_conf(RUN_SQL_ON_FILES.key, "false")

    assert session.resolution_rules is first
    assert session.analyzer is session.analyzer


def test_parquet_metastore_relation_is_converted() -> None:
    session = _session()
    plan = node("Project", relation("MetastoreRelation", table="default.events", serde=PARQUET_SERDE))

    analyzed = session.analyzer.execute(plan)

    scan = analyzed.children[0]
    assert scan.kind == "LogicalRelation"
    assert scan.attr("format") == "parquet"
    assert scan.attr("merge_schema") is False


def test_orc_conversion_follows_flag() -> None:
    plan = relation("MetastoreRelation", table="default.logs", serde=ORC_SERDE)

    assert _session().analyzer.execute(plan).kind == "MetastoreRelation"
    converted = _session(**{"spark.sql.hive.convertMetastoreOrc": "true"}).analyzer.execute(plan)
    assert converted.kind == "LogicalRelation"
    assert converted.attr("format") == "orc"


def test_ctas_becomes_hive_table_with_warehouse_location() -> None:
    session = _session()
    plan = node("CreateTableAsSelect", relation("OneRowRelation"), table="Daily")

    analyzed = session.analyzer.execute(plan)

    assert analyzed.kind == "CreateHiveTableAsSelect"
    assert analyzed.attr("location") == "/user/hive/warehouse/daily"


def test_ctas_converted_to_data_source_table_when_enabled() -> None:
    session = _session(**{"spark.sql.hive.convertCTAS": "true", "spark.sql.sources.default": "orc"})
    plan = node("CreateTableAsSelect", relation("OneRowRelation"), table="sales.daily")

    analyzed = session.analyzer.execute(plan)

    assert analyzed.kind == "CreateDataSourceTableAsSelect"
    assert analyzed.attr("provider") == "orc"
    assert analyzed.attr("location") == "/user/hive/warehouse/sales.db/daily"


def test_ctas_with_serde_stays_hive_table() -> None:
    session = _session(**{"spark.sql.hive.convertCTAS": "true"})
    plan = node("CreateTableAsSelect", relation("OneRowRelation"), table="t", serde="LazySimpleSerDe")

    assert session.analyzer.execute(plan).kind == "CreateHiveTableAsSelect"


def test_insert_into_metastore_table_gets_casts() -> None:
    session = _session()
    target = relation("MetastoreRelation", table="default.t", serde="text", column_types=("int", "string"))
    query = relation("LocalRelation", output_types=("bigint", "string"))
    plan = node("InsertIntoTable", query, table=target)

    analyzed = session.analyzer.execute(plan)

    assert analyzed.kind == "InsertIntoTable"
    project = analyzed.children[0]
    assert project.kind == "Project"
    assert project.attr("casts") == ("int", "string")
    assert project.children[0] == query


def test_insert_into_file_relation_is_renamed_and_becomes_command() -> None:
    session = _session()
    target = relation(
        "LogicalRelation",
        table="default.events",
        format="parquet",
        location="/data/events",
        columns=("id", "name"),
        column_types=("int", "string"),
    )
    query = relation("LocalRelation", output_names=("x", "y"), output_types=("int", "string"))
    plan = node("InsertIntoTable", query, table=target, overwrite=True)

    analyzed = session.analyzer.execute(plan)

    assert analyzed.kind == "InsertIntoHadoopFsRelationCommand"
    assert analyzed.attr("location") == "/data/events"
    assert analyzed.attr("overwrite") is True
    assert analyzed.children[0].attr("output_names") == ("id", "name")


def test_insert_column_count_mismatch_is_rejected() -> None:
    session = _session()
    target = relation("LogicalRelation", table="t", format="parquet", columns=("a", "b"))
    plan = node("InsertIntoTable", relation("LocalRelation", output_names=("a",)), table=target)

    with pytest.raises(AnalysisError):
        session.analyzer.execute(plan)


def test_insert_into_generic_source_becomes_data_source_command() -> None:
    session = _session()
    target = relation("LogicalRelation", table="jdbc_table", format="jdbc")
    plan = node("InsertIntoTable", relation("LocalRelation"), table=target)

    assert session.analyzer.execute(plan).kind == "InsertIntoDataSourceCommand"


def test_query_on_file_is_resolved() -> None:
    session = _session()
    plan = node("Project", relation("UnresolvedRelation", name="parquet.`/tmp/events`"))

    analyzed = session.analyzer.execute(plan)

    scan = analyzed.children[0]
    assert scan.kind == "LogicalRelation"
    assert scan.attr("format") == "parquet"
    assert scan.attr("location") == "/tmp/events"


def test_query_on_file_left_alone_when_flag_disabled() -> None:
    session = _session(**{RUN_SQL_ON_FILES.key: "false"})
    plan = relation("UnresolvedRelation", name="parquet.`/tmp/events`")

    assert session.analyzer.execute(plan).kind == "UnresolvedRelation"


def test_regular_table_reference_is_not_treated_as_file() -> None:
    session = _session()
    plan = relation("UnresolvedRelation", name="sales.orders")

    assert session.analyzer.execute(plan).kind == "UnresolvedRelation"


def test_pre_write_check_rejects_insert_reading_its_target() -> None:
    session = _session()
    target = relation("MetastoreRelation", table="default.t", serde="text")
    plan = node("InsertIntoTable", node("Filter", target), table=target)

    with pytest.raises(AnalysisError, match="also being read from"):
        session.analyzer.execute(plan)


def test_pre_write_check_rejects_non_insertable_target() -> None:
    check = build_check_rules(_BrokenCatalog(), ConfStore())[0]
    plan = node("InsertIntoTable", relation("OneRowRelation"), table=relation("LocalRelation"))

    with pytest.raises(AnalysisError):
        check(plan)


def test_analyzer_stops_at_fixed_point() -> None:
    calls: list[str] = []

    def _count(plan: LogicalPlan) -> LogicalPlan:
        calls.append(plan.kind)
        return plan

    analyzer = Analyzer([Rule("Count", _count)])

    analyzer.execute(relation("OneRowRelation"))

    assert calls == ["OneRowRelation"]


def test_analyzer_gives_up_after_max_iterations() -> None:
    def _grow(plan: LogicalPlan) -> LogicalPlan:
        return plan.with_attrs(depth=plan.attr("depth", 0) + 1)

    analyzer = Analyzer([Rule("Grow", _grow)], max_iterations=5)

    assert analyzer.execute(relation("OneRowRelation")).attr("depth") == 5
