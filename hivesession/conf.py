"""Session configuration store, typed entries and the backend-native conf object."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

T = TypeVar("T")


def _to_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise ValueError(f"Expected 'true' or 'false', got '{value}'")


@dataclass(frozen=True, slots=True)
class ConfEntry(Generic[T]):
    """Typed, documented session setting."""

    key: str
    default: T
    doc: str
    converter: Callable[[str], T]


def bool_entry(key: str, default: bool, doc: str) -> ConfEntry[bool]:
    return ConfEntry(key=key, default=default, doc=doc, converter=_to_bool)


def int_entry(key: str, default: int, doc: str) -> ConfEntry[int]:
    return ConfEntry(key=key, default=default, doc=doc, converter=int)


def str_entry(key: str, default: str, doc: str) -> ConfEntry[str]:
    return ConfEntry(key=key, default=default, doc=doc, converter=str)


RESERVED_KEYWORDS_KEY = "hive.support.sql11.reserved.keywords"

CONVERT_METASTORE_PARQUET = bool_entry(
    "spark.sql.hive.convertMetastoreParquet",
    True,
    "When true, metastore tables using the parquet SerDe are scanned with the built-in "
    "parquet source instead of the backend SerDe.",
)
CONVERT_METASTORE_PARQUET_WITH_SCHEMA_MERGING = bool_entry(
    "spark.sql.hive.convertMetastoreParquet.mergeSchema",
    False,
    "When true, merge compatible parquet schemas found across data files. Only effective "
    "when convertMetastoreParquet is true.",
)
CONVERT_METASTORE_ORC = bool_entry(
    "spark.sql.hive.convertMetastoreOrc",
    False,
    "When true, metastore tables using the ORC SerDe are scanned with the built-in ORC source.",
)
CONVERT_CTAS = bool_entry(
    "spark.sql.hive.convertCTAS",
    False,
    "When true, a CTAS statement without a storage clause creates a data source table "
    "using spark.sql.sources.default.",
)
HIVE_THRIFT_SERVER_ASYNC = bool_entry(
    "spark.sql.hive.thriftServer.async",
    True,
    "When true, the thrift server runs queries asynchronously on a thread pool.",
)
RUN_SQL_ON_FILES = bool_entry(
    "spark.sql.runSQLOnFiles",
    True,
    "When true, `format`.`path` table references query files directly.",
)
CASE_SENSITIVE = bool_entry(
    "spark.sql.caseSensitive",
    True,
    "Whether identifier resolution is case sensitive.",
)
DEFAULT_DATA_SOURCE_NAME = str_entry(
    "spark.sql.sources.default",
    "parquet",
    "Data source used when a table is created without an explicit provider.",
)
AUTO_BROADCAST_JOIN_THRESHOLD = int_entry(
    "spark.sql.autoBroadcastJoinThreshold",
    10 * 1024 * 1024,
    "Maximum size in bytes of a join side that is broadcast. -1 disables broadcasting.",
)


KNOWN_ENTRIES: Mapping[str, ConfEntry[object]] = {
    entry.key: entry
    for entry in (
        CONVERT_METASTORE_PARQUET,
        CONVERT_METASTORE_PARQUET_WITH_SCHEMA_MERGING,
        CONVERT_METASTORE_ORC,
        CONVERT_CTAS,
        HIVE_THRIFT_SERVER_ASYNC,
        RUN_SQL_ON_FILES,
        CASE_SENSITIVE,
        DEFAULT_DATA_SOURCE_NAME,
        AUTO_BROADCAST_JOIN_THRESHOLD,
    )
}


def check_value(key: str, value: str) -> None:
    """Raise ``ValueError`` when ``value`` is not valid for a known typed entry."""

    entry = KNOWN_ENTRIES.get(key)
    if entry is None:
        return
    try:
        entry.converter(value)
    except ValueError as exc:
        raise ValueError(f"Invalid value for {key}: {exc}") from exc


class ConfStore:
    """Ordered key/value settings with entry defaults layered beneath.

    Reads are public. Writes go through ``_set``/``_set_all`` which only the
    configuration synchronizer calls.
    """

    def __init__(self, default_overrides: Mapping[str, str] | None = None) -> None:
        self._settings: dict[str, str] = {}
        self._default_overrides: dict[str, str] = dict(default_overrides or {})

    def get(self, key: str, default: str | None = None) -> str | None:
        """Return the raw value for ``key`` or ``default`` when unset."""

        if key in self._settings:
            return self._settings[key]
        return self._default_overrides.get(key, default)

    def get_entry(self, entry: ConfEntry[T]) -> T:
        """Return the typed value for ``entry``, falling back to its default."""

        raw = self.get(entry.key)
        if raw is None:
            return entry.default
        return entry.converter(raw)

    def contains(self, key: str) -> bool:
        return key in self._settings

    def get_all(self) -> dict[str, str]:
        """Snapshot of explicitly set values, in insertion order."""

        return dict(self._settings)

    def __len__(self) -> int:
        return len(self._settings)

    def _set(self, key: str, value: str) -> None:
        if key is None or value is None:
            raise ValueError("Configuration keys and values must not be None")
        # Re-inserting moves the key to the end so iteration reflects write order.
        self._settings.pop(key, None)
        self._settings[key] = value

    def _set_all(self, entries: Iterable[tuple[str, str]]) -> None:
        for key, value in entries:
            self._set(key, value)


class NativeConf:
    """Backend-native configuration object derived from the execution backend."""

    def __init__(self, properties: Mapping[str, str] | None = None) -> None:
        self._properties: dict[str, str] = dict(properties or {})

    def get(self, key: str, default: str | None = None) -> str | None:
        return self._properties.get(key, default)

    def all_properties(self) -> dict[str, str]:
        return dict(self._properties)

    def _set(self, key: str, value: str) -> None:
        self._properties[key] = value


__all__ = [
    "AUTO_BROADCAST_JOIN_THRESHOLD",
    "CASE_SENSITIVE",
    "CONVERT_CTAS",
    "CONVERT_METASTORE_ORC",
    "CONVERT_METASTORE_PARQUET",
    "CONVERT_METASTORE_PARQUET_WITH_SCHEMA_MERGING",
    "ConfEntry",
    "ConfStore",
    "DEFAULT_DATA_SOURCE_NAME",
    "HIVE_THRIFT_SERVER_ASYNC",
    "KNOWN_ENTRIES",
    "NativeConf",
    "RESERVED_KEYWORDS_KEY",
    "RUN_SQL_ON_FILES",
    "bool_entry",
    "check_value",
    "int_entry",
    "str_entry",
]
