"""Backend connections the session delegates metadata and execution work to."""

from __future__ import annotations

import asyncio
import logging
import re
import threading
from typing import Any, Callable, Coroutine, Mapping, Protocol, Sequence, TypeVar, runtime_checkable

import asyncpg

from .models import BackendProfile, BackendRole, NativeConfSnapshot

LOG = logging.getLogger(__name__)

T = TypeVar("T")


class BackendError(RuntimeError):
    """Base class for failures reported by a backend connection."""


class BackendExecutionError(BackendError):
    """Raised when a statement is malformed or the backend is unreachable."""


class BackendConfigError(BackendError):
    """Raised when the backend rejects a configuration key or value."""


@runtime_checkable
class BackendConnection(Protocol):
    """Protocol implemented by metadata and execution backends."""

    @property
    def role(self) -> BackendRole:
        """Role this connection plays in the session."""

    @property
    def resources(self) -> tuple[str, ...]:
        """Resources registered with this connection, in registration order."""

    def run_statement(self, text: str) -> list[str]:
        """Run raw statement text and return its output lines."""

    def set_conf(self, key: str, value: str) -> None:
        """Apply ``SET key=value`` on the backend session."""

    def add_resource(self, path: str) -> None:
        """Make an external resource available to the backend session."""

    def native_conf(self) -> NativeConfSnapshot:
        """Read-only snapshot of the backend's native configuration."""


class AsyncpgBackendConnection:
    """Backend connection that talks to PostgreSQL via asyncpg.

    asyncpg is asynchronous; calls are funnelled through a private event loop thread
    so the session sees plain blocking calls.
    """

    _NATIVE_CONF_QUERY = "SELECT name, setting FROM pg_settings ORDER BY name"

    def __init__(
        self,
        profile: BackendProfile,
        role: BackendRole,
        *,
        connect_timeout: float = 3.0,
    ) -> None:
        self._profile = profile
        self._role = role
        self._connect_timeout = connect_timeout
        self._conn: Any | None = None
        self._resources: list[str] = []
        self._loop = asyncio.new_event_loop()
        self._loop_thread = threading.Thread(
            target=self._loop.run_forever,
            name=f"hivesession-{role.value}-backend",
            daemon=True,
        )
        self._loop_thread.start()

    @property
    def role(self) -> BackendRole:
        return self._role

    @property
    def resources(self) -> tuple[str, ...]:
        return tuple(self._resources)

    def run_statement(self, text: str) -> list[str]:
        statement = text.strip()
        if not statement:
            raise BackendExecutionError("Provide a statement to execute.")
        try:
            records = self._run(self._fetch(statement))
        except BackendError:
            raise
        except Exception as exc:
            raise BackendExecutionError(f"{self._role.value} backend failed: {exc}") from exc
        return [_record_to_line(record) for record in records]

    def set_conf(self, key: str, value: str) -> None:
        try:
            self._run(self._fetch("SELECT set_config($1, $2, false)", key, value))
        except Exception as exc:
            raise BackendConfigError(f"{self._role.value} backend rejected '{key}': {exc}") from exc

    def add_resource(self, path: str) -> None:
        quoted = path.replace("'", "''")
        self.run_statement(f"LOAD '{quoted}'")
        if path not in self._resources:
            self._resources.append(path)

    def native_conf(self) -> NativeConfSnapshot:
        try:
            records = self._run(self._fetch(self._NATIVE_CONF_QUERY))
        except Exception as exc:
            raise BackendExecutionError(f"Failed to read native configuration: {exc}") from exc
        return {str(record["name"]): str(record["setting"]) for record in records}

    def shutdown(self) -> None:
        """Close the connection and stop the background event loop."""

        if not self._loop.is_running():  # pragma: no cover - already stopped
            return
        if self._conn is not None:
            try:
                self._run(self._conn.close())
            except Exception:  # pragma: no cover - best effort cleanup
                LOG.debug("Failed to close backend connection", exc_info=True)
            self._conn = None
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._loop_thread.join(timeout=1)

    def _run(self, coro: Coroutine[Any, Any, T]) -> T:
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return future.result()

    async def _fetch(self, query: str, *args: object) -> Sequence[Any]:
        conn = await self._connection()
        return await conn.fetch(query, *args)

    async def _connection(self) -> Any:
        if self._conn is not None:
            return self._conn
        profile = self._profile
        kwargs: dict[str, object] = {}
        if profile.dsn:
            kwargs["dsn"] = profile.dsn
        else:
            kwargs["host"] = profile.host or "localhost"
            if profile.port is not None:
                kwargs["port"] = profile.port
            if profile.user:
                kwargs["user"] = profile.user
            if profile.database:
                kwargs["database"] = profile.database
        kwargs.setdefault("timeout", self._connect_timeout)
        try:
            self._conn = await asyncpg.connect(**kwargs)
        except Exception as exc:
            raise BackendExecutionError(f"Failed to connect to profile '{profile.name}': {exc}") from exc
        LOG.debug("Connected backend", extra={"role": self._role.value, "profile": profile.name})
        return self._conn


DEMO_NATIVE_CONF: Mapping[str, str] = {
    "hive.support.sql11.reserved.keywords": "true",
    "hive.exec.dynamic.partition": "true",
    "hive.exec.dynamic.partition.mode": "strict",
    "hive.metastore.warehouse.dir": "/user/hive/warehouse",
}

_SET_PATTERN = re.compile(r"set(?:\s+(?P<key>[^=\s]+)\s*(?:=(?P<value>.*))?)?\s*", re.IGNORECASE | re.DOTALL)
_CREATE_PATTERN = re.compile(
    r"create\s+(?:temporary\s+)?(?P<kind>function|macro)\s+(?P<name>[\w.]+)(?P<body>.*)",
    re.IGNORECASE | re.DOTALL,
)
_DROP_PATTERN = re.compile(
    r"drop\s+(?:temporary\s+)?(?P<kind>function|macro)\s+(?P<exists>if\s+exists\s+)?(?P<name>[\w.]+)\s*",
    re.IGNORECASE,
)
_ADD_PATTERN = re.compile(r"add\s+(?:jar|file|archive)\s+(?P<path>\S+)\s*", re.IGNORECASE)


class DemoBackendConnection:
    """In-memory backend that keeps its own session conf and function registry."""

    def __init__(
        self,
        profile: BackendProfile | None = None,
        role: BackendRole = BackendRole.EXECUTION,
        *,
        responses: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        self._profile = profile or BackendProfile(name=role.value)
        self._role = role
        self._conf: dict[str, str] = dict(self._profile.native_conf or DEMO_NATIVE_CONF)
        self._responses = {
            _normalize(statement): tuple(lines)
            for statement, lines in (responses or {}).items()
        }
        self._functions: dict[str, str] = {}
        self._resources: list[str] = []
        self.statements: list[str] = []

    @property
    def role(self) -> BackendRole:
        return self._role

    @property
    def resources(self) -> tuple[str, ...]:
        return tuple(self._resources)

    @property
    def functions(self) -> Mapping[str, str]:
        """Functions and macros registered through DDL (testing helper)."""

        return dict(self._functions)

    def run_statement(self, text: str) -> list[str]:
        statement = text.strip()
        if not statement:
            raise BackendExecutionError("Provide a statement to execute.")
        self.statements.append(text)
        # SET values keep their surrounding whitespace; canned responses never shadow SET.
        if match := _SET_PATTERN.fullmatch(text.lstrip()):
            return self._run_set(match.group("key"), match.group("value"))
        canned = self._responses.get(_normalize(statement))
        if canned is not None:
            return list(canned)
        if match := _CREATE_PATTERN.fullmatch(statement):
            self._functions[match.group("name").lower()] = match.group("body").strip()
            return []
        if match := _DROP_PATTERN.fullmatch(statement):
            name = match.group("name").lower()
            if name not in self._functions and not match.group("exists"):
                raise BackendExecutionError(f"{match.group('kind').title()} '{name}' does not exist")
            self._functions.pop(name, None)
            return []
        if match := _ADD_PATTERN.fullmatch(statement):
            self.add_resource(match.group("path"))
            return []
        if _normalize(statement) == "show functions":
            return sorted(self._functions)
        return []

    def set_conf(self, key: str, value: str) -> None:
        if not key or any(ch.isspace() or ch == "=" for ch in key):
            raise BackendConfigError(f"{self._role.value} backend rejected key '{key}'")
        try:
            self.run_statement(f"SET {key}={value}")
        except BackendExecutionError as exc:
            raise BackendConfigError(str(exc)) from exc

    def add_resource(self, path: str) -> None:
        if path not in self._resources:
            self._resources.append(path)

    def native_conf(self) -> NativeConfSnapshot:
        return dict(self._conf)

    def _run_set(self, key: str | None, value: str | None) -> list[str]:
        if key is None:
            return [f"{name}={setting}" for name, setting in sorted(self._conf.items())]
        if value is None:
            if key in self._conf:
                return [f"{key}={self._conf[key]}"]
            return [f"{key} is undefined"]
        self._conf[key] = value
        return []


BackendFactory = Callable[[BackendProfile, BackendRole], BackendConnection]


def create_backend(profile: BackendProfile, role: BackendRole) -> BackendConnection:
    """Build the backend connection described by ``profile``."""

    if profile.kind == "postgres":
        return AsyncpgBackendConnection(profile, role)
    if profile.kind == "demo":
        return DemoBackendConnection(profile, role)
    raise ValueError(f"Unknown backend kind '{profile.kind}' for profile '{profile.name}'.")


def _normalize(statement: str) -> str:
    return " ".join(statement.split()).lower()


def _record_to_line(record: Any) -> str:
    values = record.values() if hasattr(record, "values") else record
    return "\t".join("NULL" if value is None else str(value) for value in values)


__all__ = [
    "AsyncpgBackendConnection",
    "BackendConfigError",
    "BackendConnection",
    "BackendError",
    "BackendExecutionError",
    "BackendFactory",
    "DEMO_NATIVE_CONF",
    "DemoBackendConnection",
    "create_backend",
]
