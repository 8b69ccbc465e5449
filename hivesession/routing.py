"""Statement classification and backend routing."""

from __future__ import annotations

import logging
import re
from enum import Enum

from .connections import BackendConnection
from .errors import StatementRoutingError

LOG = logging.getLogger(__name__)

_FUNCTION_OR_MACRO_DDL = re.compile(
    r".*(create|drop)\s+(temporary\s+)?(function|macro).+",
    re.DOTALL,
)


class StatementCategory(str, Enum):
    """Closed set of categories raw statements are routed by."""

    DDL_FUNCTION_OR_MACRO = "ddl_function_or_macro"
    SET_COMMAND = "set_command"
    OTHER = "other"


def classify(statement: str) -> StatementCategory:
    """Classify statement text; case-insensitive and blind to surrounding whitespace."""

    command = statement.strip().lower()
    if _FUNCTION_OR_MACRO_DDL.fullmatch(command):
        return StatementCategory.DDL_FUNCTION_OR_MACRO
    if command.startswith("set"):
        return StatementCategory.SET_COMMAND
    return StatementCategory.OTHER


class StatementRouter:
    """Dispatches raw statements to the metadata and/or execution backend."""

    def __init__(self, metadata: BackendConnection, execution: BackendConnection) -> None:
        self._metadata = metadata
        self._execution = execution

    def targets_for(self, category: StatementCategory) -> tuple[BackendConnection, ...]:
        """Backends receiving a statement of ``category``, in dispatch order."""

        if category is StatementCategory.DDL_FUNCTION_OR_MACRO:
            return (self._execution,)
        if category is StatementCategory.SET_COMMAND:
            # Metadata observes the setting before execution can depend on it.
            return (self._metadata, self._execution)
        return (self._metadata,)

    def route(self, statement: str) -> list[str]:
        """Run ``statement`` on its backends and return their concatenated output."""

        category = classify(statement)
        output: list[str] = []
        failures: dict[str, BaseException] = {}
        for backend in self.targets_for(category):
            try:
                output.extend(backend.run_statement(statement))
            except Exception as exc:
                failures[backend.role.value] = exc
        if failures:
            LOG.warning(
                "Statement failed on backend",
                extra={"category": category.value, "failed": tuple(failures)},
            )
            raise StatementRoutingError(statement, category, failures=failures, output=output)
        return output


__all__ = ["StatementCategory", "StatementRouter", "classify"]
