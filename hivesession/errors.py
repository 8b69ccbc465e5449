"""Session-level error taxonomy."""

from __future__ import annotations

from typing import Mapping, Sequence


class SessionStateError(RuntimeError):
    """Base class for failures surfaced by the session state layer."""


class ConfigPropagationError(SessionStateError):
    """Raised when a configuration write did not reach every target.

    The write is not transactional: targets listed in ``succeeded`` hold the new
    value while the ones in ``failures`` may still hold the previous one.
    """

    def __init__(
        self,
        key: str,
        value: str,
        *,
        succeeded: Sequence[str],
        failures: Mapping[str, BaseException],
    ) -> None:
        self.key = key
        self.value = value
        self.succeeded = tuple(succeeded)
        self.failures = dict(failures)
        failed = ", ".join(f"{target} ({exc})" for target, exc in self.failures.items())
        applied = ", ".join(self.succeeded) or "none"
        super().__init__(f"Failed to propagate '{key}': failed {failed}; applied to {applied}")


class StatementRoutingError(SessionStateError):
    """Raised when one or more dispatched backend calls failed."""

    def __init__(
        self,
        statement: str,
        category: object,
        *,
        failures: Mapping[str, BaseException],
        output: Sequence[str] = (),
    ) -> None:
        self.statement = statement
        self.category = category
        self.failures = dict(failures)
        self.output = tuple(output)
        failed = "; ".join(f"{role}: {exc}" for role, exc in self.failures.items())
        super().__init__(f"Statement failed on {len(self.failures)} backend(s): {failed}")


class RuleChainConstructionError(SessionStateError):
    """Raised when the catalog cannot contribute its rules or strategies."""


class ResourceRegistrationError(SessionStateError):
    """Raised when a resource reached some backends but not others.

    The session stays usable, but the resource is only visible where it was accepted.
    """

    def __init__(
        self,
        path: str,
        *,
        accepted: Sequence[str],
        failures: Mapping[str, BaseException],
    ) -> None:
        self.path = path
        self.accepted = tuple(accepted)
        self.failures = dict(failures)
        failed = ", ".join(self.failures)
        super().__init__(
            f"Resource '{path}' rejected by {failed}; accepted by {', '.join(self.accepted) or 'none'}"
        )


class AnalysisError(SessionStateError):
    """Raised when a logical plan fails a check rule."""


class PlanningError(SessionStateError):
    """Raised when no planning strategy produced a physical plan."""


__all__ = [
    "AnalysisError",
    "ConfigPropagationError",
    "PlanningError",
    "ResourceRegistrationError",
    "RuleChainConstructionError",
    "SessionStateError",
    "StatementRoutingError",
]
