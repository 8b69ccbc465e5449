"""Session state coordination for a SQL engine with metadata and execution backends."""

from __future__ import annotations

__version__ = "0.1.0"

from .conf import ConfEntry, ConfStore, NativeConf
from .connections import BackendConnection, DemoBackendConnection
from .errors import (
    AnalysisError,
    ConfigPropagationError,
    ResourceRegistrationError,
    RuleChainConstructionError,
    SessionStateError,
    StatementRoutingError,
)
from .routing import StatementCategory, StatementRouter, classify
from .session import SessionContext, SessionState

__all__ = [
    "AnalysisError",
    "BackendConnection",
    "ConfEntry",
    "ConfStore",
    "ConfigPropagationError",
    "DemoBackendConnection",
    "NativeConf",
    "ResourceRegistrationError",
    "RuleChainConstructionError",
    "SessionContext",
    "SessionState",
    "SessionStateError",
    "StatementCategory",
    "StatementRouter",
    "StatementRoutingError",
    "__version__",
    "classify",
]
