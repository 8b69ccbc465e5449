"""Shared types used across backend/session modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping

NativeConfSnapshot = Mapping[str, str]


class BackendRole(str, Enum):
    """Which side of the session a backend connection serves."""

    METADATA = "metadata"
    EXECUTION = "execution"


@dataclass(frozen=True, slots=True)
class BackendProfile:
    """Runtime representation of a backend connection profile."""

    name: str
    kind: str = "demo"
    dsn: str | None = None
    host: str | None = None
    port: int | None = None
    database: str | None = None
    user: str | None = None
    native_conf: NativeConfSnapshot = field(default_factory=dict)


__all__ = ["BackendProfile", "BackendRole", "NativeConfSnapshot"]
