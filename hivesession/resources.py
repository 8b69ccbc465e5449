"""Resource tracking and the per-thread resolution context.

``set_thread_resolution_context`` mutates state shared by everything running on the
calling thread. It is written unconditionally and never rolled back, so sessions that
register resources from the same thread see each other's last write.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass

from .models import BackendRole


@dataclass(frozen=True, slots=True)
class ResolutionContext:
    """Resources visible to definitions loaded on a thread."""

    source: BackendRole
    resources: tuple[str, ...]


class ResourceLoader:
    """Local record of resources registered with a session."""

    def __init__(self) -> None:
        self._paths: list[str] = []

    @property
    def paths(self) -> tuple[str, ...]:
        return tuple(self._paths)

    def add_resource(self, path: str) -> None:
        if not path or not path.strip():
            raise ValueError("Resource path must not be empty")
        if path not in self._paths:
            self._paths.append(path)


_THREAD_STATE = threading.local()


def set_thread_resolution_context(context: ResolutionContext) -> None:
    """Install ``context`` for the calling thread."""

    _THREAD_STATE.context = context


def current_resolution_context() -> ResolutionContext | None:
    """Resolution context of the calling thread, if one was installed."""

    return getattr(_THREAD_STATE, "context", None)


__all__ = [
    "ResolutionContext",
    "ResourceLoader",
    "current_resolution_context",
    "set_thread_resolution_context",
]
