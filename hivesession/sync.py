"""Single writer keeping session, backend and native configuration in step."""

from __future__ import annotations

import logging
from typing import Callable

from .conf import ConfStore, NativeConf, check_value
from .connections import BackendConnection
from .errors import ConfigPropagationError

LOG = logging.getLogger(__name__)


class ConfSynchronizer:
    """Propagates every configuration write to all four targets.

    Targets, in write order: the session ``ConfStore``, the execution backend, the
    metadata backend and the derived ``NativeConf``. Every target is attempted even
    when an earlier one fails; the failures are then raised together.
    """

    def __init__(
        self,
        conf: ConfStore,
        execution: BackendConnection,
        metadata: BackendConnection,
        native_conf: NativeConf,
    ) -> None:
        self._conf = conf
        self._execution = execution
        self._metadata = metadata
        self._native_conf = native_conf

    def set_conf(self, key: str, value: str) -> None:
        """Write ``key=value`` everywhere or raise ``ConfigPropagationError``."""

        if key is None or value is None:
            raise ValueError("Configuration keys and values must not be None")
        try:
            check_value(key, value)
        except ValueError as exc:
            LOG.warning("Rejected configuration value", extra={"key": key})
            raise ConfigPropagationError(key, value, succeeded=(), failures={"conf": exc}) from exc
        targets: tuple[tuple[str, Callable[[str, str], None]], ...] = (
            ("conf", self._conf._set),
            ("execution", self._execution.set_conf),
            ("metadata", self._metadata.set_conf),
            ("native_conf", self._native_conf._set),
        )
        succeeded: list[str] = []
        failures: dict[str, BaseException] = {}
        for name, write in targets:
            try:
                write(key, value)
            except Exception as exc:
                failures[name] = exc
            else:
                succeeded.append(name)
        if failures:
            LOG.warning(
                "Configuration write only partially applied",
                extra={"key": key, "succeeded": tuple(succeeded), "failed": tuple(failures)},
            )
            raise ConfigPropagationError(key, value, succeeded=succeeded, failures=failures)
        LOG.debug("Configuration propagated", extra={"key": key})


__all__ = ["ConfSynchronizer"]
