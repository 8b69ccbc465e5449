"""Session settings loading helpers."""

from __future__ import annotations

from pathlib import Path

import tomllib

from typing import Mapping

from pydantic import BaseModel, Field

from .models import BackendProfile, BackendRole

CONFIG_FILE = Path.home() / ".config" / "hivesession" / "config.toml"

BACKEND_KINDS = ("demo", "postgres")


class BackendProfileConfig(BaseModel):
    """Backend connection profile stored in config.toml."""

    name: str
    kind: str = "demo"
    dsn: str | None = None
    host: str | None = None
    port: int | None = None
    database: str | None = None
    user: str | None = None
    native_conf: Mapping[str, str] | None = None

    def to_profile(self) -> BackendProfile:
        """Build the runtime profile handed to backend connections."""

        return BackendProfile(
            name=self.name,
            kind=self.kind,
            dsn=self.dsn,
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            native_conf=dict(self.native_conf or {}),
        )


class SessionSettings(BaseModel):
    """Shape of the session configuration file."""

    log_level: str = "INFO"
    metadata: BackendProfileConfig = Field(
        default_factory=lambda: BackendProfileConfig(name="metastore")
    )
    execution: BackendProfileConfig = Field(
        default_factory=lambda: BackendProfileConfig(name="execution")
    )
    conf: dict[str, str] = Field(default_factory=dict)
    thrift_server_single_session: bool = False

    def profile_for(self, role: BackendRole) -> BackendProfileConfig:
        if role is BackendRole.METADATA:
            return self.metadata
        return self.execution

    def with_conf(self, key: str, value: str) -> SessionSettings:
        """Return a copy with an initial session setting added."""

        conf = dict(self.conf)
        conf[key] = value
        return self.model_copy(update={"conf": conf})

    def with_backend(self, role: BackendRole, profile: BackendProfileConfig) -> SessionSettings:
        """Return a copy with the profile for ``role`` replaced."""

        return self.model_copy(update={role.value: profile})


def load_settings(path: Path | None = None) -> SessionSettings:
    """Load settings from disk; fall back to defaults if missing."""

    try:
        data = _read_settings_file(path or CONFIG_FILE)
    except FileNotFoundError:
        return SessionSettings()
    except (tomllib.TOMLDecodeError, OSError):
        return SessionSettings()
    return SessionSettings(**data)


def save_settings(settings: SessionSettings, path: Path | None = None) -> None:
    """Persist settings to disk."""

    target = path or CONFIG_FILE
    target.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [f'log_level = "{settings.log_level}"']
    if settings.thrift_server_single_session:
        lines.append("thrift_server_single_session = true")
    for role in BackendRole:
        profile = settings.profile_for(role)
        lines.append("")
        lines.append(f"[{role.value}]")
        lines.append(f'name = "{profile.name}"')
        lines.append(f'kind = "{profile.kind}"')
        for key in ("dsn", "host", "database", "user"):
            value = getattr(profile, key)
            if value:
                lines.append(f'{key} = "{value}"')
        if profile.port is not None:
            lines.append(f"port = {profile.port}")
        if profile.native_conf:
            lines.append("")
            lines.append(f"[{role.value}.native_conf]")
            for key, value in profile.native_conf.items():
                lines.append(f'"{key}" = "{value}"')
    if settings.conf:
        lines.append("")
        lines.append("[conf]")
        for key, value in settings.conf.items():
            lines.append(f'"{key}" = "{value}"')
    target.write_text("\n".join(lines) + "\n")


def _read_settings_file(path: Path) -> dict[str, object]:
    with path.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    log_level = raw.get("log_level")
    if isinstance(log_level, str):
        data["log_level"] = log_level
    single_session = raw.get("thrift_server_single_session")
    if isinstance(single_session, bool):
        data["thrift_server_single_session"] = single_session
    for role in BackendRole:
        profile = raw.get(role.value)
        if not isinstance(profile, dict):
            continue
        parsed: dict[str, object] = {}
        for key in ("name", "dsn", "host", "database", "user"):
            value = profile.get(key)
            if isinstance(value, str):
                parsed[key] = value
        kind = profile.get("kind")
        if isinstance(kind, str) and kind in BACKEND_KINDS:
            parsed["kind"] = kind
        port = profile.get("port")
        if isinstance(port, int):
            parsed["port"] = port
        native_conf = profile.get("native_conf")
        if isinstance(native_conf, dict):
            parsed["native_conf"] = {str(k): _conf_value(v) for k, v in native_conf.items()}
        parsed.setdefault("name", "metastore" if role is BackendRole.METADATA else "execution")
        data[role.value] = BackendProfileConfig(**parsed)
    conf = raw.get("conf")
    if isinstance(conf, dict):
        data["conf"] = {str(key): _conf_value(value) for key, value in conf.items()}
    return data


def _conf_value(value: object) -> str:
    # TOML booleans would otherwise render as "True"/"False".
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


__all__ = [
    "BACKEND_KINDS",
    "CONFIG_FILE",
    "BackendProfileConfig",
    "SessionSettings",
    "load_settings",
    "save_settings",
]
