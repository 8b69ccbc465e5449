"""Command-line entry point that runs statements through a session."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from . import __version__
from .config import CONFIG_FILE, load_settings
from .connections import BackendError
from .errors import SessionStateError
from .session import SessionContext, SessionState

LOG = logging.getLogger(__name__)


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="hivesession", description=__doc__)
    parser.add_argument("statements", nargs="*", help="Statements to run; read from stdin when omitted")
    parser.add_argument("--config", type=Path, default=CONFIG_FILE, help="Settings file (TOML)")
    parser.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Session setting applied before running statements",
    )
    parser.add_argument("--add-resource", dest="resources", action="append", default=[], metavar="PATH")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    settings = load_settings(args.config)
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    for override in args.overrides:
        key, sep, value = override.partition("=")
        if not sep or not key.strip():
            print(f"Invalid --set value '{override}', expected KEY=VALUE", file=sys.stderr)
            return 2
        settings = settings.with_conf(key.strip(), value.strip())

    statements = args.statements or [line for line in sys.stdin.read().split(";") if line.strip()]
    session: SessionState | None = None
    try:
        session = SessionState(SessionContext(settings=settings))
        for path in args.resources:
            session.add_resource(path)
        for statement in statements:
            for line in session.run_native_sql(statement):
                print(line)
    except (SessionStateError, BackendError) as exc:
        LOG.error("Session operation failed", extra={"error": str(exc)})
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        if session is not None:
            session.close()
    return 0


__all__ = ["main", "parse_args"]
