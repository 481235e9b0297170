"""Shared command-line configuration.

Every entrypoint takes the same MQTT and store flags. Defaults can be
overridden through `OHQ_*` environment variables so a deployment does not
have to repeat them on every command line.
"""

from __future__ import annotations

import argparse
import logging
import os

from .mqtt_topics import DEFAULT_NAMESPACE
from .store import DurableStore, MemoryStore

DEFAULT_DB_PATH = "officehours.sqlite3"

# Rough per-student service time used for the wait estimate.
MINUTES_PER_STUDENT = 5


def _env(name: str, default: str) -> str:
    return os.environ.get(f"OHQ_{name}", default)


def add_mqtt_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--mqtt-host", default=_env("MQTT_HOST", "127.0.0.1"))
    p.add_argument("--mqtt-port", type=int, default=int(_env("MQTT_PORT", "1883")))
    p.add_argument("--namespace", default=_env("NAMESPACE", DEFAULT_NAMESPACE))


def add_store_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--store", choices=("memory", "sqlite"), default=_env("STORE", "sqlite"))
    p.add_argument("--db-path", default=_env("DB_PATH", DEFAULT_DB_PATH))
    p.add_argument(
        "--busy-timeout",
        type=float,
        default=float(_env("BUSY_TIMEOUT", "5.0")),
        help="seconds to wait for the SQLite write lock",
    )
    p.add_argument(
        "--poll-interval",
        type=float,
        default=float(_env("POLL_INTERVAL", "0.5")),
        help="seconds between checks for queue changes made by other processes (0 disables)",
    )


def add_logging_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--log-level",
        default=_env("LOG_LEVEL", "INFO"),
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
    )


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def build_store(args: argparse.Namespace) -> DurableStore:
    if args.store == "memory":
        return MemoryStore()

    from .sqlite_store import SqliteStore

    return SqliteStore(args.db_path, busy_timeout=args.busy_timeout)
