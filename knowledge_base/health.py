"""
KB health check — reports the state of the local knowledge database.

Used by the CLI (``knowledge-base health``).  Never touches the network
and never writes to the database or its sidecars.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Optional

from .config import Config

logger = logging.getLogger(__name__)


@dataclass
class KBHealth:
    """Overall KB health status."""

    db_path: str = ""
    db_present: bool = False
    db_size_bytes: int = 0
    chunk_count: Optional[int] = None
    installed_version: Optional[str] = None
    last_check: Optional[str] = None
    next_check_due: Optional[str] = None
    api_key_configured: bool = False


def _read_text(path: str) -> Optional[str]:
    try:
        with open(path, encoding="utf-8") as fh:
            return fh.read().strip() or None
    except OSError:
        return None


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat(timespec="seconds")


def check(config: Optional[Config] = None) -> KBHealth:
    """
    Check the health of the local knowledge base.

    Parameters
    ----------
    config:
        Resolved configuration.  Defaults to ``Config.load()``.

    Returns
    -------
    KBHealth
        Aggregated health status.
    """
    config = config or Config.load()
    health = KBHealth(db_path=config.DB_PATH)

    health.api_key_configured = config.api_key_configured()
    health.installed_version = _read_text(config.version_path)

    raw_check = _read_text(config.last_check_path)
    if raw_check:
        try:
            last = float(raw_check)
            health.last_check = _iso(last)
            health.next_check_due = _iso(last + config.check_interval_seconds)
        except ValueError:
            logger.debug("[KB health] Unparsable last_check marker: %r", raw_check)

    if os.path.exists(config.DB_PATH):
        health.db_present = True
        health.db_size_bytes = os.path.getsize(config.DB_PATH)
        try:
            from .store import open_db

            with open_db(config.DB_PATH, embedder=None) as db:
                health.chunk_count = db.count()
        except Exception as exc:
            logger.debug("[KB health] Could not count chunks: %s", exc)

    return health


def format_health(health: KBHealth) -> str:
    """
    Format a :class:`KBHealth` into a human-readable report.

    Parameters
    ----------
    health:
        The health status to format.

    Returns
    -------
    str
        Multi-line human-readable report.
    """
    def _status(ok: bool) -> str:
        return "OK" if ok else "NOT OK"

    chunks = "unknown" if health.chunk_count is None else str(health.chunk_count)
    lines = [
        "",
        "Knowledge Base Health Report",
        "=" * 40,
        "",
        "Database:",
        f"  Path          : {health.db_path}",
        f"  Present       : {_status(health.db_present)}",
        f"  Size          : {health.db_size_bytes} bytes",
        f"  Chunks        : {chunks}",
        f"  Version       : {health.installed_version or 'unknown'}",
        "",
        "Updates:",
        f"  Last check    : {health.last_check or 'never'}",
        f"  Next check    : {health.next_check_due or 'on next run'}",
        "",
        "Voyage AI:",
        f"  API key       : {_status(health.api_key_configured)}",
        "",
    ]
    return "\n".join(lines)


def to_json(health: KBHealth) -> str:
    """Serialise a :class:`KBHealth` to JSON."""
    return json.dumps(asdict(health), indent=2)
