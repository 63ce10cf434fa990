"""
Database updater — keeps the local knowledge.db in step with the latest
GitHub release.

Called once per session start.  Design constraints:
  - Non-blocking: :meth:`DatabaseUpdater.run` never raises
  - Rate-limited: the release feed is queried at most once per interval
  - Graceful degradation: if the feed is unreachable, the existing DB stays
  - Atomic update: decompress into a temp file beside the DB, then rename

Each step returns a :class:`StepResult`; :meth:`DatabaseUpdater.run`
composes them and maps every failure to "leave existing state unchanged".
"""

from __future__ import annotations

import enum
import gzip
import io
import logging
import math
import os
import shutil
import tempfile
import time
import zlib
from dataclasses import dataclass
from typing import Any, Callable, Optional

import requests

from .config import Config
from .release import ReleaseInfo, ReleaseResolver

logger = logging.getLogger(__name__)

MAX_REDIRECTS = 5
DOWNLOAD_TIMEOUT = (10, 300)  # connect, read


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

class UpdateOutcome(str, enum.Enum):
    SKIPPED_RECENT = "skipped_recent"
    FEED_UNAVAILABLE = "feed_unavailable"
    UP_TO_DATE = "up_to_date"
    DOWNLOAD_FAILED = "download_failed"
    INSTALL_FAILED = "install_failed"
    INSTALLED = "installed"
    ERROR = "error"


@dataclass
class StepResult:
    """Outcome of a single updater step."""

    ok: bool
    value: Any = None
    reason: str = ""


@dataclass
class UpdateReport:
    """Summarises what one update cycle did."""

    outcome: UpdateOutcome
    local_version: Optional[str] = None
    remote_version: Optional[str] = None
    detail: str = ""

    @property
    def changed(self) -> bool:
        return self.outcome is UpdateOutcome.INSTALLED


# ---------------------------------------------------------------------------
# Updater
# ---------------------------------------------------------------------------

class DatabaseUpdater:
    """
    Owns all writes to the database file and its ``.last_check`` /
    ``.version`` sidecars.

    Parameters
    ----------
    config:
        Resolved configuration (database path, release repo, interval).
    session:
        Optional ``requests.Session`` used for the asset download.  When
        none is given the updater builds its own.  A caller-supplied
        session keeps its own ``max_redirects``; the bound is applied
        only for the duration of each download.
    resolver:
        Optional release resolver; defaults to :class:`ReleaseResolver`.
    clock:
        Returns the current time in epoch seconds.
    """

    def __init__(
        self,
        config: Config,
        *,
        session: Optional[requests.Session] = None,
        resolver: Optional[ReleaseResolver] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._session = session or requests.Session()
        self._resolver = resolver or ReleaseResolver(config, session=session)
        self._clock = clock

    @property
    def db_path(self) -> str:
        return self._config.DB_PATH

    # ------------------------------------------------------------------
    # Sidecar markers
    # ------------------------------------------------------------------

    def should_check(self) -> bool:
        """True if the last check is older than the interval (or unknown)."""
        try:
            with open(self._config.last_check_path, encoding="utf-8") as fh:
                last_check = float(fh.read().strip())
        except (OSError, ValueError):
            return True
        if not math.isfinite(last_check):
            return True
        return (self._clock() - last_check) > self._config.check_interval_seconds

    def local_version(self) -> Optional[str]:
        try:
            with open(self._config.version_path, encoding="utf-8") as fh:
                return fh.read().strip() or None
        except OSError:
            return None

    def mark_checked(self) -> None:
        self._write_marker(self._config.last_check_path, repr(self._clock()))

    def _write_marker(self, path: str, value: str) -> bool:
        try:
            with open(path, "w", encoding="utf-8") as fh:
                fh.write(value)
            return True
        except OSError as exc:
            logger.warning("[updater] Could not write %s: %s", path, exc)
            return False

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def resolve(self) -> StepResult:
        """Look up the latest release; never raises."""
        release = self._resolver.fetch_latest()
        if release is None:
            return StepResult(ok=False, reason="release feed unavailable")
        return StepResult(ok=True, value=release)

    def download(self, url: str) -> StepResult:
        """Fetch *url*, following at most ``MAX_REDIRECTS`` redirects."""
        previous = self._session.max_redirects
        self._session.max_redirects = MAX_REDIRECTS
        try:
            response = self._session.get(
                url, timeout=DOWNLOAD_TIMEOUT, allow_redirects=True
            )
        except requests.TooManyRedirects:
            return StepResult(ok=False, reason=f"more than {MAX_REDIRECTS} redirects")
        except requests.RequestException as exc:
            return StepResult(ok=False, reason=f"download error: {exc}")
        finally:
            self._session.max_redirects = previous

        if not response.ok:
            return StepResult(ok=False, reason=f"download returned HTTP {response.status_code}")
        return StepResult(ok=True, value=response.content)

    def install(self, payload: bytes, version: str) -> StepResult:
        """
        Decompress *payload* next to the DB and rename it into place.

        The version and last-check markers are written only after the
        rename succeeds.  On failure the temp file is removed and the
        existing database is untouched.
        """
        parent = os.path.dirname(os.path.abspath(self.db_path))
        tmp_path: Optional[str] = None
        try:
            with tempfile.NamedTemporaryFile(
                prefix="knowledge", suffix=".db.tmp", dir=parent, delete=False
            ) as tmp:
                tmp_path = tmp.name
                with gzip.GzipFile(fileobj=io.BytesIO(payload)) as gz:
                    shutil.copyfileobj(gz, tmp)
            os.chmod(tmp_path, 0o644 & ~_current_umask())
            os.replace(tmp_path, self.db_path)
        except (OSError, EOFError, zlib.error) as exc:
            if tmp_path is not None:
                _discard(tmp_path)
            return StepResult(ok=False, reason=f"install failed: {exc}")

        self.mark_checked()
        if not self._write_marker(self._config.version_path, version):
            logger.warning(
                "[updater] Installed %s but the version marker still shows the old version.",
                version,
            )
            return StepResult(ok=True, value=self.db_path, reason="version marker not written")
        return StepResult(ok=True, value=self.db_path)

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    def run(self) -> UpdateReport:
        """Run one check cycle.  Always returns; never raises."""
        try:
            return self._run()
        except Exception as exc:
            logger.warning("[updater] Update cycle failed: %s", exc)
            return UpdateReport(outcome=UpdateOutcome.ERROR, detail=str(exc))

    def _run(self) -> UpdateReport:
        os.makedirs(os.path.dirname(os.path.abspath(self.db_path)), exist_ok=True)

        local = self.local_version()
        if not self.should_check():
            logger.debug("[updater] Checked recently, skipping.")
            return UpdateReport(outcome=UpdateOutcome.SKIPPED_RECENT, local_version=local)

        resolved = self.resolve()
        if not resolved.ok:
            self.mark_checked()
            return UpdateReport(
                outcome=UpdateOutcome.FEED_UNAVAILABLE,
                local_version=local,
                detail=resolved.reason,
            )

        release: ReleaseInfo = resolved.value
        if local == release.tag:
            self.mark_checked()
            logger.debug("[updater] knowledge.db is current (%s).", local)
            return UpdateReport(
                outcome=UpdateOutcome.UP_TO_DATE,
                local_version=local,
                remote_version=release.tag,
            )

        downloaded = self.download(release.download_url)
        if not downloaded.ok:
            logger.warning("[updater] %s", downloaded.reason)
            return UpdateReport(
                outcome=UpdateOutcome.DOWNLOAD_FAILED,
                local_version=local,
                remote_version=release.tag,
                detail=downloaded.reason,
            )

        installed = self.install(downloaded.value, release.tag)
        if not installed.ok:
            logger.warning("[updater] %s", installed.reason)
            return UpdateReport(
                outcome=UpdateOutcome.INSTALL_FAILED,
                local_version=local,
                remote_version=release.tag,
                detail=installed.reason,
            )

        logger.info("[updater] Installed knowledge.db %s (was %s).", release.tag, local or "none")
        return UpdateReport(
            outcome=UpdateOutcome.INSTALLED,
            local_version=release.tag,
            remote_version=release.tag,
            detail=installed.reason,
        )


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


def _discard(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.debug("[updater] Could not remove temp file %s: %s", path, exc)


def ensure_db(config: Optional[Config] = None) -> UpdateReport:
    """Entry point for session start: refresh the database if needed."""
    updater = DatabaseUpdater(config or Config.load())
    return updater.run()
