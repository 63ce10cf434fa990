"""
Release resolver — finds the latest published knowledge base artifact
on the GitHub releases feed.

This is a soft-fail component: an unreachable or malformed feed yields
``None`` and never an exception, so a missing network never blocks a
session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import requests

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)

RELEASE_API_URL = "https://api.github.com/repos/{repo}/releases/latest"
FEED_TIMEOUT = (10, 10)  # connect, read


@dataclass(frozen=True)
class ReleaseInfo:
    """Latest release tag and the download URL of its database asset."""

    tag: str
    download_url: str


def _github_headers(token: str = "") -> dict[str, str]:
    """Build GitHub API headers, including token if available."""
    headers = {
        "Accept": "application/vnd.github+json",
        "User-Agent": "knowledge-base-updater",
    }
    if token:
        headers["Authorization"] = f"token {token}"
    return headers


def fetch_latest_release(
    repo: str,
    asset_name: str,
    *,
    session: Optional[requests.Session] = None,
    token: str = "",
) -> Optional[ReleaseInfo]:
    """
    Query the latest release of *repo* for an asset named *asset_name*.

    Parameters
    ----------
    repo:
        ``owner/name`` of the GitHub repository.
    asset_name:
        Exact filename of the asset to look for.
    session:
        Optional ``requests.Session``; a plain ``requests.get`` is used otherwise.
    token:
        Optional GitHub token for private repositories or higher rate limits.

    Returns
    -------
    Optional[ReleaseInfo]
        ``None`` when the feed is unreachable, times out, answers with a
        non-success status, is malformed, or has no matching asset.
    """
    url = RELEASE_API_URL.format(repo=repo)
    http = session if session is not None else requests
    try:
        response = http.get(url, headers=_github_headers(token), timeout=FEED_TIMEOUT)
    except requests.RequestException as exc:
        logger.warning("[release] Could not reach release feed %s: %s", url, exc)
        return None

    if not response.ok:
        logger.warning("[release] Release feed returned HTTP %s", response.status_code)
        return None

    try:
        data = response.json()
    except ValueError as exc:
        logger.warning("[release] Release feed returned invalid JSON: %s", exc)
        return None
    if not isinstance(data, dict):
        return None

    tag = data.get("tag_name")
    if not tag:
        logger.debug("[release] Latest release has no tag_name")
        return None

    for asset in data.get("assets") or []:
        if isinstance(asset, dict) and asset.get("name") == asset_name:
            download_url = asset.get("browser_download_url")
            if download_url:
                return ReleaseInfo(tag=str(tag), download_url=download_url)

    logger.debug("[release] Release %s has no asset named %s", tag, asset_name)
    return None


class ReleaseResolver:
    """Binds :func:`fetch_latest_release` to a :class:`Config`."""

    def __init__(self, config: "Config", session: Optional[requests.Session] = None):
        self._config = config
        self._session = session

    def fetch_latest(self) -> Optional[ReleaseInfo]:
        return fetch_latest_release(
            self._config.RELEASE_REPO,
            self._config.RELEASE_ASSET,
            session=self._session,
            token=self._config.GITHUB_TOKEN,
        )
