"""
Configuration — loads settings from .knowledge-base.yaml, environment
variables, and built-in defaults (in that priority order: env > YAML > defaults).

A :class:`Config` is built once at startup and handed to each component,
so tests can inject their own values instead of touching ``os.environ``.
"""

import os

import yaml


_PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))

_DEFAULTS = {
    "voyage_api_key": "",
    "voyage_timeout": 30.0,
    "voyage_max_retries": 3,
    "release_repo": "javier-sy/musa-claude-plugin",
    "release_asset": "knowledge.db.gz",
    "check_interval_hours": 24,
    "db_filename": "knowledge.db",
}

# Config file search locations
_CONFIG_FILENAMES = [".knowledge-base.yaml", ".knowledge-base.yml"]

# Marker left behind when a host substitutes ${VOYAGE_API_KEY} literally
_PLACEHOLDER_TOKEN = "${"


def _find_config_file(explicit_path: str | None = None) -> str | None:
    """Find the config file. Checks explicit path, CWD, then user home."""
    if explicit_path:
        if os.path.isfile(explicit_path):
            return explicit_path
        return None

    search_dirs = [os.getcwd(), os.path.expanduser("~")]
    for d in search_dirs:
        for name in _CONFIG_FILENAMES:
            path = os.path.join(d, name)
            if os.path.isfile(path):
                return path
    return None


def _load_yaml(path: str) -> dict:
    """Load YAML file, returns empty dict on failure."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return {}


def resolve_db_path(explicit: str | None, plugin_root: str | None) -> str:
    """Pick the database path: explicit override > plugin root > package dir."""
    if explicit:
        return explicit
    if plugin_root:
        return os.path.join(plugin_root, "mcp_server", _DEFAULTS["db_filename"])
    return os.path.join(_PACKAGE_DIR, _DEFAULTS["db_filename"])


class Config:
    """Application configuration.

    Settings are resolved in priority order:
    1. Environment variables
    2. .knowledge-base.yaml config file
    3. Built-in defaults
    """

    def __init__(self, yaml_data: dict | None = None, env: dict | None = None):
        yd = yaml_data or {}
        environ = os.environ if env is None else env

        def _get(env_key: str | None, yaml_val, default, cast=str):
            if env_key is not None:
                env_val = environ.get(env_key)
                if env_val is not None:
                    return cast(env_val)
            if yaml_val is not None:
                return cast(yaml_val)
            return default

        voyage_section = yd.get("voyage", {}) if isinstance(yd.get("voyage"), dict) else {}

        self.VOYAGE_API_KEY = _get("VOYAGE_API_KEY", voyage_section.get("api_key"),
                                   _DEFAULTS["voyage_api_key"])
        self.EMBED_TIMEOUT = _get("VOYAGE_TIMEOUT", voyage_section.get("timeout"),
                                  _DEFAULTS["voyage_timeout"], cast=float)
        self.EMBED_MAX_RETRIES = _get("VOYAGE_MAX_RETRIES",
                                      voyage_section.get("max_retries"),
                                      _DEFAULTS["voyage_max_retries"], cast=int)

        self.PLUGIN_ROOT = _get("CLAUDE_PLUGIN_ROOT", yd.get("plugin_root"), None)
        explicit_db = _get("KNOWLEDGE_DB_PATH", yd.get("db_path"), None)
        self.DB_PATH = resolve_db_path(explicit_db, self.PLUGIN_ROOT)

        # Release feed
        self.RELEASE_REPO = _get("KNOWLEDGE_RELEASE_REPO", yd.get("release_repo"),
                                 _DEFAULTS["release_repo"])
        self.RELEASE_ASSET = _get(None, yd.get("release_asset"),
                                  _DEFAULTS["release_asset"])
        self.GITHUB_TOKEN = _get("GITHUB_TOKEN", None, "")
        self.CHECK_INTERVAL_HOURS = _get("KNOWLEDGE_CHECK_INTERVAL_HOURS",
                                         yd.get("check_interval_hours"),
                                         _DEFAULTS["check_interval_hours"],
                                         cast=float)

    @property
    def check_interval_seconds(self) -> float:
        return self.CHECK_INTERVAL_HOURS * 60 * 60

    @property
    def last_check_path(self) -> str:
        return f"{self.DB_PATH}.last_check"

    @property
    def version_path(self) -> str:
        return f"{self.DB_PATH}.version"

    def api_key_configured(self) -> bool:
        """True when a real key is set (not empty, not an unexpanded placeholder)."""
        key = self.VOYAGE_API_KEY or ""
        return bool(key) and _PLACEHOLDER_TOKEN not in key

    @classmethod
    def load(cls, config_path: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path)
        yaml_data = _load_yaml(path) if path else {}
        return cls(yaml_data)
