"""
Unit tests for knowledge_base.health

Tests the health check utility: check(), format_health(), to_json().
"""

from __future__ import annotations

import json

from knowledge_base.config import Config
from knowledge_base.health import KBHealth, check, format_health, to_json
from knowledge_base.store import Chunk, open_db


class _ZeroEmbedder:
    def embed(self, texts):
        return [[0.0, 1.0] for _ in texts]


def _cfg(tmp_path, key="pa-key"):
    return Config(env={
        "KNOWLEDGE_DB_PATH": str(tmp_path / "knowledge.db"),
        "VOYAGE_API_KEY": key,
    })


class TestKBHealth:

    def test_defaults(self):
        h = KBHealth()
        assert h.db_present is False
        assert h.db_size_bytes == 0
        assert h.chunk_count is None
        assert h.installed_version is None
        assert h.last_check is None
        assert h.api_key_configured is False


class TestCheck:

    def test_nothing_installed(self, tmp_path):
        h = check(_cfg(tmp_path, key=""))
        assert h.db_present is False
        assert h.installed_version is None
        assert h.last_check is None
        assert h.api_key_configured is False

    def test_installed_db(self, tmp_path):
        cfg = _cfg(tmp_path)
        with open_db(cfg.DB_PATH, _ZeroEmbedder(), readonly=False) as db:
            db.add_chunks([Chunk(kind="docs", content="a"), Chunk(kind="api", content="b")])
        (tmp_path / "knowledge.db.version").write_text("v1.4.0\n")
        (tmp_path / "knowledge.db.last_check").write_text("0.0")

        h = check(cfg)

        assert h.db_present is True
        assert h.db_size_bytes > 0
        assert h.chunk_count == 2
        assert h.installed_version == "v1.4.0"
        assert h.last_check == "1970-01-01T00:00:00+00:00"
        assert h.next_check_due == "1970-01-02T00:00:00+00:00"
        assert h.api_key_configured is True

    def test_unreadable_db_leaves_count_unknown(self, tmp_path):
        cfg = _cfg(tmp_path)
        (tmp_path / "knowledge.db").write_bytes(b"not a database at all")
        h = check(cfg)
        assert h.db_present is True
        assert h.chunk_count is None

    def test_bad_last_check_marker(self, tmp_path):
        cfg = _cfg(tmp_path)
        (tmp_path / "knowledge.db.last_check").write_text("garbage")
        assert check(cfg).last_check is None


class TestFormatting:

    def test_format_health(self):
        text = format_health(KBHealth(db_path="/x/knowledge.db", db_present=True,
                                      installed_version="v2"))
        assert "Knowledge Base Health Report" in text
        assert "/x/knowledge.db" in text
        assert "v2" in text
        assert "never" in text

    def test_to_json(self):
        data = json.loads(to_json(KBHealth(db_present=True, chunk_count=3)))
        assert data["db_present"] is True
        assert data["chunk_count"] == 3
