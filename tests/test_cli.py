"""
Tests for the knowledge-base CLI.
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest

from knowledge_base import cli
from knowledge_base.store import open_db


@pytest.fixture
def env(tmp_path, monkeypatch):
    monkeypatch.setenv("KNOWLEDGE_DB_PATH", str(tmp_path / "knowledge.db"))
    monkeypatch.setenv("VOYAGE_API_KEY", "pa-test")
    monkeypatch.delenv("CLAUDE_PLUGIN_ROOT", raising=False)
    return tmp_path


class TestEnsureDb:

    def test_exit_code_is_zero_on_success(self, env):
        with patch("knowledge_base.updater.ensure_db") as mock_ensure:
            assert cli.main(["ensure-db"]) == 0
        mock_ensure.assert_called_once()

    def test_exit_code_is_zero_on_failure(self, env):
        with patch("knowledge_base.updater.ensure_db", side_effect=RuntimeError("boom")):
            assert cli.main(["ensure-db"]) == 0

    def test_exit_code_is_zero_on_bad_config(self, env):
        with patch("knowledge_base.cli.Config.load", side_effect=OSError("unreadable")):
            assert cli.main(["ensure-db"]) == 0


class TestSearchCommands:

    def test_missing_database_hint_printed(self, env, capsys):
        assert cli.main(["search", "timing"]) == 0
        assert "Knowledge base not found" in capsys.readouterr().out

    @pytest.mark.parametrize("argv, method, args", [
        (["search", "q", "--kind", "docs"], "semantic_search", ("q",)),
        (["api", "Sequencer", "at"], "api_lookup", ("Sequencer", "at")),
        (["similar", "a canon"], "similar_works", ("a canon",)),
        (["deps", "midi"], "dependency_chain", ("midi",)),
        (["pattern", "arpeggio"], "code_pattern", ("arpeggio",)),
    ])
    def test_dispatch(self, env, capsys, argv, method, args):
        facade = MagicMock()
        getattr(facade, method).return_value = "OUTPUT"
        with patch("knowledge_base.search.KnowledgeSearch", return_value=facade):
            assert cli.main(argv) == 0
        assert getattr(facade, method).call_args.args == args
        assert capsys.readouterr().out.strip() == "OUTPUT"

    def test_invalid_kind_rejected(self, env):
        with pytest.raises(SystemExit):
            cli.main(["search", "q", "--kind", "blog"])


class TestIndex:

    def test_index_jsonl(self, env, capsys):
        path = env / "chunks.jsonl"
        path.write_text(
            json.dumps({"kind": "docs", "source": "a.md", "content": "alpha"}) + "\n\n"
            + json.dumps({"id": "c2", "kind": "api", "content": "beta"}) + "\n"
        )
        embedder = MagicMock()
        embedder.embed.side_effect = lambda texts: [[1.0, 0.0] for _ in texts]

        with patch("knowledge_base.embeddings.from_config", return_value=embedder) as mock_fc:
            assert cli.main(["index", str(path)]) == 0

        assert mock_fc.call_args.kwargs["input_type"] == "document"
        assert "Indexed 2 chunk(s)" in capsys.readouterr().out
        with open_db(str(env / "knowledge.db"), embedder) as db:
            assert db.count() == 2

    def test_index_bad_record(self, env, capsys):
        path = env / "chunks.jsonl"
        path.write_text('{"kind": "docs"}\n')
        assert cli.main(["index", str(path)]) == 1
        assert "invalid chunk record" in capsys.readouterr().err

    def test_index_requires_key(self, env, monkeypatch):
        monkeypatch.setenv("VOYAGE_API_KEY", "")
        path = env / "chunks.jsonl"
        path.write_text("")
        assert cli.main(["index", str(path)]) == 1


class TestHealth:

    def test_json_output(self, env, capsys):
        assert cli.main(["health", "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["db_present"] is False
        assert data["api_key_configured"] is True
