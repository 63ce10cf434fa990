"""
`knowledge-base` command-line interface.

Commands
--------
knowledge-base ensure-db                    -- refresh knowledge.db from GitHub releases
knowledge-base search "<query>" [--kind K]  -- semantic search
knowledge-base api <module> [<method>]      -- API reference lookup
knowledge-base similar "<description>"      -- similar demos (descriptions + code)
knowledge-base deps "<concept>"             -- setup requirements for a concept
knowledge-base pattern "<technique>"        -- code examples for a technique
knowledge-base index <chunks.jsonl>         -- embed and add chunks to the database
knowledge-base health [--json]              -- local database status

``ensure-db`` is run from session-start hooks and always exits 0.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Optional

from .config import Config
from .store import ALL_KINDS, KINDS

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Sub-command handlers
# ---------------------------------------------------------------------------

def _cmd_ensure_db(args: argparse.Namespace, cfg: Config) -> int:
    """Run one updater cycle; failures are logged, never reported as errors."""
    try:
        from .updater import ensure_db

        report = ensure_db(cfg)
        logger.info("[updater] %s", report.outcome.value)
    except Exception as exc:
        logger.debug("[updater] ensure-db failed: %s", exc)
    return 0


def _search(cfg: Config):
    from .search import KnowledgeSearch
    return KnowledgeSearch(cfg)


def _cmd_search(args: argparse.Namespace, cfg: Config) -> int:
    print(_search(cfg).semantic_search(args.query, kind=args.kind))
    return 0


def _cmd_api(args: argparse.Namespace, cfg: Config) -> int:
    print(_search(cfg).api_lookup(args.module, args.method or ""))
    return 0


def _cmd_similar(args: argparse.Namespace, cfg: Config) -> int:
    print(_search(cfg).similar_works(args.description))
    return 0


def _cmd_deps(args: argparse.Namespace, cfg: Config) -> int:
    print(_search(cfg).dependency_chain(args.concept))
    return 0


def _cmd_pattern(args: argparse.Namespace, cfg: Config) -> int:
    print(_search(cfg).code_pattern(args.technique))
    return 0


def _read_chunks(path: str) -> list:
    """Parse a JSON-lines file of ``{id?, kind, source?, content}`` records."""
    from .store import Chunk

    chunks = []
    with open(path, encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, 1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
                chunks.append(Chunk(
                    kind=record["kind"],
                    content=record["content"],
                    source=record.get("source", ""),
                    chunk_id=record.get("id", ""),
                ))
            except (json.JSONDecodeError, KeyError, TypeError) as exc:
                raise ValueError(f"{path}:{lineno}: invalid chunk record ({exc})") from exc
    return chunks


def _cmd_index(args: argparse.Namespace, cfg: Config) -> int:
    """Embed chunks in document mode and write them into the database."""
    from .embeddings import EmbeddingError, from_config
    from .store import open_db

    if not cfg.api_key_configured():
        print("VOYAGE_API_KEY is not set.", file=sys.stderr)
        return 1

    try:
        chunks = _read_chunks(args.path)
    except (OSError, ValueError) as exc:
        print(f"Could not read chunks: {exc}", file=sys.stderr)
        return 1

    embedder = from_config(cfg, input_type="document")
    try:
        with open_db(cfg.DB_PATH, embedder, readonly=False) as db:
            written = db.add_chunks(chunks)
            total = db.count()
    except (EmbeddingError, ValueError) as exc:
        print(f"Indexing failed: {exc}", file=sys.stderr)
        return 1

    print(f"Indexed {written} chunk(s) into {cfg.DB_PATH} ({total} total).")
    return 0


def _cmd_health(args: argparse.Namespace, cfg: Config) -> int:
    from .health import check, format_health, to_json

    health = check(cfg)
    print(to_json(health) if args.json else format_health(health))
    return 0


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="knowledge-base",
        description="Local vector knowledge base: updates and semantic search",
    )
    parser.add_argument("--config", default=None, metavar="PATH",
                        help="Path to a .knowledge-base.yaml file")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="cmd", metavar="COMMAND")
    subparsers.required = True

    ensure_p = subparsers.add_parser(
        "ensure-db", help="Download or refresh knowledge.db (always exits 0)"
    )
    ensure_p.set_defaults(func=_cmd_ensure_db)

    search_p = subparsers.add_parser("search", help="Semantic search")
    search_p.add_argument("query", help="Natural-language search query")
    search_p.add_argument(
        "--kind", default=ALL_KINDS, choices=(ALL_KINDS,) + KINDS,
        help="Restrict results to one kind (default: all)",
    )
    search_p.set_defaults(func=_cmd_search)

    api_p = subparsers.add_parser("api", help="Look up API reference")
    api_p.add_argument("module", help="Module or class name")
    api_p.add_argument("method", nargs="?", default="", help="Optional method name")
    api_p.set_defaults(func=_cmd_api)

    similar_p = subparsers.add_parser("similar", help="Find similar demo works")
    similar_p.add_argument("description", help="Description of the work")
    similar_p.set_defaults(func=_cmd_similar)

    deps_p = subparsers.add_parser("deps", help="Setup requirements for a concept")
    deps_p.add_argument("concept")
    deps_p.set_defaults(func=_cmd_deps)

    pattern_p = subparsers.add_parser("pattern", help="Code examples for a technique")
    pattern_p.add_argument("technique")
    pattern_p.set_defaults(func=_cmd_pattern)

    index_p = subparsers.add_parser("index", help="Embed and add chunks from a JSONL file")
    index_p.add_argument("path", help="JSON-lines file of {kind, content, source?, id?}")
    index_p.set_defaults(func=_cmd_index)

    health_p = subparsers.add_parser("health", help="Show local database status")
    health_p.add_argument("--json", action="store_true",
                          help="Machine-readable JSON output")
    health_p.set_defaults(func=_cmd_health)

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the ``knowledge-base`` command.

    Parameters
    ----------
    argv:
        Argument list.  Defaults to sys.argv if None.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not logging.root.handlers:
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.WARNING,
            format="%(levelname)s  %(name)s  %(message)s",
        )

    if args.func is _cmd_ensure_db:
        # Hooks must never fail because of a bad config file either.
        try:
            cfg = Config.load(args.config)
        except Exception as exc:
            logger.debug("[updater] Could not load config: %s", exc)
            return 0
    else:
        cfg = Config.load(args.config)

    return args.func(args, cfg)


if __name__ == "__main__":
    sys.exit(main())
