#!/usr/bin/env python3
"""
Command-line entry point.

    memory-engine dream --store memories.json [--operations decay prune] [--apply]
    memory-engine search --store memories.json "query text" [--limit 5] [--type decision] [--min-importance 4]

The store file is a JSON list of memory dicts (or ``{"memories": [...]}``).
No embedding model is loaded: semantic similarity falls back to word
overlap. ``dream`` writes the store back only with ``--apply``.
"""

import argparse
import asyncio
import json
import logging
import sys

from .config import Settings
from .errors import CollaboratorError
from .models.validators import MAINTENANCE_OPERATIONS, MEMORY_TYPES
from .services.maintenance_service import MaintenanceService
from .services.search_service import SearchService
from .storage.memory_store import InMemoryMemoryStore
from .storage.similarity import TextOverlapSimilarityService

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="memory-engine", description="Memory retrieval and maintenance")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")
    sub = parser.add_subparsers(dest="command", required=True)

    dream = sub.add_parser("dream", help="Run a maintenance cycle")
    dream.add_argument("--store", required=True, help="Path to the JSON memory store")
    dream.add_argument(
        "--operations",
        nargs="+",
        choices=MAINTENANCE_OPERATIONS,
        help="Operations to run (default: consolidate contradiction decay)",
    )
    dream.add_argument("--apply", action="store_true", help="Apply changes (default is a dry run)")
    dream.add_argument("--half-life", type=float, help="Decay half-life in days")
    dream.add_argument("--threshold", type=float, help="Consolidation similarity threshold")

    search = sub.add_parser("search", help="Hybrid search over the store")
    search.add_argument("--store", required=True, help="Path to the JSON memory store")
    search.add_argument("--limit", type=int, default=10, help="Maximum results (default: 10)")
    search.add_argument("--project", help="Only this project (default: MEMORY_HYBRID_DEFAULT_PROJECT)")
    search.add_argument("--all-projects", action="store_true", help="Search every project")
    search.add_argument("--type", dest="memory_types", nargs="+", choices=MEMORY_TYPES, help="Only these memory types")
    search.add_argument("--tag", dest="tags", nargs="+", help="Only memories with any of these tags")
    search.add_argument("--min-importance", type=int, help="Only memories at or above this importance")
    search.add_argument("query", help="Query text")
    return parser


async def _dream(args: argparse.Namespace, config: Settings) -> dict:
    store = InMemoryMemoryStore.load(args.store)
    service = MaintenanceService(store, TextOverlapSimilarityService(), config=config)
    report = await service.run(
        operations=args.operations,
        dry_run=not args.apply,
        half_life_days=args.half_life,
        consolidation_threshold=args.threshold,
    )
    if args.apply:
        store.dump(args.store)
        logger.info("Wrote %d memories to %s", len(store), args.store)
    return report.to_dict()


async def _search(args: argparse.Namespace, config: Settings) -> list[dict]:
    store = InMemoryMemoryStore.load(args.store)
    service = SearchService(TextOverlapSimilarityService(), store, config)
    results = await service.search(
        args.query,
        limit=args.limit,
        project=args.project,
        all_projects=args.all_projects,
        memory_types=args.memory_types,
        tags=args.tags,
        min_importance=args.min_importance,
    )
    return [r.to_dict() for r in results]


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    config = Settings()

    try:
        if args.command == "dream":
            output = asyncio.run(_dream(args, config))
        else:
            output = asyncio.run(_search(args, config))
    except CollaboratorError as e:
        logger.error("%s", e)
        return 1

    print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
