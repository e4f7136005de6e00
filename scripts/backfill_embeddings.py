#!/usr/bin/env python3
"""
Embed every accepted expert answer that has no stored response embedding.

Answers accepted before the RAG corpus existed (or whose embedding failed
at acceptance time) are otherwise only embedded lazily, on first
retrieval. Running this once after a deploy warms the whole corpus.

Usage:
    uv run python scripts/backfill_embeddings.py
    uv run python scripts/backfill_embeddings.py --ids <assignment-id> <assignment-id>
"""

import argparse
import asyncio
import logging

from expertqa.config import settings
from expertqa.db.engine import dispose_engine
from expertqa.services.dispatch import AsyncioDispatcher
from expertqa.services.factory import build_services


async def run(assignment_ids: list[str] | None) -> None:
    services = build_services(settings, dispatcher=AsyncioDispatcher())
    try:
        summary = await services.rag.backfill(assignment_ids)
    finally:
        await dispose_engine()
    print(
        f"Embedded {summary.embedded}, skipped {summary.skipped} "
        f"(already embedded), failed {summary.failed}"
    )


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument(
        "--ids",
        nargs="+",
        metavar="ASSIGNMENT_ID",
        help="Only these accepted assignments (default: the whole corpus)",
    )
    args = parser.parse_args()

    logging.basicConfig(level=settings.log_level)
    asyncio.run(run(args.ids))


if __name__ == "__main__":
    main()
