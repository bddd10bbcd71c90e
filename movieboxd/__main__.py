"""Module executed when running ``python -m movieboxd``."""

from __future__ import annotations

import argparse
import asyncio
import logging

import uvicorn

from app.config import settings
from app.database import Database
from app.seed import seed_database


def serve() -> None:
    """Start the uvicorn server using the configured settings."""

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )


async def _seed() -> None:
    database = Database(settings.database_url)
    try:
        await seed_database(database)
    finally:
        await database.dispose()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="movieboxd")
    parser.add_argument(
        "command",
        nargs="?",
        choices=["serve", "seed"],
        default="serve",
        help="serve the API (default) or seed the database with example data",
    )
    args = parser.parse_args(argv)

    if args.command == "seed":
        logging.basicConfig(level=logging.INFO)
        asyncio.run(_seed())
        return
    serve()


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
