"""Module executed when running ``python -m pickshelf``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from contextlib import AsyncExitStack

import httpx
import uvicorn

from pickshelf.config import settings

logger = logging.getLogger("pickshelf")


def serve() -> None:
    """Start the uvicorn server using the configured settings."""

    uvicorn.run(
        "pickshelf.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )


async def sync_once(channel_id: str | None, *, regenerate: bool) -> int:
    """Run one sync pass and return the process exit status."""

    from pickshelf.database import Database
    from pickshelf.services.media_server import create_provider
    from pickshelf.services.orchestrator import SyncOrchestrator

    database = Database(settings.database_url)
    await database.create_all()
    async with AsyncExitStack() as exit_stack:
        media_server_client = await exit_stack.enter_async_context(
            httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0))
        )
        image_client = await exit_stack.enter_async_context(
            httpx.AsyncClient(timeout=httpx.Timeout(20.0, connect=5.0))
        )
        orchestrator = SyncOrchestrator(
            settings,
            database.session_factory,
            create_provider(settings, media_server_client),
            image_client,
        )
        try:
            if channel_id:
                summary = await orchestrator.run_channel(
                    channel_id, regenerate=regenerate
                )
            else:
                summary = await orchestrator.run_all(regenerate=regenerate)
        finally:
            await database.dispose()

    for outcome in summary.outcomes:
        logger.info(
            "%s: %s (created=%d updated=%d deleted=%d failed=%d)%s",
            outcome.channel_id,
            outcome.state,
            outcome.created,
            outcome.updated,
            outcome.deleted,
            outcome.failed_artifacts,
            f" error={outcome.error}" if outcome.error else "",
        )
    logger.info(
        "Sync finished: %d succeeded, %d failed, %d skipped",
        summary.success,
        summary.failed,
        summary.skipped,
    )
    return 1 if summary.failed else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pickshelf")
    commands = parser.add_subparsers(dest="command")
    commands.add_parser("serve", help="run the HTTP service with the sync loop")
    sync_parser = commands.add_parser("sync", help="run a single sync pass")
    sync_parser.add_argument("--channel", help="only sync this channel id")
    sync_parser.add_argument(
        "--reuse-runs",
        action="store_true",
        help="materialize the latest completed runs without generating new ones",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=settings.log_level.upper())
    if args.command == "sync":
        return asyncio.run(
            sync_once(args.channel, regenerate=not args.reuse_runs)
        )
    serve()
    return 0


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    sys.exit(main())
