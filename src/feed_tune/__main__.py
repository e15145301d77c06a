# ABOUTME: CLI entry point for feed-tune.
# ABOUTME: Supports 'serve', 'refresh' (one pass), and 'watch' (periodic passes) commands.

import argparse
import asyncio
import logging
import sys

import structlog
import uvicorn

from feed_tune.config import get_settings

log = structlog.get_logger()


def configure_logging(level: str) -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
    )


def cmd_serve(args: argparse.Namespace) -> None:
    """Start the API server."""
    settings = get_settings()
    host = args.host or settings.host
    port = args.port or settings.port
    log.info("starting_server", host=host, port=port)
    uvicorn.run("feed_tune.web.app:app", host=host, port=port, reload=args.reload)


def cmd_refresh(args: argparse.Namespace) -> None:
    """Refresh all active feeds once."""
    asyncio.run(_run_refresh(args.skip_cache, interval=None))


def cmd_watch(args: argparse.Namespace) -> None:
    """Refresh all active feeds every N seconds until interrupted."""
    interval = args.interval or get_settings().refresh_interval
    try:
        asyncio.run(_run_refresh(args.skip_cache, interval=interval))
    except KeyboardInterrupt:
        log.info("watch_stopped")


async def _run_refresh(skip_cache: bool, interval: int | None) -> None:
    """Async refresh loop: one pass, or one pass per interval."""
    from feed_tune.db.session import close_db, get_session_factory, init_db
    from feed_tune.services.fetcher import build_http_client
    from feed_tune.services.ingestion import build_ingestion_service

    settings = get_settings()
    await init_db()
    try:
        async with build_http_client(settings) as client:
            service = build_ingestion_service(settings, client, get_session_factory())
            while True:
                summary = await service.refresh_all(skip_cache=skip_cache)
                log.info(
                    "refresh_done",
                    feeds=summary.feeds,
                    new_items=summary.new_items,
                    failed=summary.failed,
                )
                if interval is None:
                    break
                await asyncio.sleep(interval)
    finally:
        await close_db()


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(prog="feed-tune", description="RSS and YouTube feed aggregator")
    subparsers = parser.add_subparsers(dest="command")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", type=str, default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.add_argument("--reload", action="store_true")

    # refresh
    refresh_parser = subparsers.add_parser("refresh", help="Refresh all active feeds once")
    refresh_parser.add_argument("--skip-cache", action="store_true")

    # watch
    watch_parser = subparsers.add_parser("watch", help="Refresh all active feeds periodically")
    watch_parser.add_argument("--interval", type=int, default=None)
    watch_parser.add_argument("--skip-cache", action="store_true")

    args = parser.parse_args()
    configure_logging(get_settings().log_level)
    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "refresh":
        cmd_refresh(args)
    elif args.command == "watch":
        cmd_watch(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
