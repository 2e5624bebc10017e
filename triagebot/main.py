"""Main entry point for the triage bot."""

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass

from .api import create_app
from .config import Config, RepoListError, load_config
from .services import (
    ActionItemService,
    DatabaseService,
    GitHubService,
    IndexService,
    NotificationService,
    ReconcileService,
    SyncService,
)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


@dataclass
class Services:
    """Wired service graph for one process."""

    db: DatabaseService
    indexer: IndexService
    action_items: ActionItemService
    sync: SyncService

    async def close(self) -> None:
        await self.indexer.aclose()
        await self.db.close()


async def build_services(config: Config) -> Services:
    """Initialize the database and wire every service from config."""
    db = DatabaseService(config.database.path)
    await db.initialize()
    indexer = IndexService(db, config.search)
    notifier = NotificationService(db, config.slack)
    reconciler = ReconcileService(db, indexer, notifier)
    sync = SyncService(
        db,
        GitHubService(config.github),
        reconciler,
        repos_dir=config.sync.repos_dir,
        max_concurrent_repos=config.sync.max_concurrent_repos,
    )
    return Services(db=db, indexer=indexer, action_items=ActionItemService(db), sync=sync)


async def run_server(config: Config, logger: logging.Logger, verbose: bool) -> int:
    """Serve the RPC API until interrupted."""
    import uvicorn

    services = await build_services(config)
    try:
        app = create_app(services.action_items, services.sync)
        logger.info("Starting RPC server on %s:%d", config.server.host, config.server.port)
        server = uvicorn.Server(
            uvicorn.Config(
                app,
                host=config.server.host,
                port=config.server.port,
                log_level="info" if verbose else "warning",
            )
        )
        await server.serve()
        return 0
    finally:
        await services.close()
        logger.info("Database connection closed")


async def run_sync(config: Config, logger: logging.Logger) -> int:
    """Run one reconciliation pass and print the per-repository summary."""
    services = await build_services(config)
    try:
        report = await services.sync.sync_all()
    except (RepoListError, FileNotFoundError) as e:
        logger.error(str(e))
        return 1
    finally:
        await services.close()

    for result in report.results:
        status = "ok" if result.ok else f"FAILED ({result.error})"
        print(
            f"{result.url}: {status} synced={result.synced} "
            f"created={result.created} closed={result.closed}"
        )
    return 0 if report.ok else 1


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Triage queue for GitHub issues and pull requests",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s serve                     # Run the RPC server with config.yaml
  %(prog)s sync                      # Run one reconciliation pass and exit
  %(prog)s -c prod.yaml -v sync      # Custom config, verbose logging
        """,
    )

    parser.add_argument(
        "-c",
        "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose/debug logging",
    )
    parser.add_argument(
        "command",
        nargs="?",
        choices=["serve", "sync"],
        default="serve",
        help="serve (default) or sync",
    )

    args = parser.parse_args()

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    try:
        logger.info("Loading configuration from %s", args.config)
        config = load_config(args.config)
    except FileNotFoundError as e:
        logger.error(str(e))
        return 1
    except ValueError as e:
        # pydantic ValidationError is a ValueError too
        logger.error("Invalid configuration: %s", e)
        return 1

    try:
        if args.command == "sync":
            return asyncio.run(run_sync(config, logger))
        return asyncio.run(run_server(config, logger, args.verbose))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
