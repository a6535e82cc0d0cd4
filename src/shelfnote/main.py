#!/usr/bin/env python
"""Main entry point for the Shelfnote MCP server."""
import argparse
import logging
import os
import sys
from pathlib import Path

from shelfnote.config import config
from shelfnote.models.db_models import init_db
from shelfnote.observability import configure_logging, metrics
from shelfnote.server.mcp_server import ShelfnoteMcpServer
from shelfnote.storage.stores import open_stores

DEFAULT_LOG_DIR = Path("data/logs")


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Shelfnote MCP Server")
    parser.add_argument(
        "--base-dir",
        help="Base directory for relative paths",
        type=str,
        default=os.environ.get("SHELFNOTE_BASE_DIR")
    )
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=os.environ.get("SHELFNOTE_DATABASE_PATH")
    )
    parser.add_argument(
        "--in-memory",
        help="Keep the database in memory for this session only",
        action="store_true",
        default=config.in_memory_db
    )
    parser.add_argument(
        "--log-dir",
        help="Directory for rotating log files",
        type=str,
        default=os.environ.get("SHELFNOTE_LOG_DIR")
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=config.log_level
    )
    return parser.parse_args(argv)


def update_config(args) -> None:
    """Update the global config with command line arguments."""
    if args.base_dir:
        config.base_dir = Path(args.base_dir)
    if args.database_path:
        config.database_path = Path(args.database_path)
    if args.log_dir:
        config.log_dir = Path(args.log_dir)
    config.in_memory_db = bool(args.in_memory)
    config.log_level = args.log_level.upper()


def main(argv=None):
    """Run the Shelfnote MCP server."""
    args = parse_args(argv)
    update_config(args)

    # Console + persistent file logging with rotation
    log_level = getattr(logging, config.log_level, logging.INFO)
    log_dir = config.get_absolute_path(config.log_dir or DEFAULT_LOG_DIR)
    try:
        configure_logging(log_dir, level=log_level, console=True)
        metrics.set_metrics_file(log_dir / "metrics.json")
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")

    logger = logging.getLogger(__name__)

    try:
        logger.info(f"Using SQLite database: {config.get_db_url()}")
        engine = init_db()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        sys.exit(1)

    try:
        logger.info("Starting Shelfnote MCP server")
        server = ShelfnoteMcpServer(stores=open_stores(engine))
        server.run()
    except Exception as e:
        logger.error(f"Error running server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
