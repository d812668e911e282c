#!/usr/bin/env python3
"""
redis-lite Server Entry Point

This is the main entry point for starting the redis-lite server.

Usage:
    python -m redis_lite.server                          # Default settings (0.0.0.0:6379)
    python -m redis_lite.server --port 8080              # Custom port
    python -m redis_lite.server --host 127.0.0.1         # Custom host
    python -m redis_lite.server --aof-path ./data.aof    # Custom AOF file
    python -m redis_lite.server --debug                  # Enable debug logging

Environment Variables:
    REDIS_LITE_HOST             - Server bind address
    REDIS_LITE_PORT             - Server port
    REDIS_LITE_AOF_PATH         - Append-only log file
    REDIS_LITE_FLUSH_INTERVAL   - Seconds between AOF flushes
    REDIS_LITE_DEBUG            - Enable debug mode (true/false)
"""

import argparse
import asyncio
import logging
import signal
import sys

from .config.settings import settings
from .engine.engine import CommandEngine
from .errors import PersistenceError
from .network.tcp_server import RedisLiteServer
from .persistence.aof import AppendOnlyLog


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="redis-lite: Persistent In-Memory Key-Value Store Server",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--host",
        type=str,
        default=settings.HOST,
        help="Host address to bind to",
    )

    parser.add_argument(
        "--port",
        type=int,
        default=settings.PORT,
        help="Port number to listen on",
    )

    parser.add_argument(
        "--aof-path",
        type=str,
        default=settings.AOF_PATH,
        help="Path of the append-only log to create or replay",
    )

    parser.add_argument(
        "--flush-interval",
        type=float,
        default=settings.FLUSH_INTERVAL,
        help="Seconds between append-only log flushes",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        default=settings.DEBUG,
        help="Enable debug logging",
    )

    return parser.parse_args(argv)


def setup_logging(debug: bool = False) -> None:
    """Configure logging based on debug flag."""
    level = logging.DEBUG if debug else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
        ]
    )


def main(argv=None) -> None:
    """Main entry point for the server."""
    args = parse_args(argv)

    setup_logging(debug=args.debug)
    logger = logging.getLogger(__name__)

    # The process refuses to start without a working log
    engine = CommandEngine()
    try:
        aof = AppendOnlyLog.open(args.aof_path, engine, flush_interval=args.flush_interval)
    except PersistenceError as exc:
        logger.error(f"Failed to initialize AOF: {exc}")
        sys.exit(1)

    server = RedisLiteServer(
        host=args.host,
        port=args.port,
        engine=engine,
        aof=aof,
        flush_interval=args.flush_interval,
    )

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    async def shutdown(sig: signal.Signals) -> None:
        """Handle shutdown signal."""
        logger.info(f"Received signal {sig.name}, initiating shutdown...")
        await server.stop()

    # Register signal handlers (Unix only)
    if sys.platform != 'win32':
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda s=sig: asyncio.create_task(shutdown(s))
            )

    # Log startup info
    logger.info("Starting redis-lite server")
    logger.info(f"  Host: {args.host}")
    logger.info(f"  Port: {args.port}")
    logger.info(f"  AOF: {args.aof_path} ({aof.records_replayed} commands replayed)")
    logger.info(f"  Flush interval: {args.flush_interval}s")

    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    except OSError as exc:
        logger.error(f"Server error: {exc}")
        raise
    finally:
        # Every connection has finished once stop() returns
        loop.run_until_complete(server.stop())
        try:
            aof.close()
        except PersistenceError as exc:
            logger.error(f"Failed to close AOF: {exc}")
        loop.run_until_complete(loop.shutdown_asyncgens())
        loop.close()
        logger.info("Server shutdown complete")


if __name__ == "__main__":
    main()
