"""Command-line entry point for the MCP server."""

import argparse
import asyncio
import logging
import os
from typing import List, Optional

from .errors import TransportError
from .server import ServerConfig, create_server
from .transport import create_transport


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(threadName)s] %(filename)s:%(lineno)d: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    defaults = ServerConfig.from_env()
    parser = argparse.ArgumentParser(description="Run the MCP JSON-RPC tool server.")
    parser.add_argument(
        "--log-file",
        default=defaults.log_file,
        help="Path to the log file (stdout carries protocol traffic).",
    )
    parser.add_argument(
        "--log-level",
        default=defaults.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Minimum level written to the log file.",
    )
    parser.add_argument(
        "--transport",
        default=defaults.transport,
        choices=["stdio", "websocket"],
        help="Transport type.",
    )
    parser.add_argument(
        "--ws-addr",
        default=defaults.ws_addr,
        help="WebSocket listen address as host:port (websocket transport only).",
    )
    return parser


def setup_logging(log_file: str, level: str = "DEBUG") -> None:
    """Send all log records to ``log_file``."""
    parent = os.path.dirname(log_file)
    if parent:
        os.makedirs(parent, exist_ok=True)

    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
    logger.info("Logging system initialized")


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the CLI."""
    args = build_parser().parse_args(argv)

    config = ServerConfig.from_env()
    config.log_file = args.log_file
    config.log_level = args.log_level
    config.transport = args.transport
    config.ws_addr = args.ws_addr

    setup_logging(config.log_file, config.log_level)

    try:
        transport = create_transport(config)
    except ValueError as e:
        logger.error(str(e))
        return 2

    server = create_server(config)
    try:
        asyncio.run(server.run(transport))
    except TransportError as e:
        logger.error(f"Server terminated: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
