#!/usr/bin/env python
"""
Run Realtime Server
-------------------
Launch script for the realtime hub's HTTP/WebSocket server.

Usage:
    python scripts/run_server.py --config <yaml_path> [options]
    python scripts/run_server.py            # configuration from environment

Examples:
    # Run from config file
    python scripts/run_server.py --config config/realtime.yaml

    # Environment-driven (JWT_SECRET, PORT, WS_CORS_ORIGIN, ...)
    JWT_SECRET=change-me PORT=5000 python scripts/run_server.py

    # Print a token for local testing
    python scripts/run_server.py --config config/realtime.yaml --issue-token 42 --role admin
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from pathlib import Path

# Add project root to path
_project_root = Path(__file__).parent.parent
sys.path.insert(0, str(_project_root / "src"))

import uvicorn

from tourist_realtime.api import create_app
from tourist_realtime.auth import issue_token
from tourist_realtime.config import RealtimeConfig


logger = logging.getLogger("run_server")


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Run the tourist safety realtime hub",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML config (default: read environment)",
    )
    parser.add_argument("--host", type=str, default=None, help="Override bind address")
    parser.add_argument("--port", type=int, default=None, help="Override bind port")
    parser.add_argument(
        "--issue-token",
        metavar="SUBJECT_ID",
        default=None,
        help="Print a signed token for SUBJECT_ID and exit",
    )
    parser.add_argument(
        "--role",
        type=str,
        default="user",
        help="Role claim for --issue-token (default: user)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser.parse_args()


def load_config(args: argparse.Namespace) -> RealtimeConfig:
    """Build the configuration from file or environment plus CLI overrides."""
    if args.config:
        config = RealtimeConfig.from_yaml(args.config)
    else:
        config = RealtimeConfig.from_env()

    overrides = {}
    if args.host:
        overrides["host"] = args.host
    if args.port:
        overrides["port"] = args.port
    return dataclasses.replace(config, **overrides) if overrides else config


def main() -> int:
    """Main entry point."""
    args = parse_args()
    setup_logging(args.verbose)

    try:
        config = load_config(args)
    except (OSError, ValueError) as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1

    if args.issue_token is not None:
        print(issue_token(
            config.jwt_secret,
            args.issue_token,
            role=args.role,
            expires_in_sec=config.token_expire_sec,
            algorithm=config.jwt_algorithm,
        ))
        return 0

    logger.info("Server starting on %s:%d", config.host, config.port)
    logger.info("Environment: %s", config.environment)
    logger.info("WebSocket endpoint: ws://%s:%d/ws", config.host, config.port)
    logger.info("Health check: http://%s:%d/health", config.host, config.port)

    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        log_level="debug" if args.verbose else "info",
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
