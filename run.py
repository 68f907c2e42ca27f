#!/usr/bin/env python3
"""
Bot fleet - main runner script

Usage:
    python run.py                          # Run with defaults from config/config.yaml
    python run.py --port 8080              # Serve the control surface on another port
    python run.py --accounts bots.txt      # Use another account file
    python run.py --log-level DEBUG        # Verbose logging
"""

from __future__ import annotations

import argparse
import logging

from dotenv import load_dotenv

from botfleet.config import get_validated_config, load_config, set_config_value
from botfleet.dashboard import run_dashboard

# Load environment variables
load_dotenv()

logger = logging.getLogger("botfleet")


def main() -> None:
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Run the bot fleet and its control surface"
    )
    parser.add_argument(
        "--config", default="config/config.yaml", help="Path to config file"
    )
    parser.add_argument("--host", help="Override dashboard host")
    parser.add_argument("--port", type=int, help="Override dashboard port")
    parser.add_argument("--accounts", help="Override account file path")
    parser.add_argument("--log-level", help="Override log level")
    args: argparse.Namespace = parser.parse_args()

    load_config(args.config)

    if args.host:
        set_config_value("dashboard.host", args.host)
    if args.port:
        set_config_value("dashboard.port", args.port)
    if args.accounts:
        set_config_value("accounts_file", args.accounts)
    if args.log_level:
        set_config_value("logging.level", args.log_level)

    config = get_validated_config()

    logging.basicConfig(
        level=config.logging.level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info(
        "Control surface on %s:%d, backend %s, accounts from %s",
        config.dashboard.host,
        config.dashboard.port,
        config.server.backend,
        config.accounts_file,
    )

    run_dashboard(config)


if __name__ == "__main__":
    main()
