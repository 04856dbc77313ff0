"""
Entry point for dockrevui.

Sets up logging (file under the XDG data dir, level from config), then starts
the Textual UI at the requested address.

Usage:
  dockrevui [ADDRESS]

ADDRESS is the initial route address, e.g. "/services/app/web" or
"#/queue" for hash addressing. Runtime settings come from the config file
and DOCKREV_* environment variables (see config.py).
"""

import argparse
import logging
from typing import List, Optional

from . import __version__, get_log_path
from .config import config_manager

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    log_path = config_manager.get_custom_log_path() or get_log_path()
    logging.basicConfig(filename=log_path, level=config_manager.get_log_level(),
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dockrevui", description="Terminal UI for Dockrev")
    parser.add_argument("address", nargs="?", default="/", help="initial route address")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    setup_logging()
    logger.info(f"Starting dockrevui {__version__} at {args.address}")

    from .textual_app import run
    try:
        run(args.address)
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt caught, exiting...")


if __name__ == "__main__":
    main()
