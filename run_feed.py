"""Convenience script for pulling the next feed batch from the command line."""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path

# Ensure the src directory is on the Python path so the feedcontrol package can be imported
SRC_PATH = Path(__file__).resolve().parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from feedcontrol.config import ClientConfig  # noqa: E402  (import after path setup)
from feedcontrol.controllers import UserFeedController  # noqa: E402


def _load_config() -> ClientConfig:
    if os.environ.get("FEEDCONTROL_BASE_URL"):
        return ClientConfig.from_env()
    return ClientConfig.from_file()


def main() -> None:
    """Sign in, advance the feed once and print the displayed items."""

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    try:
        config = _load_config()
    except (FileNotFoundError, ValueError) as exc:
        logging.error("Could not load client configuration: %s", exc)
        sys.exit(1)

    controller = UserFeedController(config)
    try:
        controller.init()
        if not controller.authenticated:
            username = os.environ.get("FEEDCONTROL_USERNAME", "")
            secret = os.environ.get("FEEDCONTROL_SECRET", "")
            if not controller.login(username, secret):
                logging.error("%s", controller.status)
                sys.exit(1)

        outcome = controller.advance()
        if outcome is None:
            logging.error("%s", controller.status)
            sys.exit(1)
        logging.info("%s", outcome.message)
        print(json.dumps([item.model_dump(mode="json") for item in controller.items], indent=2))
    finally:
        controller.dispose()


if __name__ == "__main__":
    main()
