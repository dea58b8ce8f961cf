"""Command-line entry point for launching the DocChat API server."""

from __future__ import annotations

import argparse
import sys
from typing import TYPE_CHECKING

import uvicorn

from docchat.config import config

if TYPE_CHECKING:
    from collections.abc import Sequence

APP_FACTORY = "docchat.api:create_app"


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Build the CLI parser and read command-line arguments."""  # noqa: DOC201
    parser = argparse.ArgumentParser(
        description="Launch the DocChat API server.",
    )
    parser.add_argument(
        "--host",
        default=config.HOST,
        help=f"Bind address for the server (default: {config.HOST}).",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=config.PORT,
        help=f"Port for the server (default: {config.PORT}).",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Restart the server when source files change.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Validate configuration and run the API server."""  # noqa: DOC201
    args = parse_args(argv)

    config.setup_logging()
    logger = config.get_logger(__name__)

    try:
        config.validate()
    except ValueError:
        logger.exception("Configuration invalid")
        return 1

    logger.info("Server is running on http://%s:%s", args.host, args.port)

    try:
        uvicorn.run(
            APP_FACTORY,
            factory=True,
            host=args.host,
            port=args.port,
            reload=args.reload,
            log_level=config.LOG_LEVEL.lower(),
        )
    except KeyboardInterrupt:
        logger.info("DocChat stopped by user")
    except OSError:
        logger.exception("Unable to start server")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
