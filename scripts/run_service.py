"""Run the drawing service: deadline timers plus the seed queue."""

from __future__ import annotations

import argparse
import asyncio
import logging

from blockdraw.config import Settings
from blockdraw.service import build_service, run_forever


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run the block-seeded drawing service")
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="create missing tables instead of relying on Alembic migrations",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # requests/urllib3 log every poll at DEBUG.
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    service = build_service(Settings.from_env(), create_tables=args.create_tables)
    try:
        asyncio.run(run_forever(service))
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Interrupted")


if __name__ == "__main__":
    main()
