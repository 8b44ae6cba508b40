"""Command that runs the scraper until interrupted."""

from __future__ import annotations

import argparse
import logging
import sys

from metaraid.config import load
from metaraid.database import new_redis
from metaraid.fatal import fatal_on_error
from metaraid.scraper import Scraper
from metaraid.spotify import new_clients

log = logging.getLogger(__name__)

_BANNER = "\n".join(
    [
        "",
        "  M e t a R a i d",
        "-" * 57,
    ]
)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="metaraid-scraper")
    parser.add_argument("--config", default="config.yaml", help="path of the YAML config")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    print(_BANNER)
    sys.stdout.flush()

    with fatal_on_error("Failed to load configs"):
        conf = load(args.config)

    rdb = new_redis(conf.redis)
    clients = new_clients(conf.spotify)

    scraper = Scraper(clients, rdb, conf.scraper)
    scraper.start()
    try:
        while not scraper.wait(1.0):
            pass
        log.info("Scraper has no running workers, exiting...")
    except KeyboardInterrupt:
        log.info("Received an interrupt signal, exiting...")
    finally:
        scraper.stop()
    return scraper.exit_code


if __name__ == "__main__":
    sys.exit(main())