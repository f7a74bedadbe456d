from __future__ import annotations

import argparse
import logging

from aviso.config import load_settings
from aviso.main import build_services


logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger("seed_sources")


def main() -> None:
    settings = load_settings()
    parser = argparse.ArgumentParser(description="Load a YAML source registry into the database.")
    parser.add_argument("path", nargs="?", default=settings.sources_path)
    parser.add_argument("--ingest", action="store_true", help="run one ingestion cycle afterwards")
    args = parser.parse_args()

    services = build_services(settings, use_cache=False)
    count = services.registry.load_file(args.path)
    logger.info("seeded %s sources from %s", count, args.path)
    if args.ingest:
        summary = services.ingest.run_cycle()
        logger.info("initial ingest new=%s clusters=%s errors=%s", summary.new, summary.clusters_created, summary.errors)


if __name__ == "__main__":
    main()
