from __future__ import annotations

import logging
import os
import time

from aviso.config import load_settings
from aviso.main import build_services


settings = load_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(message)s",
)
logger = logging.getLogger("ingest_worker")


def main() -> None:
    services = build_services(settings, use_cache=False)
    if settings.sources_path and os.path.exists(settings.sources_path):
        services.registry.load_file(settings.sources_path)

    interval_s = max(60, settings.ingest_interval_minutes * 60)
    run_once = os.getenv("INGEST_RUN_ONCE", "").lower() in ("1", "true", "yes", "on")
    logger.info(
        "ingest_worker starting: interval=%ss sources=%s retention_days=%s",
        interval_s,
        len(services.registry.list_active_sources()),
        settings.retention_days,
    )
    while True:
        started = time.time()
        try:
            summary = services.ingest.run_cycle()
            services.ingest.purge(settings.retention_days)
            logger.info(
                "ingest_worker run ok (%.2fs) new=%s failed_sources=%s",
                time.time() - started,
                summary.new,
                summary.sources_failed,
            )
        except Exception as exc:
            logger.exception("ingest_worker run failed: %s", exc)
        if run_once:
            return
        time.sleep(interval_s)


if __name__ == "__main__":
    main()
