"""
Rank Scheduler Entrypoint
Standalone scheduler process, or a single job run for external cron

    python -m src.core.jobs.run_scheduler                  # long-running scheduler
    python -m src.core.jobs.run_scheduler promotion_check  # one run, then exit
"""

import asyncio
import logging
import sys

from src.core.jobs.scheduler import build_scheduler, run_named_job
from src.core.ranks import validate_rank_configs
from src.database.connection import init_db

logger = logging.getLogger(__name__)


async def run_forever():
    scheduler = build_scheduler()
    scheduler.start()
    logger.info("🚀 Rank scheduler started: %s", [job.id for job in scheduler.get_jobs()])
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown(wait=False)


async def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    validate_rank_configs()
    await init_db()

    if argv:
        result = await run_named_job(argv[0])
        logger.info("%s finished: %s", argv[0], result.model_dump_json())
        return result

    await run_forever()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
