"""Payment reconciliation worker; run periodically from cron or a scheduler."""
import logging
import os

from dotenv import load_dotenv

from storify.core.config import settings
from storify.core.database import create_all_tables
from storify.core.logging import configure_logging
from storify.features.billing.reconcile_job import run_reconcile_job

logger = logging.getLogger("storify.workers.reconcile")


def main() -> dict:
    configure_logging(os.getenv("ENV", settings.ENV))
    create_all_tables()
    result = run_reconcile_job()
    logger.info(f"[reconcile] worker finished: {result}")
    return result


if __name__ == "__main__":
    load_dotenv()
    print(main())
