from __future__ import annotations

import asyncio
import signal

from billsplit.config import get_settings
from billsplit.db.repo import BillSplitRepository, Database
from billsplit.logging import configure_logging, get_logger
from billsplit.scheduler import setup_scheduler
from billsplit.services.mailer import Mailer


async def main() -> None:
    configure_logging()
    settings = get_settings()
    db = Database(settings.database_url)
    await db.connect()
    repo = BillSplitRepository(db)
    mailer = Mailer(settings)

    log = get_logger(__name__)
    if not mailer.configured:
        log.warning("mail.unconfigured", production=settings.is_production)
    else:
        check = await mailer.verify()
        if not check.success:
            log.warning("mail.verify.failed", error=check.error)

    scheduler = await setup_scheduler(repo, mailer)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    log.info("app.start", env=settings.app_env)
    try:
        await stop.wait()
    finally:
        scheduler.shutdown(wait=False)
        await db.close()
        log.info("app.stop")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
