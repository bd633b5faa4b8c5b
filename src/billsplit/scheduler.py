from __future__ import annotations

from typing import Any, Protocol

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from billsplit.config import get_settings
from billsplit.logging import get_logger
from billsplit.services.mailer import Mailer
from billsplit.services.summary import format_payment_due, payment_due_subject


class NotificationRepository(Protocol):
    async def fetch_unsent_settlements(self) -> list[Any]: ...

    async def mark_settlement_email_sent(self, settlement_id: int) -> None: ...


async def setup_scheduler(repo: NotificationRepository, mailer: Mailer) -> AsyncIOScheduler:
    settings = get_settings()

    scheduler = AsyncIOScheduler(timezone=settings.tz)
    scheduler.add_job(
        notify_pending_settlements,
        IntervalTrigger(minutes=settings.notify_interval_minutes),
        kwargs={"repo": repo, "mailer": mailer},
        id="settlements.notify",
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    return scheduler


async def notify_pending_settlements(repo: NotificationRepository, mailer: Mailer) -> int:
    """Email the debtor of every pending settlement nobody has been told about yet."""
    log = get_logger(__name__)
    rows = await repo.fetch_unsent_settlements()
    sent = 0

    for row in rows:
        if not row["from_email"]:
            log.warning("settlement.notify.no_email", settlement_id=row["id"], member=row["from_member"])
            continue

        result = await mailer.send(
            row["from_email"],
            payment_due_subject(row["group_name"]),
            format_payment_due(row["group_name"], row["from_member"], row["to_member"], row["amount"], row["currency"]),
        )
        if result.success:
            await repo.mark_settlement_email_sent(row["id"])
            sent += 1
            log.info("settlement.notify", settlement_id=row["id"], group_id=row["group_id"])

    return sent
