"""Group ledger operations: expenses in, balances and settlements out.

Every expense mutation regenerates the group's pending settlements while the
group lock is held, so a regeneration always sees the expense list that the
mutation just wrote.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Protocol, Sequence
from zoneinfo import ZoneInfo

from billsplit.db.models import Expense, Group, GroupCategory, Member, Settlement
from billsplit.logging import get_logger
from billsplit.services.balance import BalanceResult, calculate_balance
from billsplit.services.mailer import EmailResult, Mailer
from billsplit.services.settlement import Transfer
from billsplit.services.summary import (
    build_member_summary,
    completion_subject,
    format_balance_summary,
    format_payment_due,
    format_settlement_completed,
    payment_due_subject,
    summary_subject,
)
from billsplit.services.validation import ValidationError, ensure_emails, validate_expense, validate_group
from billsplit.state import GroupLocks, group_locks
from billsplit.utils.parse import normalize_expense, normalize_members, parse_expense_date

log = get_logger(__name__)

UTC = ZoneInfo("UTC")


class Repository(Protocol):
    async def create_group(
        self,
        name: str,
        members: Sequence[Member],
        description: str = "",
        category: GroupCategory = GroupCategory.OTHER,
        currency: str = "USD",
    ) -> Group: ...

    async def get_group(self, group_id: int) -> Group | None: ...

    async def list_groups(self) -> list[Group]: ...

    async def update_group(
        self, group_id: int, name: str, members: Optional[Sequence[Member]] = None
    ) -> Group | None: ...

    async def delete_group(self, group_id: int) -> tuple[int, int]: ...

    async def list_group_expenses(self, group_id: int) -> list[Expense]: ...

    async def get_expense(self, expense_id: int) -> Expense | None: ...

    async def create_expense(self, group_id: int, expense: Expense) -> Expense: ...

    async def update_expense(self, expense: Expense) -> Expense | None: ...

    async def delete_expense(self, expense_id: int) -> None: ...

    async def replace_pending_settlements(self, group_id: int, transfers: Sequence[Transfer]) -> None: ...

    async def list_settlements(self, group_id: Optional[int] = None, limit: int = 100) -> list[Settlement]: ...

    async def get_settlement(self, settlement_id: int) -> Settlement | None: ...

    async def complete_settlement(self, settlement_id: int, completed_at: datetime) -> Settlement | None: ...

    async def upsert_pending_settlement(self, group_id: int, transfer: Transfer, email_sent: bool) -> Settlement: ...


class GroupNotFoundError(LookupError):
    pass


class ExpenseNotFoundError(LookupError):
    pass


class SettlementNotFoundError(LookupError):
    pass


@dataclass(slots=True)
class GroupDeletion:
    group_id: int
    name: str
    member_count: int
    expenses: int
    settlements: int


@dataclass(slots=True)
class NotificationResult:
    from_member: str
    to_member: str
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None

    def as_payload(self) -> dict[str, Any]:
        return {
            "from": self.from_member,
            "to": self.to_member,
            "success": self.success,
            "messageId": self.message_id,
            "error": self.error,
        }


@dataclass(slots=True)
class SummaryResult:
    member: str
    email: str
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


async def get_group_or_raise(repo: Repository, group_id: int) -> Group:
    group = await repo.get_group(group_id)
    if group is None:
        raise GroupNotFoundError(f"Group {group_id} not found")
    return group


async def create_group(
    repo: Repository,
    name: str,
    members: Sequence[Any],
    *,
    description: str = "",
    category: str = "other",
    currency: str = "USD",
) -> Group:
    checked = validate_group(
        name,
        normalize_members(members),
        description=description,
        category=category,
        currency=currency,
    )
    group = await repo.create_group(
        checked.name,
        checked.roster(),
        description=checked.description,
        category=checked.category,
        currency=checked.currency,
    )
    log.info("ledger.group.create", group_id=group.id, members=len(group.members))
    return group


async def list_groups(repo: Repository) -> list[Group]:
    return await repo.list_groups()


async def update_group(
    repo: Repository,
    group_id: int,
    *,
    name: Optional[str] = None,
    members: Optional[Sequence[Any]] = None,
    locks: GroupLocks = group_locks,
) -> Group:
    """Rename a group and/or replace its roster.

    Falsy arguments keep the stored value. A new roster changes everyone's
    share, so pending settlements are regenerated with it.
    """
    async with locks.hold(group_id):
        group = await get_group_or_raise(repo, group_id)
        checked = validate_group(
            name or group.name,
            normalize_members(members) if members else group.members,
            description=group.description,
            category=group.category,
            currency=group.currency,
        )
        updated = await repo.update_group(group_id, checked.name, checked.roster() if members else None)
        if updated is None:
            raise GroupNotFoundError(f"Group {group_id} not found")
        if members:
            await _regenerate(repo, group_id)

    log.info("ledger.group.update", group_id=group_id, members=len(updated.members), roster_changed=bool(members))
    return updated


async def delete_group(repo: Repository, group_id: int, locks: GroupLocks = group_locks) -> GroupDeletion:
    async with locks.hold(group_id):
        group = await get_group_or_raise(repo, group_id)
        expenses, settlements = await repo.delete_group(group_id)
    log.info("ledger.group.delete", group_id=group_id, expenses=expenses, settlements=settlements)
    return GroupDeletion(
        group_id=group_id,
        name=group.name,
        member_count=len(group.members),
        expenses=expenses,
        settlements=settlements,
    )


async def get_group_balance(repo: Repository, group_id: int) -> BalanceResult:
    group = await get_group_or_raise(repo, group_id)
    expenses = await repo.list_group_expenses(group_id)
    return calculate_balance(group.members, expenses)


async def _regenerate(repo: Repository, group_id: int) -> list[Transfer]:
    result = await get_group_balance(repo, group_id)
    await repo.replace_pending_settlements(group_id, result.settlements)
    log.info(
        "ledger.settlements.regenerate",
        group_id=group_id,
        total_expense=result.total_expense,
        settlements=len(result.settlements),
    )
    return result.settlements


async def regenerate_settlements(
    repo: Repository, group_id: int, locks: GroupLocks = group_locks
) -> list[Transfer]:
    async with locks.hold(group_id):
        return await _regenerate(repo, group_id)


async def list_expenses(repo: Repository, group_id: int) -> list[Expense]:
    await get_group_or_raise(repo, group_id)
    return await repo.list_group_expenses(group_id)


async def get_expense_or_raise(repo: Repository, expense_id: int) -> Expense:
    expense = await repo.get_expense(expense_id)
    if expense is None or expense.group_id is None:
        raise ExpenseNotFoundError(f"Expense {expense_id} not found")
    return expense


async def add_expense(
    repo: Repository,
    group_id: int,
    raw: Any,
    *,
    tz: ZoneInfo = UTC,
    locks: GroupLocks = group_locks,
) -> Expense:
    expense = normalize_expense(raw)
    raw_date = raw.get("date") if isinstance(raw, Mapping) else None
    if raw_date is not None:
        expense.date = _parse_date(raw_date, tz)

    async with locks.hold(group_id):
        group = await get_group_or_raise(repo, group_id)
        expense = validate_expense(expense, [member.name for member in group.members])
        expense.group_id = group_id
        created = await repo.create_expense(group_id, expense)
        await _regenerate(repo, group_id)

    log.info("ledger.expense.create", group_id=group_id, expense_id=created.id, amount=created.amount)
    return created


def _parse_date(value: Any, tz: ZoneInfo) -> datetime:
    try:
        return parse_expense_date(value, tz)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def _merge_expense(existing: Expense, changes: Mapping[str, Any], tz: ZoneInfo) -> Expense:
    """Overlay the supplied fields on ``existing``; absent or null fields keep their value."""
    payload = existing.as_payload()
    if changes.get("expenseName") or changes.get("title"):
        payload["title"] = changes.get("title") or changes.get("expenseName")
    if changes.get("amount"):
        payload["amount"] = changes["amount"]
    for key in ("splitEqually", "multiPayer"):
        if changes.get(key) is not None:
            payload[key] = changes[key]
    if changes.get("payers"):
        payload["payers"] = changes["payers"]
    if changes.get("payer"):
        payload["payer"] = changes["payer"]

    merged = normalize_expense(payload)
    merged.id = existing.id
    merged.group_id = existing.group_id
    merged.date = _parse_date(changes["date"], tz) if changes.get("date") else existing.date
    return merged


async def update_expense(
    repo: Repository,
    expense_id: int,
    changes: Mapping[str, Any],
    *,
    tz: ZoneInfo = UTC,
    locks: GroupLocks = group_locks,
) -> Expense:
    group_id = (await get_expense_or_raise(repo, expense_id)).group_id

    async with locks.hold(group_id):
        # re-read under the lock, another mutation may have landed meanwhile
        existing = await repo.get_expense(expense_id)
        if existing is None:
            raise ExpenseNotFoundError(f"Expense {expense_id} not found")
        group = await get_group_or_raise(repo, group_id)

        merged = _merge_expense(existing, changes, tz)
        merged = validate_expense(merged, [member.name for member in group.members])
        updated = await repo.update_expense(merged)
        if updated is None:
            raise ExpenseNotFoundError(f"Expense {expense_id} not found")
        await _regenerate(repo, group_id)

    log.info("ledger.expense.update", group_id=group_id, expense_id=expense_id)
    return updated


async def delete_expense(repo: Repository, expense_id: int, locks: GroupLocks = group_locks) -> None:
    group_id = (await get_expense_or_raise(repo, expense_id)).group_id

    async with locks.hold(group_id):
        await repo.delete_expense(expense_id)
        await _regenerate(repo, group_id)

    log.info("ledger.expense.delete", group_id=group_id, expense_id=expense_id)


async def list_settlements(repo: Repository, group_id: Optional[int] = None) -> list[Settlement]:
    return await repo.list_settlements(group_id)


async def complete_settlement(
    repo: Repository,
    settlement_id: int,
    *,
    mailer: Optional[Mailer] = None,
    now: Optional[datetime] = None,
) -> Settlement:
    """Mark a settlement as paid. Completing it again returns it unchanged."""
    existing = await repo.get_settlement(settlement_id)
    if existing is None:
        raise SettlementNotFoundError(f"Settlement {settlement_id} not found")
    if existing.is_completed:
        return existing

    settlement = await repo.complete_settlement(settlement_id, now or datetime.now(timezone.utc))
    if settlement is None:
        raise SettlementNotFoundError(f"Settlement {settlement_id} not found")
    log.info("ledger.settlement.complete", settlement_id=settlement_id, group_id=settlement.group_id)

    if mailer is not None:
        group = await repo.get_group(settlement.group_id)
        if group is not None:
            await _notify_completion(mailer, group, settlement)
    return settlement


async def _notify_completion(mailer: Mailer, group: Group, settlement: Settlement) -> list[EmailResult]:
    emails = group.member_emails()
    body = format_settlement_completed(
        group.name, settlement.from_member, settlement.to_member, settlement.amount, group.currency
    )
    results = []
    for name in (settlement.from_member, settlement.to_member):
        email = emails.get(name)
        if email:
            results.append(await mailer.send(email, completion_subject(group.name), body))
    return results


async def send_settlement_notifications(
    repo: Repository,
    mailer: Mailer,
    group_id: int,
    locks: GroupLocks = group_locks,
) -> list[NotificationResult]:
    """Email every debtor what they owe and record the settlement as notified."""
    results: list[NotificationResult] = []

    async with locks.hold(group_id):
        group = await get_group_or_raise(repo, group_id)
        ensure_emails(group.members)
        expenses = await repo.list_group_expenses(group_id)
        balance = calculate_balance(group.members, expenses)
        emails = group.member_emails()

        for transfer in balance.settlements:
            email = emails.get(transfer.from_member)
            if not email:
                results.append(
                    NotificationResult(
                        from_member=transfer.from_member,
                        to_member=transfer.to_member,
                        success=False,
                        error="Email address not found for sender",
                    )
                )
                continue

            sent = await mailer.send(
                email,
                payment_due_subject(group.name),
                format_payment_due(
                    group.name, transfer.from_member, transfer.to_member, transfer.amount, group.currency
                ),
            )
            results.append(
                NotificationResult(
                    from_member=transfer.from_member,
                    to_member=transfer.to_member,
                    success=sent.success,
                    message_id=sent.message_id,
                    error=sent.error,
                )
            )
            await repo.upsert_pending_settlement(group_id, transfer, email_sent=sent.success)

    log.info(
        "ledger.notifications.send",
        group_id=group_id,
        sent=sum(1 for r in results if r.success),
        total=len(results),
    )
    return results


async def send_balance_summary(repo: Repository, mailer: Mailer, group_id: int) -> list[SummaryResult]:
    group = await get_group_or_raise(repo, group_id)
    expenses = await repo.list_group_expenses(group_id)
    balance = calculate_balance(group.members, expenses)

    results: list[SummaryResult] = []
    for member in group.members:
        if not member.email:
            results.append(SummaryResult(member=member.name, email="", success=False, error="Missing email address"))
            continue
        lines = build_member_summary(balance, member.name)
        sent = await mailer.send(
            member.email,
            summary_subject(group.name),
            format_balance_summary(group.name, member.name, lines, group.currency),
        )
        results.append(
            SummaryResult(
                member=member.name,
                email=member.email,
                success=sent.success,
                message_id=sent.message_id,
                error=sent.error,
            )
        )

    log.info("ledger.summary.send", group_id=group_id, sent=sum(1 for r in results if r.success))
    return results
