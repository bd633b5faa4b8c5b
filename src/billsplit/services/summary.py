from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from billsplit.services.balance import BalanceResult
from billsplit.utils.money import format_amount

FOOTER = "Thank you for using Bill Splitter!\n\nThis is an automated message from Bill Splitter. Please do not reply to this email."


@dataclass(slots=True)
class SummaryLine:
    with_member: str
    # negative: the member pays, positive: the member receives
    amount: float

    @property
    def direction(self) -> str:
        return "to receive" if self.amount >= 0 else "to pay"


def build_member_summary(result: BalanceResult, name: str) -> list[SummaryLine]:
    lines: list[SummaryLine] = []
    for transfer in result.settlements_for(name):
        if transfer.from_member == name:
            lines.append(SummaryLine(with_member=transfer.to_member, amount=-transfer.amount))
        else:
            lines.append(SummaryLine(with_member=transfer.from_member, amount=transfer.amount))
    return lines


def payment_due_subject(group_name: str) -> str:
    return f"Bill Splitter - Payment Due for {group_name}"


def format_payment_due(group_name: str, from_member: str, to_member: str, amount: float, currency: str = "USD") -> str:
    lines = [
        f"Hello {from_member},",
        "",
        f"According to the expenses in {group_name}, you need to pay:",
        f"  Amount: {format_amount(amount, currency)}",
        f"  To: {to_member}",
        "",
        "Please make this payment at your earliest convenience and mark it as complete in the app.",
        FOOTER,
    ]
    return "\n".join(lines)


def completion_subject(group_name: str) -> str:
    return f"Bill Splitter - Settlement Completed in {group_name}"


def format_settlement_completed(
    group_name: str, from_member: str, to_member: str, amount: float, currency: str = "USD"
) -> str:
    lines = [
        "Hello,",
        "",
        f"A settlement in your group {group_name} has been marked as completed:",
        f"  {from_member} has paid {to_member} the amount of {format_amount(amount, currency)}.",
        "",
        FOOTER,
    ]
    return "\n".join(lines)


def summary_subject(group_name: str) -> str:
    return f"Bill Splitter - Balance Summary for {group_name}"


def format_balance_summary(
    group_name: str, member_name: str, lines: Iterable[SummaryLine], currency: str = "USD"
) -> str:
    body = [
        f"Hello {member_name},",
        "",
        f"Here is your current balance summary for the group {group_name}:",
    ]
    rows = [f"  {line.with_member}: {format_amount(abs(line.amount), currency)} {line.direction}" for line in lines]
    body.extend(rows or ["  You are all settled up."])
    body.extend(["", FOOTER])
    return "\n".join(body)
