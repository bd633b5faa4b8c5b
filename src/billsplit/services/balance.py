from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from billsplit.db.models import Expense
from billsplit.services.settlement import Transfer, resolve_settlements
from billsplit.utils.parse import normalize_expenses, normalize_members


@dataclass(slots=True)
class MemberBalance:
    name: str
    paid: float = 0.0
    share: float = 0.0
    balance: float = 0.0

    def as_payload(self) -> dict[str, Any]:
        return {"name": self.name, "paid": self.paid, "share": self.share, "balance": self.balance}


@dataclass(slots=True)
class BalanceResult:
    total_expense: float = 0.0
    per_person_share: float = 0.0
    member_balances: dict[str, MemberBalance] = field(default_factory=dict)
    settlements: list[Transfer] = field(default_factory=list)

    def settlements_for(self, name: str) -> list[Transfer]:
        return [t for t in self.settlements if name in (t.from_member, t.to_member)]

    def as_payload(self) -> dict[str, Any]:
        return {
            "totalExpense": self.total_expense,
            "perPersonShare": self.per_person_share,
            "memberBalances": {name: mb.as_payload() for name, mb in self.member_balances.items()},
            "settlements": [t.as_payload() for t in self.settlements],
        }


def credit_payers(expense: Expense, balances: dict[str, MemberBalance]) -> None:
    """Add what each payer of ``expense`` contributed to their ``paid`` total.

    Unknown payer names are skipped without complaint.
    """
    if expense.multi_payer and expense.payers:
        contributions = [(payer.name, payer.amount) for payer in expense.payers]
    elif expense.payers:
        contributions = [(expense.payers[0].name, expense.amount)]
    else:
        contributions = []

    for name, amount in contributions:
        entry = balances.get(name)
        if entry is not None:
            entry.paid += amount


def calculate_balance(members: Sequence[Any], expenses: Sequence[Any]) -> BalanceResult:
    """Split the group's total evenly and net it against what everyone paid.

    ``members`` and ``expenses`` may be model instances or raw records; both
    go through the normalizers in ``billsplit.utils.parse`` first, which treat
    anything other than a list or tuple as empty. Empty input on either side
    yields an all-zero result. Names are used exactly as given.
    """
    roster = normalize_members(members)
    records: Sequence[Expense] = normalize_expenses(expenses)
    if not roster or not records:
        return BalanceResult()

    total_expense = sum(expense.amount for expense in records)
    per_person_share = total_expense / len(roster)

    balances: dict[str, MemberBalance] = {}
    for member in roster:
        # duplicate names share one bucket, the later entry replaces the earlier
        balances[member.name] = MemberBalance(name=member.name, share=per_person_share)

    for expense in records:
        credit_payers(expense, balances)

    for entry in balances.values():
        entry.balance = entry.paid - entry.share

    return BalanceResult(
        total_expense=total_expense,
        per_person_share=per_person_share,
        member_balances=balances,
        settlements=resolve_settlements(balances),
    )
