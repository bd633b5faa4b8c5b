from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from numbers import Real
from typing import Any, List, Mapping, Protocol, Union

from billsplit.utils.money import EPSILON, is_credit, is_debt


class HasBalance(Protocol):
    balance: float


@dataclass(slots=True)
class Transfer:
    from_member: str
    to_member: str
    amount: float

    def as_payload(self) -> dict[str, Any]:
        return {"from": self.from_member, "to": self.to_member, "amount": self.amount}


def _balance_of(value: Union[HasBalance, float, Decimal]) -> float:
    if isinstance(value, (Real, Decimal)):
        return float(value)
    return value.balance


def resolve_settlements(member_balances: Mapping[str, Union[HasBalance, float, Decimal]]) -> List[Transfer]:
    """Greedy largest-first netting of debtors against creditors.

    Each debtor, biggest debt first, pays the current biggest creditor until
    the debt is within ``EPSILON`` of zero. Creditors that drop below
    ``EPSILON`` leave the queue. The order is fixed after the initial sort.
    """
    creditors: list[list[Any]] = []
    debtors: list[tuple[str, float]] = []

    for name, value in member_balances.items():
        balance = _balance_of(value)
        if is_debt(balance):
            debtors.append((name, abs(balance)))
        elif is_credit(balance):
            creditors.append([name, balance])

    creditors.sort(key=lambda x: x[1], reverse=True)
    debtors.sort(key=lambda x: x[1], reverse=True)

    transfers: list[Transfer] = []

    for debt_name, remaining in debtors:
        while remaining > EPSILON and creditors:
            creditor = creditors[0]
            cred_name, cred_amount = creditor

            transfer_amount = min(remaining, cred_amount)
            transfers.append(Transfer(from_member=debt_name, to_member=cred_name, amount=transfer_amount))

            remaining -= transfer_amount
            creditor[1] = cred_amount - transfer_amount

            if creditor[1] < EPSILON:
                creditors.pop(0)

    return transfers


def apply_transfers(balances: Mapping[str, float], transfers: List[Transfer]) -> dict[str, float]:
    """Return balances after every debtor has paid what the transfers say."""
    after = dict(balances)
    for transfer in transfers:
        after[transfer.from_member] = after.get(transfer.from_member, 0.0) + transfer.amount
        after[transfer.to_member] = after.get(transfer.to_member, 0.0) - transfer.amount
    return after
