from decimal import Decimal

import pytest

from billsplit.services.balance import MemberBalance
from billsplit.services.settlement import Transfer, apply_transfers, resolve_settlements


def test_resolve_balances():
    balances = {
        "Ann": 500.0,
        "Ben": -300.0,
        "Cat": -200.0,
    }

    transfers = resolve_settlements(balances)

    assert transfers == [
        Transfer(from_member="Ben", to_member="Ann", amount=300.0),
        Transfer(from_member="Cat", to_member="Ann", amount=200.0),
    ]

    total = sum(t.amount for t in transfers)
    assert total == 500.0

    after = apply_transfers(balances, transfers)
    assert all(abs(value) < 0.01 for value in after.values())


def test_largest_debtor_pays_largest_creditor_first():
    balances = {
        "A": 10.0,
        "B": -5.0,
        "C": 30.0,
        "D": -35.0,
    }

    transfers = resolve_settlements(balances)

    assert transfers == [
        Transfer(from_member="D", to_member="C", amount=30.0),
        Transfer(from_member="D", to_member="A", amount=5.0),
        Transfer(from_member="B", to_member="A", amount=5.0),
    ]


def test_balances_within_a_cent_are_ignored():
    balances = {"A": 0.005, "B": -0.01, "C": 20.0, "D": -20.0}

    transfers = resolve_settlements(balances)

    assert transfers == [Transfer(from_member="D", to_member="C", amount=20.0)]
    names = {t.from_member for t in transfers} | {t.to_member for t in transfers}
    assert "A" not in names and "B" not in names


def test_accepts_member_balances():
    balances = {
        "Alice": MemberBalance(name="Alice", paid=100.0, share=50.0, balance=50.0),
        "Bob": MemberBalance(name="Bob", paid=0.0, share=50.0, balance=-50.0),
    }

    assert resolve_settlements(balances) == [Transfer(from_member="Bob", to_member="Alice", amount=50.0)]


def test_accepts_decimal_balances():
    balances = {"Alice": Decimal("50.00"), "Bob": Decimal("-30.00"), "Cat": -20}

    assert resolve_settlements(balances) == [
        Transfer(from_member="Bob", to_member="Alice", amount=30.0),
        Transfer(from_member="Cat", to_member="Alice", amount=20.0),
    ]


def test_unbalanced_input_terminates():
    transfers = resolve_settlements({"A": 10.0, "B": -25.0})

    assert transfers == [Transfer(from_member="B", to_member="A", amount=10.0)]


def test_only_creditors_or_empty():
    assert resolve_settlements({}) == []
    assert resolve_settlements({"A": 10.0, "B": 5.0}) == []


def test_per_member_totals_match_balances():
    balances = {
        "A": 41.17,
        "B": -12.5,
        "C": 7.33,
        "D": -19.99,
        "E": -16.01,
    }

    transfers = resolve_settlements(balances)

    for name, balance in balances.items():
        outgoing = sum(t.amount for t in transfers if t.from_member == name)
        incoming = sum(t.amount for t in transfers if t.to_member == name)
        if balance < 0:
            assert outgoing == pytest.approx(-balance, abs=0.01)
            assert incoming == 0
        else:
            assert incoming == pytest.approx(balance, abs=0.01)
            assert outgoing == 0
    assert all(t.amount >= 0.01 for t in transfers)


def test_transfer_payload():
    assert Transfer("Bob", "Alice", 50.0).as_payload() == {"from": "Bob", "to": "Alice", "amount": 50.0}
