import pytest

from billsplit.db.models import Expense, Member, Payer
from billsplit.services.balance import BalanceResult, calculate_balance
from billsplit.services.settlement import Transfer, apply_transfers


def test_two_members_single_payer():
    result = calculate_balance(
        [{"name": "Alice", "email": "alice@example.com"}, {"name": "Bob", "email": "bob@example.com"}],
        [{"amount": 100, "payers": [{"name": "Alice", "amount": 100}]}],
    )

    assert result.total_expense == 100
    assert result.per_person_share == 50
    assert result.member_balances["Alice"].balance == 50
    assert result.member_balances["Bob"].balance == -50
    assert result.settlements == [Transfer(from_member="Bob", to_member="Alice", amount=50)]


def test_largest_creditor_absorbs_both_debtors():
    result = calculate_balance(
        ["A", "B", "C"],
        [
            {"amount": 90, "payers": [{"name": "A", "amount": 90}]},
            {"amount": 30, "payers": [{"name": "B", "amount": 30}]},
        ],
    )

    assert result.total_expense == 120
    assert result.per_person_share == 40
    assert result.member_balances["A"].paid == 90
    assert result.member_balances["A"].balance == 50
    assert result.member_balances["B"].paid == 30
    assert result.member_balances["B"].balance == -10
    assert result.member_balances["C"].paid == 0
    assert result.member_balances["C"].balance == -40
    assert result.settlements == [
        Transfer(from_member="C", to_member="A", amount=40),
        Transfer(from_member="B", to_member="A", amount=10),
    ]


def test_unknown_multi_payer_counts_in_total_only():
    result = calculate_balance(
        ["A", "B"],
        [
            {
                "amount": 100,
                "multiPayer": True,
                "payers": [{"name": "A", "amount": 60}, {"name": "Ghost", "amount": 40}],
            }
        ],
    )

    assert result.total_expense == 100
    assert result.member_balances["A"].paid == 60
    assert result.member_balances["B"].paid == 0
    assert "Ghost" not in result.member_balances
    # the 40 paid by an unknown payer leaves the balances short of zero
    assert sum(mb.balance for mb in result.member_balances.values()) == pytest.approx(-40)
    assert result.settlements == [Transfer(from_member="B", to_member="A", amount=10)]


def test_multi_payer_credits_each_payer():
    result = calculate_balance(
        [Member("A"), Member("B"), Member("C")],
        [Expense(amount=90, multi_payer=True, payers=[Payer("A", 50), Payer("B", 40)])],
    )

    assert result.member_balances["A"].balance == 20
    assert result.member_balances["B"].balance == 10
    assert result.member_balances["C"].balance == -30
    assert result.settlements == [
        Transfer(from_member="C", to_member="A", amount=20),
        Transfer(from_member="C", to_member="B", amount=10),
    ]


def test_legacy_single_payer_field():
    result = calculate_balance(["A", "B"], [{"amount": "80", "payer": "B"}])

    assert result.member_balances["B"].paid == 80
    assert result.settlements == [Transfer(from_member="A", to_member="B", amount=40)]


def test_single_payer_gets_full_amount_regardless_of_entry_amount():
    result = calculate_balance(["A", "B"], [{"amount": 60, "payers": [{"name": "A", "amount": 5}]}])

    assert result.member_balances["A"].paid == 60


def test_empty_inputs_give_zero_result():
    for members, expenses in (([], []), (["A", "B"], []), ([], [{"amount": 10, "payer": "A"}])):
        result = calculate_balance(members, expenses)
        assert result == BalanceResult()
        assert result.total_expense == 0
        assert result.settlements == []


def test_malformed_amounts_count_as_zero():
    result = calculate_balance(
        ["A", "B"],
        [
            {"amount": "abc", "payer": "A"},
            {"amount": None, "payer": "A"},
            {"payer": "B"},
            {"amount": 20, "payer": "B"},
        ],
    )

    assert result.total_expense == 20
    assert result.member_balances["B"].balance == 10
    assert result.member_balances["A"].balance == -10


def test_malformed_shapes_do_not_raise():
    result = calculate_balance(
        ["A", "B", 7],
        [
            {"amount": 10, "payer": "A", "payers": 5},
            None,
            "lunch",
            {"amount": 20, "multiPayer": True, "payers": "B"},
        ],
    )

    assert result.total_expense == 30
    assert result.member_balances["A"].paid == 10
    assert result.member_balances["B"].paid == 0
    assert list(result.member_balances) == ["A", "B", ""]

    assert calculate_balance(None, [{"amount": 10, "payer": "A"}]) == BalanceResult()
    assert calculate_balance(["A"], 42) == BalanceResult()


def test_names_are_used_as_given():
    result = calculate_balance(["Alice", " Alice"], [{"amount": 30, "payer": " Alice"}])

    assert list(result.member_balances) == ["Alice", " Alice"]
    assert result.member_balances[" Alice"].paid == 30
    assert result.member_balances["Alice"].paid == 0


def test_duplicate_names_share_a_bucket():
    result = calculate_balance(
        ["A", "A", "B"],
        [{"amount": 30, "payer": "A"}],
    )

    assert list(result.member_balances) == ["A", "B"]
    assert result.per_person_share == 10
    assert result.member_balances["A"].balance == 20


def test_balances_sum_to_zero_and_settle():
    members = ["Ann", "Ben", "Cat", "Dan"]
    expenses = [
        {"amount": 100, "payer": "Ann"},
        {"amount": 33.33, "payer": "Ben"},
        {"amount": 71.5, "multiPayer": True, "payers": [{"name": "Cat", "amount": 50}, {"name": "Ann", "amount": 21.5}]},
        {"amount": 12.01, "payer": "Dan"},
    ]

    result = calculate_balance(members, expenses)

    assert sum(mb.balance for mb in result.member_balances.values()) == pytest.approx(0, abs=0.01)
    after = apply_transfers({n: mb.balance for n, mb in result.member_balances.items()}, result.settlements)
    assert all(abs(value) < 0.01 for value in after.values())
    assert all(t.amount >= 0.01 for t in result.settlements)


def test_payload_shape():
    payload = calculate_balance(["Alice", "Bob"], [{"amount": 100, "payer": "Alice"}]).as_payload()

    assert payload == {
        "totalExpense": 100.0,
        "perPersonShare": 50.0,
        "memberBalances": {
            "Alice": {"name": "Alice", "paid": 100.0, "share": 50.0, "balance": 50.0},
            "Bob": {"name": "Bob", "paid": 0.0, "share": 50.0, "balance": -50.0},
        },
        "settlements": [{"from": "Bob", "to": "Alice", "amount": 50.0}],
    }
