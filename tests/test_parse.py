from datetime import datetime, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from billsplit.db.models import Expense, Member, Payer
from billsplit.utils.money import format_amount, is_credit, is_debt, parse_amount
from billsplit.utils.parse import normalize_expense, normalize_member, parse_expense_date


def test_parse_amount_lenient():
    assert parse_amount(12) == 12.0
    assert parse_amount("12.50") == 12.5
    assert parse_amount(" 7.25 USD") == 7.25
    assert parse_amount(".5") == 0.5
    assert parse_amount("-3") == -3.0
    assert parse_amount(Decimal("9.99")) == 9.99
    assert parse_amount("abc") == 0.0
    assert parse_amount("") == 0.0
    assert parse_amount(None) == 0.0
    assert parse_amount(True) == 0.0
    assert parse_amount(float("nan")) == 0.0
    assert parse_amount("inf") == 0.0
    assert parse_amount([1, 2]) == 0.0


def test_tolerance_helpers():
    assert is_debt(-0.02) and not is_debt(-0.01)
    assert is_credit(0.02) and not is_credit(0.01)
    assert format_amount(12.5, "EUR") == "12.50 EUR"


def test_normalize_member_shapes():
    assert normalize_member("  Alice ") == Member(name="  Alice ")
    assert normalize_member({"name": "Bob", "email": " Bob@Example.com "}) == Member(name="Bob", email="bob@example.com")
    member = Member(name="Cat", email="cat@example.com", id=3)
    assert normalize_member(member) is member


def test_normalize_expense_multi_payer():
    expense = normalize_expense(
        {
            "amount": "100",
            "multiPayer": True,
            "payers": [{"name": "A", "amount": "60"}, {"name": "B", "amount": 40}],
            "expenseName": "Dinner",
        }
    )

    assert expense.multi_payer is True
    assert expense.payers == [Payer("A", 60.0), Payer("B", 40.0)]
    assert expense.title == "Dinner"
    assert expense.amount == 100.0


def test_normalize_expense_legacy_payer_wins():
    expense = normalize_expense({"amount": 50, "payer": "Z", "payers": [{"name": "A", "amount": 50}]})

    assert expense.multi_payer is False
    assert expense.payers == [Payer("Z", 50.0)]


def test_normalize_expense_multi_without_payers_falls_back():
    expense = normalize_expense({"amount": 20, "multiPayer": True, "payers": [], "payer": "A"})

    assert expense.multi_payer is False
    assert expense.payers == [Payer("A", 20.0)]


def test_normalize_expense_without_any_payer():
    expense = normalize_expense({"amount": 20})

    assert expense.payers == []
    assert expense.split_equally is True


def test_normalize_expense_is_stable_on_models():
    original = Expense(amount=30.0, payers=[Payer("A", 30.0)], id=7, group_id=2, title="Taxi")

    assert normalize_expense(original) == original


def test_parse_expense_date():
    moscow = ZoneInfo("Europe/Moscow")
    parsed = parse_expense_date("2024-05-10T18:00", moscow)
    assert parsed == datetime(2024, 5, 10, 15, 0, tzinfo=timezone.utc)

    aware = parse_expense_date("2024-05-10T18:00:00Z", moscow)
    assert aware == datetime(2024, 5, 10, 18, 0, tzinfo=timezone.utc)

    with pytest.raises(ValueError):
        parse_expense_date("10 мая", moscow)
    with pytest.raises(ValueError):
        parse_expense_date(None, moscow)
