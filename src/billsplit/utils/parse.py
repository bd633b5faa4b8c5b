from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any, Optional
from zoneinfo import ZoneInfo

from billsplit.db.models import Expense, Member, Payer
from billsplit.utils.money import parse_amount


def _field(source: Any, *names: str, default: Any = None) -> Any:
    """Read the first present key/attribute out of a mapping, record or object."""
    for name in names:
        if isinstance(source, Mapping) or hasattr(source, "keys"):
            try:
                value = source[name]
            except (KeyError, IndexError):
                continue
        else:
            if not hasattr(source, name):
                continue
            value = getattr(source, name)
        if value is not None:
            return value
    return default


def _name(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    return str(_field(value, "name", default=""))


def _items(value: Any) -> list[Any]:
    """Only real lists and tuples count as collections; anything else is empty."""
    if isinstance(value, (list, tuple)):
        return list(value)
    return []


def normalize_member(raw: Any) -> Member:
    """Members arrive either as bare names or as records with name/email."""
    if isinstance(raw, Member):
        return raw
    if isinstance(raw, str):
        return Member(name=raw)
    return Member(
        name=_name(raw),
        email=str(_field(raw, "email", default="")).strip().lower(),
        id=_field(raw, "id"),
    )


def normalize_members(raw: Any) -> list[Member]:
    return [normalize_member(item) for item in _items(raw)]


def normalize_payer(raw: Any) -> Payer:
    if isinstance(raw, Payer):
        return raw
    return Payer(name=_name(raw), amount=parse_amount(_field(raw, "amount")))


def normalize_expense(raw: Any) -> Expense:
    """Collapse the legacy and multi-payer record shapes into one ``Expense``.

    A multi-payer expense keeps every payer with their own amount. Anything
    else ends up with at most one payer carrying the full amount: the legacy
    singular ``payer`` field wins over the first ``payers`` entry.
    """
    amount = parse_amount(_field(raw, "amount"))
    payers = [normalize_payer(item) for item in _items(_field(raw, "payers"))]
    multi_payer = bool(_field(raw, "multiPayer", "multi_payer", default=False))

    common = {
        "split_equally": bool(_field(raw, "splitEqually", "split_equally", default=True)),
        "id": _field(raw, "id", "_id"),
        "group_id": _field(raw, "groupId", "group_id"),
        "title": _field(raw, "title", "expenseName", default="Untitled Expense"),
        "date": _coerce_date(_field(raw, "date")),
    }

    if multi_payer and payers:
        return Expense(amount=amount, multi_payer=True, payers=payers, **common)

    legacy_payer = _name(_field(raw, "payer"))
    payer_name = legacy_payer or (payers[0].name if payers else "")
    single = [Payer(name=payer_name, amount=amount)] if payer_name else []
    return Expense(amount=amount, multi_payer=False, payers=single, **common)


def normalize_expenses(raw: Any) -> list[Expense]:
    return [normalize_expense(item) for item in _items(raw)]


def _coerce_date(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    return None


def parse_expense_date(value: Any, default_tz: ZoneInfo) -> datetime:
    """Parse an ISO date/datetime for an expense; naive values get ``default_tz``."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValueError("Expected an ISO date such as '2024-05-10' or '2024-05-10T18:00'") from exc
    else:
        raise ValueError("Expense date is missing")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=default_tz)
    return parsed.astimezone(ZoneInfo("UTC"))
