from __future__ import annotations

from typing import Any, Callable, Iterable, Sequence, TypeVar

from pydantic import ValidationError as SchemaError

from billsplit.db.models import Expense, GroupCategory, Member
from billsplit.schemas import ExpenseIn, GroupIn, RosterIn

T = TypeVar("T")


class ValidationError(ValueError):
    pass


class MissingEmailError(ValidationError):
    def __init__(self, names: Sequence[str]) -> None:
        self.names = list(names)
        super().__init__(f"The following members are missing email addresses: {', '.join(self.names)}")


def _describe(exc: SchemaError) -> str:
    error = exc.errors()[0]
    message = error["msg"].removeprefix("Value error, ")
    location = ".".join(str(part) for part in error["loc"])
    return f"Invalid {location}: {message}" if location else message


def _checked(build: Callable[[], T]) -> T:
    try:
        return build()
    except SchemaError as exc:
        raise ValidationError(_describe(exc)) from exc


def _member_payload(member: Member) -> dict[str, Any]:
    return {"name": member.name, "email": member.email}


def validate_members(members: Sequence[Member], require_email: bool = True) -> list[Member]:
    """Check a roster and return it with names trimmed."""
    if not members:
        raise ValidationError("At least one member is required")

    checked = _checked(lambda: RosterIn.model_validate({"members": [_member_payload(m) for m in members]}))
    if require_email:
        ensure_emails(members)
    return checked.roster()


def validate_group(
    name: str,
    members: Sequence[Member],
    *,
    description: str = "",
    category: GroupCategory | str = GroupCategory.OTHER,
    currency: str = "USD",
) -> GroupIn:
    group = _checked(
        lambda: GroupIn.model_validate(
            {
                "name": name,
                "members": [_member_payload(m) for m in members],
                "description": description,
                "category": category,
                "currency": currency,
            }
        )
    )
    ensure_emails(group.roster())
    return group


def validate_expense(expense: Expense, member_names: Iterable[str] | None = None) -> Expense:
    """Check amounts and payers; payer names and the title come back trimmed."""
    checked = _checked(lambda: ExpenseIn.from_expense(expense))
    expense = checked.apply_to(expense)

    if member_names is not None:
        known = set(member_names)
        unknown = [payer.name for payer in expense.payers if payer.name not in known]
        if unknown:
            raise ValidationError(f"Unknown payers: {', '.join(unknown)}")
    return expense


def ensure_emails(members: Sequence[Member]) -> None:
    missing = [member.name for member in members if not member.email]
    if missing:
        raise MissingEmailError(missing)
