from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from billsplit.db.models import Expense, GroupCategory, Member, Payer
from billsplit.utils.money import EPSILON


class MemberIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1)
    email: Optional[EmailStr] = None

    @field_validator("email", mode="before")
    @classmethod
    def blank_email_is_missing(cls, value: object) -> object:
        return value or None

    def to_member(self) -> Member:
        return Member(name=self.name, email=self.email or "")


class RosterIn(BaseModel):
    members: List[MemberIn] = Field(min_length=1)

    @field_validator("members")
    @classmethod
    def unique_names(cls, members: List[MemberIn]) -> List[MemberIn]:
        seen: set[str] = set()
        for member in members:
            key = member.name.casefold()
            if key in seen:
                raise ValueError(f"Duplicate member name: {member.name}")
            seen.add(key)
        return members

    def roster(self) -> list[Member]:
        return [member.to_member() for member in self.members]


class GroupIn(RosterIn):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1)
    description: str = ""
    category: GroupCategory = GroupCategory.OTHER
    currency: str = Field("USD", min_length=1)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, value: str) -> str:
        return value.upper()


class PayerIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str
    amount: float = Field(ge=0)


class ExpenseIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = "Untitled Expense"
    amount: float = Field(ge=0)
    multi_payer: bool = False
    split_equally: bool = True
    payers: List[PayerIn] = []

    @model_validator(mode="after")
    def payers_cover_amount(self) -> ExpenseIn:
        if self.multi_payer:
            paid = sum(payer.amount for payer in self.payers)
            if abs(paid - self.amount) > EPSILON:
                raise ValueError(f"Payer amounts add up to {paid:.2f} but the expense is {self.amount:.2f}")
        return self

    @classmethod
    def from_expense(cls, expense: Expense) -> ExpenseIn:
        return cls.model_validate(
            {
                "title": expense.title,
                "amount": expense.amount,
                "multi_payer": expense.multi_payer,
                "split_equally": expense.split_equally,
                "payers": [{"name": payer.name, "amount": payer.amount} for payer in expense.payers],
            }
        )

    def apply_to(self, expense: Expense) -> Expense:
        expense.title = self.title
        expense.payers = [Payer(name=payer.name, amount=payer.amount) for payer in self.payers]
        return expense
