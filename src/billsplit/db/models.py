from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class SettlementStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class GroupCategory(str, Enum):
    TRIP = "trip"
    HOME = "home"
    OTHER = "other"


class MemberRole(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"


@dataclass(slots=True)
class Member:
    name: str
    email: str = ""
    id: Optional[int] = None
    role: MemberRole = MemberRole.MEMBER

    def as_payload(self) -> dict[str, Any]:
        return {"name": self.name, "email": self.email}


@dataclass(slots=True)
class Payer:
    name: str
    amount: float = 0.0

    def as_payload(self) -> dict[str, Any]:
        return {"name": self.name, "amount": self.amount}


@dataclass(slots=True)
class Expense:
    amount: float
    multi_payer: bool = False
    payers: list[Payer] = field(default_factory=list)
    split_equally: bool = True
    id: Optional[int] = None
    group_id: Optional[int] = None
    title: str = "Untitled Expense"
    date: Optional[datetime] = None

    def as_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "groupId": self.group_id,
            "title": self.title,
            "amount": self.amount,
            "date": self.date.isoformat() if self.date else None,
            "splitEqually": self.split_equally,
            "multiPayer": self.multi_payer,
            "payers": [payer.as_payload() for payer in self.payers],
        }


@dataclass(slots=True)
class Group:
    id: int
    name: str
    members: list[Member] = field(default_factory=list)
    description: str = ""
    category: GroupCategory = GroupCategory.OTHER
    currency: str = "USD"
    is_active: bool = True
    created_at: Optional[datetime] = None

    def member_emails(self) -> dict[str, str]:
        return {member.name: member.email for member in self.members}


@dataclass(slots=True)
class Settlement:
    id: int
    group_id: int
    from_member: str
    to_member: str
    amount: float
    status: SettlementStatus = SettlementStatus.PENDING
    email_sent: bool = False
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.status == SettlementStatus.COMPLETED

    def as_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "groupId": self.group_id,
            "from": self.from_member,
            "to": self.to_member,
            "amount": self.amount,
            "status": self.status.value,
            "emailSent": self.email_sent,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
