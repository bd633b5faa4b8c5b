from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Iterable, Optional, Sequence

import asyncpg

from billsplit.db.models import (
    Expense,
    Group,
    GroupCategory,
    Member,
    MemberRole,
    Payer,
    Settlement,
    SettlementStatus,
)
from billsplit.logging import get_logger, sql_logger
from billsplit.services.settlement import Transfer


class Database:
    def __init__(self, dsn: str) -> None:
        self._dsn = dsn
        self._pool: asyncpg.Pool | None = None
        self._log = get_logger(__name__)

    async def connect(self) -> None:
        if self._pool is None:
            # asyncpg expects a plain postgresql:// scheme, without "+asyncpg"
            dsn = self._dsn.replace("+asyncpg", "")
            self._pool = await asyncpg.create_pool(dsn)
            self._log.info("db.pool.created")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            self._log.info("db.pool.closed")

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        await self._ensure_pool()
        assert self._pool
        sql_logger.info("sql.fetch", query=query, args=args)
        return await self._pool.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        await self._ensure_pool()
        assert self._pool
        sql_logger.info("sql.fetchrow", query=query, args=args)
        return await self._pool.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        await self._ensure_pool()
        assert self._pool
        sql_logger.info("sql.fetchval", query=query, args=args)
        return await self._pool.fetchval(query, *args)

    async def execute(self, query: str, *args: Any) -> str:
        await self._ensure_pool()
        assert self._pool
        sql_logger.info("sql.execute", query=query, args=args)
        return await self._pool.execute(query, *args)

    async def executemany(self, command: str, args: Iterable[Iterable[Any]]) -> None:
        await self._ensure_pool()
        assert self._pool
        sql_logger.info("sql.executemany", query=command)
        await self._pool.executemany(command, args)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        await self._ensure_pool()
        assert self._pool
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                sql_logger.info("sql.transaction.begin")
                yield conn
        sql_logger.info("sql.transaction.commit")

    async def _ensure_pool(self) -> None:
        if self._pool is None:
            await self.connect()


def _member_from_row(row: Any) -> Member:
    return Member(
        id=row["id"],
        name=row["name"],
        email=row["email"] or "",
        role=MemberRole(row["role"]),
    )


def _group_from_row(row: Any, members: list[Member]) -> Group:
    return Group(
        id=row["id"],
        name=row["name"],
        description=row["description"] or "",
        category=GroupCategory(row["category"]),
        currency=row["currency"],
        is_active=row["is_active"],
        created_at=row["created_at"],
        members=members,
    )


def _expense_from_row(row: Any) -> Expense:
    names = row["payer_names"] or []
    amounts = row["payer_amounts"] or []
    return Expense(
        id=row["id"],
        group_id=row["group_id"],
        title=row["title"],
        amount=float(row["amount"]),
        date=row["date"],
        split_equally=row["split_equally"],
        multi_payer=row["multi_payer"],
        payers=[Payer(name=name, amount=float(amount)) for name, amount in zip(names, amounts)],
    )


def _settlement_from_row(row: Any) -> Settlement:
    return Settlement(
        id=row["id"],
        group_id=row["group_id"],
        from_member=row["from_member"],
        to_member=row["to_member"],
        amount=float(row["amount"]),
        status=SettlementStatus(row["status"]),
        email_sent=row["email_sent"],
        completed_at=row["completed_at"],
        created_at=row["created_at"],
    )


_EXPENSE_SELECT = """
    SELECT e.*,
           array_agg(p.name ORDER BY p.position) FILTER (WHERE p.name IS NOT NULL) AS payer_names,
           array_agg(p.amount ORDER BY p.position) FILTER (WHERE p.name IS NOT NULL) AS payer_amounts
    FROM expenses e
    LEFT JOIN expense_payers p ON p.expense_id = e.id
"""


class BillSplitRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def create_group(
        self,
        name: str,
        members: Sequence[Member],
        description: str = "",
        category: GroupCategory = GroupCategory.OTHER,
        currency: str = "USD",
    ) -> Group:
        row = await self.db.fetchrow(
            """
            INSERT INTO groups (name, description, category, currency)
            VALUES ($1, $2, $3, $4)
            RETURNING *
            """,
            name,
            description,
            category.value,
            currency,
        )
        assert row is not None
        if members:
            await self.db.executemany(
                """
                INSERT INTO group_members (group_id, name, email, role)
                VALUES ($1, $2, $3, $4)
                """,
                ((row["id"], m.name, m.email, m.role.value) for m in members),
            )
        group = await self.get_group(row["id"])
        assert group is not None
        return group

    async def get_group(self, group_id: int) -> Group | None:
        row = await self.db.fetchrow("SELECT * FROM groups WHERE id = $1", group_id)
        if row is None:
            return None
        return _group_from_row(row, await self.get_group_members(group_id))

    async def list_groups(self) -> list[Group]:
        """Newest groups first, each with its members."""
        rows = await self.db.fetch("SELECT * FROM groups ORDER BY created_at DESC, id DESC")
        if not rows:
            return []
        member_rows = await self.db.fetch(
            "SELECT * FROM group_members WHERE group_id = ANY($1::bigint[]) ORDER BY id",
            [row["id"] for row in rows],
        )
        members: dict[int, list[Member]] = {}
        for member_row in member_rows:
            members.setdefault(member_row["group_id"], []).append(_member_from_row(member_row))
        return [_group_from_row(row, members.get(row["id"], [])) for row in rows]

    async def update_group(
        self, group_id: int, name: str, members: Optional[Sequence[Member]] = None
    ) -> Group | None:
        """Rename the group; a given ``members`` list replaces the whole roster."""
        async with self.db.transaction() as conn:
            status = await conn.execute(
                "UPDATE groups SET name = $2, updated_at = now() WHERE id = $1",
                group_id,
                name,
            )
            if status.endswith(" 0"):
                return None
            if members is not None:
                await conn.execute("DELETE FROM group_members WHERE group_id = $1", group_id)
                await conn.executemany(
                    """
                    INSERT INTO group_members (group_id, name, email, role)
                    VALUES ($1, $2, $3, $4)
                    """,
                    [(group_id, m.name, m.email, m.role.value) for m in members],
                )
        return await self.get_group(group_id)

    async def get_group_members(self, group_id: int) -> list[Member]:
        rows = await self.db.fetch(
            "SELECT * FROM group_members WHERE group_id = $1 ORDER BY id",
            group_id,
        )
        return [_member_from_row(row) for row in rows]

    async def delete_group(self, group_id: int) -> tuple[int, int]:
        """Remove a group with its expenses and settlements; returns both counts."""
        async with self.db.transaction() as conn:
            expenses = await conn.fetchval("SELECT count(*) FROM expenses WHERE group_id = $1", group_id)
            settlements = await conn.fetchval("SELECT count(*) FROM settlements WHERE group_id = $1", group_id)
            await conn.execute("DELETE FROM groups WHERE id = $1", group_id)
        return int(expenses or 0), int(settlements or 0)

    async def list_group_expenses(self, group_id: int) -> list[Expense]:
        rows = await self.db.fetch(
            _EXPENSE_SELECT
            + """
            WHERE e.group_id = $1
            GROUP BY e.id
            ORDER BY e.date DESC, e.id DESC
            """,
            group_id,
        )
        return [_expense_from_row(row) for row in rows]

    async def get_expense(self, expense_id: int) -> Expense | None:
        row = await self.db.fetchrow(
            _EXPENSE_SELECT
            + """
            WHERE e.id = $1
            GROUP BY e.id
            """,
            expense_id,
        )
        return _expense_from_row(row) if row else None

    async def create_expense(self, group_id: int, expense: Expense) -> Expense:
        async with self.db.transaction() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO expenses (group_id, title, amount, date, split_equally, multi_payer)
                VALUES ($1, $2, $3, COALESCE($4, now()), $5, $6)
                RETURNING id
                """,
                group_id,
                expense.title,
                expense.amount,
                expense.date,
                expense.split_equally,
                expense.multi_payer,
            )
            assert row is not None
            await self._write_payers(conn, row["id"], expense.payers)
        created = await self.get_expense(row["id"])
        assert created is not None
        return created

    async def update_expense(self, expense: Expense) -> Expense | None:
        assert expense.id is not None
        async with self.db.transaction() as conn:
            status = await conn.execute(
                """
                UPDATE expenses
                SET title = $2, amount = $3, date = COALESCE($4, date),
                    split_equally = $5, multi_payer = $6, updated_at = now()
                WHERE id = $1
                """,
                expense.id,
                expense.title,
                expense.amount,
                expense.date,
                expense.split_equally,
                expense.multi_payer,
            )
            if status.endswith(" 0"):
                return None
            await conn.execute("DELETE FROM expense_payers WHERE expense_id = $1", expense.id)
            await self._write_payers(conn, expense.id, expense.payers)
        return await self.get_expense(expense.id)

    async def delete_expense(self, expense_id: int) -> None:
        await self.db.execute("DELETE FROM expenses WHERE id = $1", expense_id)

    async def _write_payers(self, conn: asyncpg.Connection, expense_id: int, payers: Sequence[Payer]) -> None:
        if payers:
            await conn.executemany(
                """
                INSERT INTO expense_payers (expense_id, position, name, amount)
                VALUES ($1, $2, $3, $4)
                """,
                [(expense_id, position, payer.name, payer.amount) for position, payer in enumerate(payers)],
            )

    async def replace_pending_settlements(self, group_id: int, transfers: Sequence[Transfer]) -> None:
        """Swap the group's pending settlements for ``transfers`` in one transaction.

        Completed settlements stay untouched.
        """
        async with self.db.transaction() as conn:
            await conn.execute(
                "DELETE FROM settlements WHERE group_id = $1 AND status = 'pending'",
                group_id,
            )
            if transfers:
                await conn.executemany(
                    """
                    INSERT INTO settlements (group_id, from_member, to_member, amount, status, email_sent)
                    VALUES ($1, $2, $3, $4, 'pending', false)
                    """,
                    [(group_id, t.from_member, t.to_member, t.amount) for t in transfers],
                )

    async def list_settlements(self, group_id: Optional[int] = None, limit: int = 100) -> list[Settlement]:
        if group_id is None:
            rows = await self.db.fetch(
                "SELECT * FROM settlements ORDER BY created_at DESC LIMIT $1",
                limit,
            )
        else:
            rows = await self.db.fetch(
                "SELECT * FROM settlements WHERE group_id = $1 ORDER BY created_at DESC",
                group_id,
            )
        return [_settlement_from_row(row) for row in rows]

    async def get_settlement(self, settlement_id: int) -> Settlement | None:
        row = await self.db.fetchrow("SELECT * FROM settlements WHERE id = $1", settlement_id)
        return _settlement_from_row(row) if row else None

    async def complete_settlement(self, settlement_id: int, completed_at: datetime) -> Settlement | None:
        row = await self.db.fetchrow(
            """
            UPDATE settlements
            SET status = 'completed',
                completed_at = COALESCE(completed_at, $2),
                updated_at = now()
            WHERE id = $1
            RETURNING *
            """,
            settlement_id,
            completed_at,
        )
        return _settlement_from_row(row) if row else None

    async def upsert_pending_settlement(self, group_id: int, transfer: Transfer, email_sent: bool) -> Settlement:
        row = await self.db.fetchrow(
            """
            UPDATE settlements
            SET amount = $4, email_sent = $5, updated_at = now()
            WHERE id = (
                SELECT id FROM settlements
                WHERE group_id = $1 AND from_member = $2 AND to_member = $3 AND status = 'pending'
                ORDER BY id
                LIMIT 1
            )
            RETURNING *
            """,
            group_id,
            transfer.from_member,
            transfer.to_member,
            transfer.amount,
            email_sent,
        )
        if row is None:
            row = await self.db.fetchrow(
                """
                INSERT INTO settlements (group_id, from_member, to_member, amount, status, email_sent)
                VALUES ($1, $2, $3, $4, 'pending', $5)
                RETURNING *
                """,
                group_id,
                transfer.from_member,
                transfer.to_member,
                transfer.amount,
                email_sent,
            )
        assert row is not None
        return _settlement_from_row(row)

    async def fetch_unsent_settlements(self) -> list[asyncpg.Record]:
        return await self.db.fetch(
            """
            SELECT s.id, s.group_id, s.from_member, s.to_member, s.amount,
                   g.name AS group_name, g.currency, m.email AS from_email
            FROM settlements s
            JOIN groups g ON g.id = s.group_id
            LEFT JOIN group_members m ON m.group_id = s.group_id AND m.name = s.from_member
            WHERE s.status = 'pending'
              AND s.email_sent = false
              AND g.is_active = true
            ORDER BY s.id
            """
        )

    async def mark_settlement_email_sent(self, settlement_id: int) -> None:
        await self.db.execute(
            "UPDATE settlements SET email_sent = true, updated_at = now() WHERE id = $1",
            settlement_id,
        )
