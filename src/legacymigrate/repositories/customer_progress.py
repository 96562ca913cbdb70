"""
Customer progress repository.

Customer records are written by the partition planner when customers are
assigned to instances, and rolled up by the orchestrator after all of a
customer's spaces have been processed. Re-assigning a customer updates
its instance and totals but keeps its status, so a completed customer
stays completed across re-planning.
"""

import asyncio
import dataclasses
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from legacymigrate.models import CustomerAssignment, CustomerProgress, ProgressStatus
from legacymigrate.observability import (
    ATTR_CUSTOMER,
    ATTR_CUSTOMER_COUNT,
    ATTR_DB_SYSTEM,
    ATTR_INSTANCE_ID,
    ATTR_PROGRESS_STATUS,
    Tracer,
    create_tracer,
)
from legacymigrate.repositories._connection import execute_with_connection
from legacymigrate.repositories.schema import CUSTOMER_PROGRESS_TABLE
from legacymigrate.repositories.space_progress import _parse_timestamp, check_transition

if TYPE_CHECKING:
    import aiosqlite

DEFAULT_ASSIGN_BATCH_SIZE = 25

_COLUMNS = (
    "customer, status, total_spaces, completed_spaces, total_uploads, completed_uploads, "
    "instance_id, filter, error, assigned_at, updated_at, completed_at"
)


def _row_to_progress(row: Any) -> CustomerProgress:
    return CustomerProgress(
        customer=row[0],
        status=ProgressStatus(row[1]),
        total_spaces=row[2] or 0,
        completed_spaces=row[3] or 0,
        total_uploads=row[4] or 0,
        completed_uploads=row[5] or 0,
        instance_id=row[6],
        filter=row[7],
        error=row[8],
        assigned_at=_parse_timestamp(row[9]),
        updated_at=_parse_timestamp(row[10]),
        completed_at=_parse_timestamp(row[11]),
    )


def _chunks(items: Sequence[CustomerAssignment], size: int) -> list[Sequence[CustomerAssignment]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


@runtime_checkable
class CustomerProgressRepository(Protocol):
    """Protocol for customer progress storage."""

    async def get_customer_progress(self, customer: str) -> CustomerProgress | None:
        ...

    async def assign_customer(
        self,
        assignment: CustomerAssignment,
        instance_id: str,
        *,
        filter: str | None = None,
    ) -> None:
        """Record a customer's instance assignment and totals; status is kept."""
        ...

    async def batch_assign_customers(
        self,
        assignments: Sequence[CustomerAssignment],
        instance_id: str,
        *,
        filter: str | None = None,
        batch_size: int = DEFAULT_ASSIGN_BATCH_SIZE,
    ) -> int:
        """
        Assign many customers, writing batch_size records per round trip.

        Returns:
            Number of customers written.
        """
        ...

    async def mark_customer_in_progress(self, customer: str) -> None:
        """Mark a customer in progress, creating the record if absent."""
        ...

    async def update_customer_progress(
        self,
        customer: str,
        *,
        total_spaces: int,
        completed_spaces: int,
        total_uploads: int,
        completed_uploads: int,
    ) -> None:
        """Roll up space and upload counts."""
        ...

    async def mark_customer_completed(self, customer: str) -> None:
        ...

    async def mark_customer_failed(self, customer: str, error: str) -> None:
        ...

    async def get_customers_by_status(self, status: ProgressStatus) -> list[CustomerProgress]:
        ...

    async def get_customers_by_instance(self, instance_id: str) -> list[CustomerProgress]:
        ...

    async def get_failed_customers(self) -> list[CustomerProgress]:
        ...

    async def get_all_customers(self) -> list[CustomerProgress]:
        ...

    async def is_customer_completed(self, customer: str) -> bool:
        ...


class PostgreSQLCustomerProgressRepository:
    """
    PostgreSQL implementation of customer progress storage.

    Stores records in the `migration_customer_progress` table.

    Example:
        >>> repo = PostgreSQLCustomerProgressRepository(engine)
        >>> await repo.is_customer_completed("did:mailto:example.com:alice")
        False
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self.conn = conn

    async def _select(self, where: str, params: dict[str, Any]) -> list[CustomerProgress]:
        query = text(
            f"SELECT {_COLUMNS} FROM {CUSTOMER_PROGRESS_TABLE} WHERE {where} ORDER BY customer"
        )
        async with execute_with_connection(self.conn, transactional=False) as conn:
            result = await conn.execute(query, params)
            rows = result.fetchall()
        return [_row_to_progress(row) for row in rows]

    async def get_customer_progress(self, customer: str) -> CustomerProgress | None:
        with self._tracer.span(
            "legacymigrate.customer_progress.get",
            {ATTR_CUSTOMER: customer, ATTR_DB_SYSTEM: "postgresql"},
        ):
            rows = await self._select("customer = :customer", {"customer": customer})
            return rows[0] if rows else None

    async def assign_customer(
        self,
        assignment: CustomerAssignment,
        instance_id: str,
        *,
        filter: str | None = None,
    ) -> None:
        await self.batch_assign_customers([assignment], instance_id, filter=filter)

    async def batch_assign_customers(
        self,
        assignments: Sequence[CustomerAssignment],
        instance_id: str,
        *,
        filter: str | None = None,
        batch_size: int = DEFAULT_ASSIGN_BATCH_SIZE,
    ) -> int:
        with self._tracer.span(
            "legacymigrate.customer_progress.batch_assign",
            {
                ATTR_INSTANCE_ID: instance_id,
                ATTR_CUSTOMER_COUNT: len(assignments),
                ATTR_DB_SYSTEM: "postgresql",
            },
        ):
            query = text(f"""
                INSERT INTO {CUSTOMER_PROGRESS_TABLE}
                    (customer, status, total_spaces, completed_spaces, total_uploads,
                     completed_uploads, instance_id, filter, assigned_at, updated_at)
                VALUES
                    (:customer, :status, :total_spaces, 0, :total_uploads,
                     0, :instance_id, :filter, :now, :now)
                ON CONFLICT (customer) DO UPDATE SET
                    total_spaces = EXCLUDED.total_spaces,
                    total_uploads = EXCLUDED.total_uploads,
                    instance_id = EXCLUDED.instance_id,
                    filter = EXCLUDED.filter,
                    assigned_at = EXCLUDED.assigned_at,
                    updated_at = EXCLUDED.updated_at
            """)
            written = 0
            for chunk in _chunks(assignments, batch_size):
                now = datetime.now(UTC)
                params = [
                    {
                        "customer": a.customer,
                        "status": ProgressStatus.PENDING.value,
                        "total_spaces": a.total_space_count or a.space_count,
                        "total_uploads": a.upload_count,
                        "instance_id": instance_id,
                        "filter": filter,
                        "now": now,
                    }
                    for a in chunk
                ]
                async with execute_with_connection(self.conn, transactional=True) as conn:
                    await conn.execute(query, params)
                written += len(chunk)
            return written

    async def mark_customer_in_progress(self, customer: str) -> None:
        await self._set_status(customer, ProgressStatus.IN_PROGRESS)

    async def update_customer_progress(
        self,
        customer: str,
        *,
        total_spaces: int,
        completed_spaces: int,
        total_uploads: int,
        completed_uploads: int,
    ) -> None:
        with self._tracer.span(
            "legacymigrate.customer_progress.update",
            {ATTR_CUSTOMER: customer, ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text(f"""
                INSERT INTO {CUSTOMER_PROGRESS_TABLE}
                    (customer, status, total_spaces, completed_spaces, total_uploads,
                     completed_uploads, updated_at)
                VALUES
                    (:customer, :status, :total_spaces, :completed_spaces, :total_uploads,
                     :completed_uploads, :now)
                ON CONFLICT (customer) DO UPDATE SET
                    total_spaces = EXCLUDED.total_spaces,
                    completed_spaces = EXCLUDED.completed_spaces,
                    total_uploads = EXCLUDED.total_uploads,
                    completed_uploads = EXCLUDED.completed_uploads,
                    updated_at = EXCLUDED.updated_at
            """)
            async with execute_with_connection(self.conn, transactional=True) as conn:
                await conn.execute(
                    query,
                    {
                        "customer": customer,
                        "status": ProgressStatus.IN_PROGRESS.value,
                        "total_spaces": total_spaces,
                        "completed_spaces": completed_spaces,
                        "total_uploads": total_uploads,
                        "completed_uploads": completed_uploads,
                        "now": datetime.now(UTC),
                    },
                )

    async def mark_customer_completed(self, customer: str) -> None:
        await self._set_status(customer, ProgressStatus.COMPLETED)

    async def mark_customer_failed(self, customer: str, error: str) -> None:
        await self._set_status(customer, ProgressStatus.FAILED, error=error)

    async def _set_status(
        self,
        customer: str,
        target: ProgressStatus,
        *,
        error: str | None = None,
    ) -> None:
        with self._tracer.span(
            "legacymigrate.customer_progress.set_status",
            {
                ATTR_CUSTOMER: customer,
                ATTR_PROGRESS_STATUS: target.value,
                ATTR_DB_SYSTEM: "postgresql",
            },
        ):
            now = datetime.now(UTC)
            async with execute_with_connection(self.conn, transactional=True) as conn:
                result = await conn.execute(
                    text(f"""
                        SELECT status FROM {CUSTOMER_PROGRESS_TABLE}
                        WHERE customer = :customer
                        FOR UPDATE
                    """),
                    {"customer": customer},
                )
                row = result.fetchone()
                if row is not None:
                    check_transition(ProgressStatus(row[0]), target, customer=customer)

                await conn.execute(
                    text(f"""
                        INSERT INTO {CUSTOMER_PROGRESS_TABLE}
                            (customer, status, error, updated_at, completed_at)
                        VALUES (:customer, :status, :error, :now, :completed_at)
                        ON CONFLICT (customer) DO UPDATE SET
                            status = EXCLUDED.status,
                            error = EXCLUDED.error,
                            updated_at = EXCLUDED.updated_at,
                            completed_at = COALESCE(
                                EXCLUDED.completed_at, {CUSTOMER_PROGRESS_TABLE}.completed_at
                            )
                    """),
                    {
                        "customer": customer,
                        "status": target.value,
                        "error": error,
                        "now": now,
                        "completed_at": now if target == ProgressStatus.COMPLETED else None,
                    },
                )

    async def get_customers_by_status(self, status: ProgressStatus) -> list[CustomerProgress]:
        with self._tracer.span(
            "legacymigrate.customer_progress.get_by_status",
            {ATTR_PROGRESS_STATUS: status.value, ATTR_DB_SYSTEM: "postgresql"},
        ):
            return await self._select("status = :status", {"status": status.value})

    async def get_customers_by_instance(self, instance_id: str) -> list[CustomerProgress]:
        with self._tracer.span(
            "legacymigrate.customer_progress.get_by_instance",
            {ATTR_INSTANCE_ID: instance_id, ATTR_DB_SYSTEM: "postgresql"},
        ):
            return await self._select("instance_id = :instance_id", {"instance_id": instance_id})

    async def get_failed_customers(self) -> list[CustomerProgress]:
        return await self.get_customers_by_status(ProgressStatus.FAILED)

    async def get_all_customers(self) -> list[CustomerProgress]:
        with self._tracer.span(
            "legacymigrate.customer_progress.get_all", {ATTR_DB_SYSTEM: "postgresql"}
        ):
            return await self._select("TRUE", {})

    async def is_customer_completed(self, customer: str) -> bool:
        progress = await self.get_customer_progress(customer)
        return progress is not None and progress.status == ProgressStatus.COMPLETED


class SQLiteCustomerProgressRepository:
    """
    SQLite implementation of customer progress storage.

    Timestamps are stored as ISO 8601 TEXT; upserts use ON CONFLICT
    (SQLite 3.24+).
    """

    def __init__(
        self,
        connection: "aiosqlite.Connection",
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._connection = connection

    async def _select(self, where: str, params: tuple[Any, ...]) -> list[CustomerProgress]:
        cursor = await self._connection.execute(
            f"SELECT {_COLUMNS} FROM {CUSTOMER_PROGRESS_TABLE} WHERE {where} ORDER BY customer",
            params,
        )
        rows = await cursor.fetchall()
        return [_row_to_progress(row) for row in rows]

    async def get_customer_progress(self, customer: str) -> CustomerProgress | None:
        with self._tracer.span(
            "legacymigrate.customer_progress.get",
            {ATTR_CUSTOMER: customer, ATTR_DB_SYSTEM: "sqlite"},
        ):
            rows = await self._select("customer = ?", (customer,))
            return rows[0] if rows else None

    async def assign_customer(
        self,
        assignment: CustomerAssignment,
        instance_id: str,
        *,
        filter: str | None = None,
    ) -> None:
        await self.batch_assign_customers([assignment], instance_id, filter=filter)

    async def batch_assign_customers(
        self,
        assignments: Sequence[CustomerAssignment],
        instance_id: str,
        *,
        filter: str | None = None,
        batch_size: int = DEFAULT_ASSIGN_BATCH_SIZE,
    ) -> int:
        with self._tracer.span(
            "legacymigrate.customer_progress.batch_assign",
            {
                ATTR_INSTANCE_ID: instance_id,
                ATTR_CUSTOMER_COUNT: len(assignments),
                ATTR_DB_SYSTEM: "sqlite",
            },
        ):
            written = 0
            for chunk in _chunks(assignments, batch_size):
                now = datetime.now(UTC).isoformat()
                await self._connection.executemany(
                    f"""
                    INSERT INTO {CUSTOMER_PROGRESS_TABLE}
                        (customer, status, total_spaces, completed_spaces, total_uploads,
                         completed_uploads, instance_id, filter, assigned_at, updated_at)
                    VALUES (?, ?, ?, 0, ?, 0, ?, ?, ?, ?)
                    ON CONFLICT (customer) DO UPDATE SET
                        total_spaces = excluded.total_spaces,
                        total_uploads = excluded.total_uploads,
                        instance_id = excluded.instance_id,
                        filter = excluded.filter,
                        assigned_at = excluded.assigned_at,
                        updated_at = excluded.updated_at
                    """,
                    [
                        (
                            a.customer,
                            ProgressStatus.PENDING.value,
                            a.total_space_count or a.space_count,
                            a.upload_count,
                            instance_id,
                            filter,
                            now,
                            now,
                        )
                        for a in chunk
                    ],
                )
                await self._connection.commit()
                written += len(chunk)
            return written

    async def mark_customer_in_progress(self, customer: str) -> None:
        await self._set_status(customer, ProgressStatus.IN_PROGRESS)

    async def update_customer_progress(
        self,
        customer: str,
        *,
        total_spaces: int,
        completed_spaces: int,
        total_uploads: int,
        completed_uploads: int,
    ) -> None:
        with self._tracer.span(
            "legacymigrate.customer_progress.update",
            {ATTR_CUSTOMER: customer, ATTR_DB_SYSTEM: "sqlite"},
        ):
            await self._connection.execute(
                f"""
                INSERT INTO {CUSTOMER_PROGRESS_TABLE}
                    (customer, status, total_spaces, completed_spaces, total_uploads,
                     completed_uploads, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (customer) DO UPDATE SET
                    total_spaces = excluded.total_spaces,
                    completed_spaces = excluded.completed_spaces,
                    total_uploads = excluded.total_uploads,
                    completed_uploads = excluded.completed_uploads,
                    updated_at = excluded.updated_at
                """,
                (
                    customer,
                    ProgressStatus.IN_PROGRESS.value,
                    total_spaces,
                    completed_spaces,
                    total_uploads,
                    completed_uploads,
                    datetime.now(UTC).isoformat(),
                ),
            )
            await self._connection.commit()

    async def mark_customer_completed(self, customer: str) -> None:
        await self._set_status(customer, ProgressStatus.COMPLETED)

    async def mark_customer_failed(self, customer: str, error: str) -> None:
        await self._set_status(customer, ProgressStatus.FAILED, error=error)

    async def _set_status(
        self,
        customer: str,
        target: ProgressStatus,
        *,
        error: str | None = None,
    ) -> None:
        with self._tracer.span(
            "legacymigrate.customer_progress.set_status",
            {
                ATTR_CUSTOMER: customer,
                ATTR_PROGRESS_STATUS: target.value,
                ATTR_DB_SYSTEM: "sqlite",
            },
        ):
            current = await self.get_customer_progress(customer)
            if current is not None:
                check_transition(current.status, target, customer=customer)

            now = datetime.now(UTC).isoformat()
            await self._connection.execute(
                f"""
                INSERT INTO {CUSTOMER_PROGRESS_TABLE}
                    (customer, status, error, updated_at, completed_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (customer) DO UPDATE SET
                    status = excluded.status,
                    error = excluded.error,
                    updated_at = excluded.updated_at,
                    completed_at = COALESCE(excluded.completed_at, completed_at)
                """,
                (
                    customer,
                    target.value,
                    error,
                    now,
                    now if target == ProgressStatus.COMPLETED else None,
                ),
            )
            await self._connection.commit()

    async def get_customers_by_status(self, status: ProgressStatus) -> list[CustomerProgress]:
        with self._tracer.span(
            "legacymigrate.customer_progress.get_by_status",
            {ATTR_PROGRESS_STATUS: status.value, ATTR_DB_SYSTEM: "sqlite"},
        ):
            return await self._select("status = ?", (status.value,))

    async def get_customers_by_instance(self, instance_id: str) -> list[CustomerProgress]:
        with self._tracer.span(
            "legacymigrate.customer_progress.get_by_instance",
            {ATTR_INSTANCE_ID: instance_id, ATTR_DB_SYSTEM: "sqlite"},
        ):
            return await self._select("instance_id = ?", (instance_id,))

    async def get_failed_customers(self) -> list[CustomerProgress]:
        return await self.get_customers_by_status(ProgressStatus.FAILED)

    async def get_all_customers(self) -> list[CustomerProgress]:
        with self._tracer.span(
            "legacymigrate.customer_progress.get_all", {ATTR_DB_SYSTEM: "sqlite"}
        ):
            return await self._select("1 = 1", ())

    async def is_customer_completed(self, customer: str) -> bool:
        progress = await self.get_customer_progress(customer)
        return progress is not None and progress.status == ProgressStatus.COMPLETED


class InMemoryCustomerProgressRepository:
    """
    In-memory implementation of customer progress storage.

    Example:
        >>> repo = InMemoryCustomerProgressRepository()
        >>> await repo.mark_customer_in_progress("did:mailto:example.com:alice")
    """

    def __init__(
        self,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._records: dict[str, CustomerProgress] = {}
        self._lock = asyncio.Lock()
        self.assign_batches: list[int] = []

    async def get_customer_progress(self, customer: str) -> CustomerProgress | None:
        async with self._lock:
            record = self._records.get(customer)
            return dataclasses.replace(record) if record else None

    async def assign_customer(
        self,
        assignment: CustomerAssignment,
        instance_id: str,
        *,
        filter: str | None = None,
    ) -> None:
        await self.batch_assign_customers([assignment], instance_id, filter=filter)

    async def batch_assign_customers(
        self,
        assignments: Sequence[CustomerAssignment],
        instance_id: str,
        *,
        filter: str | None = None,
        batch_size: int = DEFAULT_ASSIGN_BATCH_SIZE,
    ) -> int:
        with self._tracer.span(
            "legacymigrate.customer_progress.batch_assign",
            {ATTR_INSTANCE_ID: instance_id, ATTR_CUSTOMER_COUNT: len(assignments)},
        ):
            for chunk in _chunks(assignments, batch_size):
                async with self._lock:
                    now = datetime.now(UTC)
                    for a in chunk:
                        record = self._records.setdefault(
                            a.customer, CustomerProgress(customer=a.customer)
                        )
                        record.total_spaces = a.total_space_count or a.space_count
                        record.total_uploads = a.upload_count
                        record.instance_id = instance_id
                        record.filter = filter
                        record.assigned_at = now
                        record.updated_at = now
                self.assign_batches.append(len(chunk))
            return len(assignments)

    async def _set_status(
        self,
        customer: str,
        target: ProgressStatus,
        *,
        error: str | None = None,
    ) -> None:
        async with self._lock:
            record = self._records.get(customer)
            if record is None:
                record = self._records[customer] = CustomerProgress(customer=customer)
            else:
                check_transition(record.status, target, customer=customer)
            now = datetime.now(UTC)
            record.status = target
            record.error = error
            record.updated_at = now
            if target == ProgressStatus.COMPLETED:
                record.completed_at = now

    async def mark_customer_in_progress(self, customer: str) -> None:
        await self._set_status(customer, ProgressStatus.IN_PROGRESS)

    async def update_customer_progress(
        self,
        customer: str,
        *,
        total_spaces: int,
        completed_spaces: int,
        total_uploads: int,
        completed_uploads: int,
    ) -> None:
        async with self._lock:
            record = self._records.setdefault(
                customer, CustomerProgress(customer=customer, status=ProgressStatus.IN_PROGRESS)
            )
            record.total_spaces = total_spaces
            record.completed_spaces = completed_spaces
            record.total_uploads = total_uploads
            record.completed_uploads = completed_uploads
            record.updated_at = datetime.now(UTC)

    async def mark_customer_completed(self, customer: str) -> None:
        await self._set_status(customer, ProgressStatus.COMPLETED)

    async def mark_customer_failed(self, customer: str, error: str) -> None:
        await self._set_status(customer, ProgressStatus.FAILED, error=error)

    async def _filter(self, predicate: Any) -> list[CustomerProgress]:
        async with self._lock:
            return [
                dataclasses.replace(self._records[key])
                for key in sorted(self._records)
                if predicate(self._records[key])
            ]

    async def get_customers_by_status(self, status: ProgressStatus) -> list[CustomerProgress]:
        return await self._filter(lambda r: r.status == status)

    async def get_customers_by_instance(self, instance_id: str) -> list[CustomerProgress]:
        return await self._filter(lambda r: r.instance_id == instance_id)

    async def get_failed_customers(self) -> list[CustomerProgress]:
        return await self.get_customers_by_status(ProgressStatus.FAILED)

    async def get_all_customers(self) -> list[CustomerProgress]:
        return await self._filter(lambda r: True)

    async def is_customer_completed(self, customer: str) -> bool:
        progress = await self.get_customer_progress(customer)
        return progress is not None and progress.status == ProgressStatus.COMPLETED

    async def clear(self) -> None:
        async with self._lock:
            self._records.clear()
            self.assign_batches.clear()


__all__ = [
    "DEFAULT_ASSIGN_BATCH_SIZE",
    "CustomerProgressRepository",
    "InMemoryCustomerProgressRepository",
    "PostgreSQLCustomerProgressRepository",
    "SQLiteCustomerProgressRepository",
]
