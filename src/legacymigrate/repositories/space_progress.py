"""
Space progress repository.

One record per (customer, space) tracks how far a space has been migrated
so that interrupted runs resume without re-processing completed work:
- completed spaces are skipped outright
- completed_uploads only ever moves forward
- status changes are validated against VALID_PROGRESS_TRANSITIONS

Progress records are independent of each other; the store offers no
cross-record atomicity.
"""

import asyncio
import dataclasses
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from legacymigrate.exceptions import InvalidProgressTransitionError, ProgressStoreError
from legacymigrate.models import VALID_PROGRESS_TRANSITIONS, ProgressStatus, SpaceProgress
from legacymigrate.observability import (
    ATTR_CUSTOMER,
    ATTR_DB_SYSTEM,
    ATTR_INSTANCE_ID,
    ATTR_PROGRESS_STATUS,
    ATTR_SPACE,
    Tracer,
    create_tracer,
)
from legacymigrate.repositories._connection import execute_with_connection
from legacymigrate.repositories.schema import SPACE_PROGRESS_TABLE

if TYPE_CHECKING:
    import aiosqlite

DEFAULT_STUCK_AFTER = timedelta(hours=1)
DEFAULT_PAGE_SIZE = 100

_COLUMNS = (
    "customer, space, status, total_uploads, completed_uploads, "
    "last_processed_upload, instance_id, worker_id, error, created_at, updated_at"
)


def check_transition(
    current: ProgressStatus,
    target: ProgressStatus,
    *,
    customer: str | None = None,
    space: str | None = None,
) -> None:
    """
    Validate a progress status change.

    Raises:
        InvalidProgressTransitionError: If target is not reachable from current.
    """
    if target not in VALID_PROGRESS_TRANSITIONS[current]:
        raise InvalidProgressTransitionError(current, target, customer=customer, space=space)


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _row_to_progress(row: Any) -> SpaceProgress:
    return SpaceProgress(
        customer=row[0],
        space=row[1],
        status=ProgressStatus(row[2]),
        total_uploads=row[3] or 0,
        completed_uploads=row[4] or 0,
        last_processed_upload=row[5],
        instance_id=row[6],
        worker_id=row[7],
        error=row[8],
        created_at=_parse_timestamp(row[9]),
        updated_at=_parse_timestamp(row[10]),
    )


@runtime_checkable
class SpaceProgressRepository(Protocol):
    """
    Protocol for space progress storage.

    Implementations must:
    - create records only if absent (concurrent creators see one winner)
    - never decrease completed_uploads
    - reject transitions out of COMPLETED
    """

    async def get_space_progress(self, customer: str, space: str) -> SpaceProgress | None:
        """Get the progress record of a space, or None if never started."""
        ...

    async def create_space_progress(
        self,
        customer: str,
        space: str,
        total_uploads: int,
        *,
        instance_id: str | None = None,
        worker_id: str | None = None,
    ) -> bool:
        """
        Create an IN_PROGRESS record with zero completed uploads.

        Returns:
            True if created, False if a record already existed.
        """
        ...

    async def update_space_progress(
        self,
        customer: str,
        space: str,
        completed_uploads: int,
        last_processed_upload: str | None = None,
    ) -> None:
        """Checkpoint a space; completed_uploads is raised, never lowered."""
        ...

    async def mark_space_in_progress(self, customer: str, space: str) -> None:
        """Move a pending or failed space back to IN_PROGRESS for a resumed run."""
        ...

    async def mark_space_completed(self, customer: str, space: str) -> None:
        """Mark a space completed and clear its error."""
        ...

    async def mark_space_failed(self, customer: str, space: str, error: str) -> None:
        """Mark a space failed with an error (usually a JSON reason histogram)."""
        ...

    async def get_customer_spaces(self, customer: str) -> list[SpaceProgress]:
        """All progress records of one customer."""
        ...

    async def get_failed_migrations(self, limit: int | None = None) -> list[SpaceProgress]:
        """Failed spaces, oldest update first."""
        ...

    async def get_stuck_migrations(
        self,
        stuck_after: timedelta = DEFAULT_STUCK_AFTER,
    ) -> list[SpaceProgress]:
        """In-progress spaces not updated within stuck_after."""
        ...

    async def get_instance_spaces(self, instance_id: str) -> list[SpaceProgress]:
        """Spaces created by one instance."""
        ...

    def scan_all_progress(
        self,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> AsyncIterator[list[SpaceProgress]]:
        """Iterate over every record, one page at a time."""
        ...


class PostgreSQLSpaceProgressRepository:
    """
    PostgreSQL implementation of space progress storage.

    Stores records in the `migration_space_progress` table. Conditional
    creation is INSERT ... ON CONFLICT DO NOTHING and checkpoint
    monotonicity is enforced with GREATEST in the UPDATE itself.

    Example:
        >>> engine = create_async_engine("postgresql+asyncpg://...")
        >>> repo = PostgreSQLSpaceProgressRepository(engine)
        >>> await repo.create_space_progress("did:mailto:x", "did:key:z6Mk...", 42)
        True
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

    def _attrs(self, customer: str | None = None, space: str | None = None) -> dict[str, Any]:
        attrs: dict[str, Any] = {ATTR_DB_SYSTEM: "postgresql"}
        if customer is not None:
            attrs[ATTR_CUSTOMER] = customer
        if space is not None:
            attrs[ATTR_SPACE] = space
        return attrs

    async def get_space_progress(self, customer: str, space: str) -> SpaceProgress | None:
        with self._tracer.span(
            "legacymigrate.space_progress.get", self._attrs(customer, space)
        ):
            query = text(f"""
                SELECT {_COLUMNS}
                FROM {SPACE_PROGRESS_TABLE}
                WHERE customer = :customer AND space = :space
            """)
            async with execute_with_connection(self.conn, transactional=False) as conn:
                result = await conn.execute(query, {"customer": customer, "space": space})
                row = result.fetchone()
            return _row_to_progress(row) if row else None

    async def create_space_progress(
        self,
        customer: str,
        space: str,
        total_uploads: int,
        *,
        instance_id: str | None = None,
        worker_id: str | None = None,
    ) -> bool:
        with self._tracer.span(
            "legacymigrate.space_progress.create", self._attrs(customer, space)
        ):
            now = datetime.now(UTC)
            query = text(f"""
                INSERT INTO {SPACE_PROGRESS_TABLE}
                    (customer, space, status, total_uploads, completed_uploads,
                     instance_id, worker_id, created_at, updated_at)
                VALUES
                    (:customer, :space, :status, :total_uploads, 0,
                     :instance_id, :worker_id, :now, :now)
                ON CONFLICT (customer, space) DO NOTHING
            """)
            async with execute_with_connection(self.conn, transactional=True) as conn:
                result = await conn.execute(
                    query,
                    {
                        "customer": customer,
                        "space": space,
                        "status": ProgressStatus.IN_PROGRESS.value,
                        "total_uploads": total_uploads,
                        "instance_id": instance_id,
                        "worker_id": worker_id,
                        "now": now,
                    },
                )
            return bool(result.rowcount)

    async def update_space_progress(
        self,
        customer: str,
        space: str,
        completed_uploads: int,
        last_processed_upload: str | None = None,
    ) -> None:
        with self._tracer.span(
            "legacymigrate.space_progress.update", self._attrs(customer, space)
        ):
            query = text(f"""
                UPDATE {SPACE_PROGRESS_TABLE}
                SET completed_uploads = GREATEST(completed_uploads, :completed),
                    last_processed_upload = CASE
                        WHEN :completed >= completed_uploads
                        THEN COALESCE(:last, last_processed_upload)
                        ELSE last_processed_upload
                    END,
                    updated_at = :now
                WHERE customer = :customer AND space = :space
            """)
            async with execute_with_connection(self.conn, transactional=True) as conn:
                result = await conn.execute(
                    query,
                    {
                        "customer": customer,
                        "space": space,
                        "completed": completed_uploads,
                        "last": last_processed_upload,
                        "now": datetime.now(UTC),
                    },
                )
            if not result.rowcount:
                raise ProgressStoreError(
                    "No progress record to update", customer=customer, space=space
                )

    async def mark_space_in_progress(self, customer: str, space: str) -> None:
        await self._set_status(customer, space, ProgressStatus.IN_PROGRESS)

    async def mark_space_completed(self, customer: str, space: str) -> None:
        await self._set_status(customer, space, ProgressStatus.COMPLETED, error=None)

    async def mark_space_failed(self, customer: str, space: str, error: str) -> None:
        await self._set_status(customer, space, ProgressStatus.FAILED, error=error)

    async def _set_status(
        self,
        customer: str,
        space: str,
        target: ProgressStatus,
        **fields: str | None,
    ) -> None:
        attrs = self._attrs(customer, space)
        attrs[ATTR_PROGRESS_STATUS] = target.value
        with self._tracer.span("legacymigrate.space_progress.set_status", attrs):
            assignments = ", ".join(f"{name} = :{name}" for name in fields)
            query = text(f"""
                UPDATE {SPACE_PROGRESS_TABLE}
                SET status = :status, updated_at = :now{", " + assignments if assignments else ""}
                WHERE customer = :customer AND space = :space
            """)
            async with execute_with_connection(self.conn, transactional=True) as conn:
                result = await conn.execute(
                    text(f"""
                        SELECT status FROM {SPACE_PROGRESS_TABLE}
                        WHERE customer = :customer AND space = :space
                        FOR UPDATE
                    """),
                    {"customer": customer, "space": space},
                )
                row = result.fetchone()
                if row is None:
                    raise ProgressStoreError(
                        "No progress record to update", customer=customer, space=space
                    )
                check_transition(
                    ProgressStatus(row[0]), target, customer=customer, space=space
                )
                await conn.execute(
                    query,
                    {
                        "customer": customer,
                        "space": space,
                        "status": target.value,
                        "now": datetime.now(UTC),
                        **fields,
                    },
                )

    async def _select(
        self, where: str, params: dict[str, Any], suffix: str = ""
    ) -> list[SpaceProgress]:
        query = text(f"SELECT {_COLUMNS} FROM {SPACE_PROGRESS_TABLE} WHERE {where} {suffix}")
        async with execute_with_connection(self.conn, transactional=False) as conn:
            result = await conn.execute(query, params)
            rows = result.fetchall()
        return [_row_to_progress(row) for row in rows]

    async def get_customer_spaces(self, customer: str) -> list[SpaceProgress]:
        with self._tracer.span(
            "legacymigrate.space_progress.get_customer_spaces", self._attrs(customer)
        ):
            return await self._select(
                "customer = :customer", {"customer": customer}, "ORDER BY space"
            )

    async def get_failed_migrations(self, limit: int | None = None) -> list[SpaceProgress]:
        with self._tracer.span("legacymigrate.space_progress.get_failed", self._attrs()):
            suffix = "ORDER BY updated_at"
            params: dict[str, Any] = {"status": ProgressStatus.FAILED.value}
            if limit is not None:
                suffix += " LIMIT :limit"
                params["limit"] = limit
            return await self._select("status = :status", params, suffix)

    async def get_stuck_migrations(
        self,
        stuck_after: timedelta = DEFAULT_STUCK_AFTER,
    ) -> list[SpaceProgress]:
        with self._tracer.span("legacymigrate.space_progress.get_stuck", self._attrs()):
            return await self._select(
                "status = :status AND updated_at < :cutoff",
                {
                    "status": ProgressStatus.IN_PROGRESS.value,
                    "cutoff": datetime.now(UTC) - stuck_after,
                },
                "ORDER BY updated_at",
            )

    async def get_instance_spaces(self, instance_id: str) -> list[SpaceProgress]:
        attrs = self._attrs()
        attrs[ATTR_INSTANCE_ID] = instance_id
        with self._tracer.span("legacymigrate.space_progress.get_instance_spaces", attrs):
            return await self._select(
                "instance_id = :instance_id",
                {"instance_id": instance_id},
                "ORDER BY customer, space",
            )

    async def scan_all_progress(
        self,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> AsyncIterator[list[SpaceProgress]]:
        last: tuple[str, str] | None = None
        while True:
            if last is None:
                page = await self._select(
                    "TRUE", {"limit": page_size}, "ORDER BY customer, space LIMIT :limit"
                )
            else:
                page = await self._select(
                    "(customer, space) > (:customer, :space)",
                    {"customer": last[0], "space": last[1], "limit": page_size},
                    "ORDER BY customer, space LIMIT :limit",
                )
            if not page:
                return
            yield page
            if len(page) < page_size:
                return
            last = (page[-1].customer, page[-1].space)


class SQLiteSpaceProgressRepository:
    """
    SQLite implementation of space progress storage.

    SQLite-specific adaptations:
    - Timestamps stored as TEXT in ISO 8601 format (UTC)
    - Conditional creation uses INSERT OR IGNORE
    - Monotonic checkpoints use the scalar MAX() function

    Example:
        >>> async with aiosqlite.connect("progress.db") as db:
        ...     await initialize_sqlite(db)
        ...     repo = SQLiteSpaceProgressRepository(db)
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

    def _attrs(self, customer: str | None = None, space: str | None = None) -> dict[str, Any]:
        attrs: dict[str, Any] = {ATTR_DB_SYSTEM: "sqlite"}
        if customer is not None:
            attrs[ATTR_CUSTOMER] = customer
        if space is not None:
            attrs[ATTR_SPACE] = space
        return attrs

    async def _select(
        self, where: str, params: tuple[Any, ...], suffix: str = ""
    ) -> list[SpaceProgress]:
        cursor = await self._connection.execute(
            f"SELECT {_COLUMNS} FROM {SPACE_PROGRESS_TABLE} WHERE {where} {suffix}",
            params,
        )
        rows = await cursor.fetchall()
        return [_row_to_progress(row) for row in rows]

    async def get_space_progress(self, customer: str, space: str) -> SpaceProgress | None:
        with self._tracer.span(
            "legacymigrate.space_progress.get", self._attrs(customer, space)
        ):
            rows = await self._select("customer = ? AND space = ?", (customer, space))
            return rows[0] if rows else None

    async def create_space_progress(
        self,
        customer: str,
        space: str,
        total_uploads: int,
        *,
        instance_id: str | None = None,
        worker_id: str | None = None,
    ) -> bool:
        with self._tracer.span(
            "legacymigrate.space_progress.create", self._attrs(customer, space)
        ):
            now = datetime.now(UTC).isoformat()
            cursor = await self._connection.execute(
                f"""
                INSERT OR IGNORE INTO {SPACE_PROGRESS_TABLE}
                    (customer, space, status, total_uploads, completed_uploads,
                     instance_id, worker_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, 0, ?, ?, ?, ?)
                """,
                (
                    customer,
                    space,
                    ProgressStatus.IN_PROGRESS.value,
                    total_uploads,
                    instance_id,
                    worker_id,
                    now,
                    now,
                ),
            )
            await self._connection.commit()
            return cursor.rowcount > 0

    async def update_space_progress(
        self,
        customer: str,
        space: str,
        completed_uploads: int,
        last_processed_upload: str | None = None,
    ) -> None:
        with self._tracer.span(
            "legacymigrate.space_progress.update", self._attrs(customer, space)
        ):
            cursor = await self._connection.execute(
                f"""
                UPDATE {SPACE_PROGRESS_TABLE}
                SET completed_uploads = MAX(completed_uploads, ?),
                    last_processed_upload = CASE
                        WHEN ? >= completed_uploads
                        THEN COALESCE(?, last_processed_upload)
                        ELSE last_processed_upload
                    END,
                    updated_at = ?
                WHERE customer = ? AND space = ?
                """,
                (
                    completed_uploads,
                    completed_uploads,
                    last_processed_upload,
                    datetime.now(UTC).isoformat(),
                    customer,
                    space,
                ),
            )
            await self._connection.commit()
            if cursor.rowcount == 0:
                raise ProgressStoreError(
                    "No progress record to update", customer=customer, space=space
                )

    async def mark_space_in_progress(self, customer: str, space: str) -> None:
        await self._set_status(customer, space, ProgressStatus.IN_PROGRESS)

    async def mark_space_completed(self, customer: str, space: str) -> None:
        await self._set_status(customer, space, ProgressStatus.COMPLETED, clear_error=True)

    async def mark_space_failed(self, customer: str, space: str, error: str) -> None:
        await self._set_status(customer, space, ProgressStatus.FAILED, error=error)

    async def _set_status(
        self,
        customer: str,
        space: str,
        target: ProgressStatus,
        *,
        error: str | None = None,
        clear_error: bool = False,
    ) -> None:
        attrs = self._attrs(customer, space)
        attrs[ATTR_PROGRESS_STATUS] = target.value
        with self._tracer.span("legacymigrate.space_progress.set_status", attrs):
            current = await self.get_space_progress(customer, space)
            if current is None:
                raise ProgressStoreError(
                    "No progress record to update", customer=customer, space=space
                )
            check_transition(current.status, target, customer=customer, space=space)

            if error is not None or clear_error:
                await self._connection.execute(
                    f"""
                    UPDATE {SPACE_PROGRESS_TABLE}
                    SET status = ?, error = ?, updated_at = ?
                    WHERE customer = ? AND space = ?
                    """,
                    (target.value, error, datetime.now(UTC).isoformat(), customer, space),
                )
            else:
                await self._connection.execute(
                    f"""
                    UPDATE {SPACE_PROGRESS_TABLE}
                    SET status = ?, updated_at = ?
                    WHERE customer = ? AND space = ?
                    """,
                    (target.value, datetime.now(UTC).isoformat(), customer, space),
                )
            await self._connection.commit()

    async def get_customer_spaces(self, customer: str) -> list[SpaceProgress]:
        with self._tracer.span(
            "legacymigrate.space_progress.get_customer_spaces", self._attrs(customer)
        ):
            return await self._select("customer = ?", (customer,), "ORDER BY space")

    async def get_failed_migrations(self, limit: int | None = None) -> list[SpaceProgress]:
        with self._tracer.span("legacymigrate.space_progress.get_failed", self._attrs()):
            if limit is None:
                return await self._select(
                    "status = ?", (ProgressStatus.FAILED.value,), "ORDER BY updated_at"
                )
            return await self._select(
                "status = ?",
                (ProgressStatus.FAILED.value, limit),
                "ORDER BY updated_at LIMIT ?",
            )

    async def get_stuck_migrations(
        self,
        stuck_after: timedelta = DEFAULT_STUCK_AFTER,
    ) -> list[SpaceProgress]:
        with self._tracer.span("legacymigrate.space_progress.get_stuck", self._attrs()):
            cutoff = (datetime.now(UTC) - stuck_after).isoformat()
            return await self._select(
                "status = ? AND updated_at < ?",
                (ProgressStatus.IN_PROGRESS.value, cutoff),
                "ORDER BY updated_at",
            )

    async def get_instance_spaces(self, instance_id: str) -> list[SpaceProgress]:
        attrs = self._attrs()
        attrs[ATTR_INSTANCE_ID] = instance_id
        with self._tracer.span("legacymigrate.space_progress.get_instance_spaces", attrs):
            return await self._select(
                "instance_id = ?", (instance_id,), "ORDER BY customer, space"
            )

    async def scan_all_progress(
        self,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> AsyncIterator[list[SpaceProgress]]:
        last: tuple[str, str] | None = None
        while True:
            if last is None:
                page = await self._select("1 = 1", (page_size,), "ORDER BY customer, space LIMIT ?")
            else:
                page = await self._select(
                    "(customer > ?) OR (customer = ? AND space > ?)",
                    (last[0], last[0], last[1], page_size),
                    "ORDER BY customer, space LIMIT ?",
                )
            if not page:
                return
            yield page
            if len(page) < page_size:
                return
            last = (page[-1].customer, page[-1].space)


class InMemorySpaceProgressRepository:
    """
    In-memory implementation of space progress storage.

    Useful for tests and dry runs. Records are copied on the way in and
    out so callers cannot mutate stored state.

    Example:
        >>> repo = InMemorySpaceProgressRepository()
        >>> await repo.create_space_progress("did:mailto:x", "did:key:z6Mk...", 3)
        True
    """

    def __init__(
        self,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._records: dict[tuple[str, str], SpaceProgress] = {}
        self._lock = asyncio.Lock()

    def _require(self, customer: str, space: str) -> SpaceProgress:
        record = self._records.get((customer, space))
        if record is None:
            raise ProgressStoreError(
                "No progress record to update", customer=customer, space=space
            )
        return record

    async def get_space_progress(self, customer: str, space: str) -> SpaceProgress | None:
        with self._tracer.span(
            "legacymigrate.space_progress.get",
            {ATTR_CUSTOMER: customer, ATTR_SPACE: space},
        ):
            async with self._lock:
                record = self._records.get((customer, space))
                return dataclasses.replace(record) if record else None

    async def create_space_progress(
        self,
        customer: str,
        space: str,
        total_uploads: int,
        *,
        instance_id: str | None = None,
        worker_id: str | None = None,
    ) -> bool:
        with self._tracer.span(
            "legacymigrate.space_progress.create",
            {ATTR_CUSTOMER: customer, ATTR_SPACE: space},
        ):
            async with self._lock:
                if (customer, space) in self._records:
                    return False
                now = datetime.now(UTC)
                self._records[(customer, space)] = SpaceProgress(
                    customer=customer,
                    space=space,
                    status=ProgressStatus.IN_PROGRESS,
                    total_uploads=total_uploads,
                    completed_uploads=0,
                    instance_id=instance_id,
                    worker_id=worker_id,
                    created_at=now,
                    updated_at=now,
                )
                return True

    async def update_space_progress(
        self,
        customer: str,
        space: str,
        completed_uploads: int,
        last_processed_upload: str | None = None,
    ) -> None:
        async with self._lock:
            record = self._require(customer, space)
            if completed_uploads >= record.completed_uploads:
                record.completed_uploads = completed_uploads
                if last_processed_upload is not None:
                    record.last_processed_upload = last_processed_upload
            record.updated_at = datetime.now(UTC)

    async def mark_space_in_progress(self, customer: str, space: str) -> None:
        async with self._lock:
            record = self._require(customer, space)
            check_transition(
                record.status, ProgressStatus.IN_PROGRESS, customer=customer, space=space
            )
            record.status = ProgressStatus.IN_PROGRESS
            record.updated_at = datetime.now(UTC)

    async def mark_space_completed(self, customer: str, space: str) -> None:
        async with self._lock:
            record = self._require(customer, space)
            check_transition(
                record.status, ProgressStatus.COMPLETED, customer=customer, space=space
            )
            record.status = ProgressStatus.COMPLETED
            record.error = None
            record.updated_at = datetime.now(UTC)

    async def mark_space_failed(self, customer: str, space: str, error: str) -> None:
        async with self._lock:
            record = self._require(customer, space)
            check_transition(record.status, ProgressStatus.FAILED, customer=customer, space=space)
            record.status = ProgressStatus.FAILED
            record.error = error
            record.updated_at = datetime.now(UTC)

    async def _filter(self, predicate: Any) -> list[SpaceProgress]:
        async with self._lock:
            return [
                dataclasses.replace(record)
                for key, record in sorted(self._records.items())
                if predicate(record)
            ]

    async def get_customer_spaces(self, customer: str) -> list[SpaceProgress]:
        return await self._filter(lambda r: r.customer == customer)

    async def get_failed_migrations(self, limit: int | None = None) -> list[SpaceProgress]:
        failed = await self._filter(lambda r: r.status == ProgressStatus.FAILED)
        failed.sort(key=lambda r: r.updated_at or datetime.min.replace(tzinfo=UTC))
        return failed if limit is None else failed[:limit]

    async def get_stuck_migrations(
        self,
        stuck_after: timedelta = DEFAULT_STUCK_AFTER,
    ) -> list[SpaceProgress]:
        cutoff = datetime.now(UTC) - stuck_after
        stuck = await self._filter(
            lambda r: r.status == ProgressStatus.IN_PROGRESS
            and r.updated_at is not None
            and r.updated_at < cutoff
        )
        stuck.sort(key=lambda r: r.updated_at)
        return stuck

    async def get_instance_spaces(self, instance_id: str) -> list[SpaceProgress]:
        return await self._filter(lambda r: r.instance_id == instance_id)

    async def scan_all_progress(
        self,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> AsyncIterator[list[SpaceProgress]]:
        records = await self._filter(lambda r: True)
        for start in range(0, len(records), page_size):
            yield records[start : start + page_size]

    async def clear(self) -> None:
        """Remove all records."""
        async with self._lock:
            self._records.clear()


__all__ = [
    "DEFAULT_PAGE_SIZE",
    "DEFAULT_STUCK_AFTER",
    "InMemorySpaceProgressRepository",
    "PostgreSQLSpaceProgressRepository",
    "SQLiteSpaceProgressRepository",
    "SpaceProgressRepository",
    "check_transition",
]
