from datetime import datetime
from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from docinsight.offline.connection import get_connection
from docinsight.offline.exceptions import JobStoreError
from docinsight.offline.models import JobStatus, OfflineJob, StageKind
from docinsight.offline.store_base import BaseJobStore

_COLUMNS = """
    id, document_id, stage_kind, payload_ref, payload, attempt_count,
    next_eligible_at, last_error, status, created_at
"""


class PostgresJobStore(BaseJobStore):
    """Database operations for the offline_jobs table. Survives process restarts."""

    async def add(self, job: OfflineJob) -> None:
        await self._execute(
            """
            INSERT INTO offline_jobs
            (id, document_id, stage_kind, payload_ref, payload, attempt_count,
             next_eligible_at, last_error, status, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                job.id,
                job.document_id,
                job.stage_kind.value,
                job.payload_ref,
                Jsonb(job.payload),
                job.attempt_count,
                job.next_eligible_at,
                job.last_error,
                job.status.value,
                job.created_at,
            ),
        )

    async def get(self, job_id: str) -> OfflineJob | None:
        rows = await self._fetch(
            f"SELECT {_COLUMNS} FROM offline_jobs WHERE id = %s", (job_id,)
        )
        return self._to_job(rows[0]) if rows else None

    async def count(self) -> int:
        rows = await self._fetch("SELECT COUNT(*) AS total FROM offline_jobs", ())
        return int(rows[0]["total"])

    async def oldest_evictable(self) -> OfflineJob | None:
        rows = await self._fetch(
            f"""
            SELECT {_COLUMNS}
            FROM offline_jobs
            WHERE status <> 'processing'
            ORDER BY created_at
            LIMIT 1
            """,
            (),
        )
        return self._to_job(rows[0]) if rows else None

    async def claim_next(self, now: datetime) -> OfflineJob | None:
        """Claim the next eligible job using SELECT FOR UPDATE SKIP LOCKED."""
        try:
            async with get_connection() as conn:
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(
                        f"""
                        SELECT {_COLUMNS}
                        FROM offline_jobs
                        WHERE status = 'pending'
                          AND next_eligible_at <= %s
                        ORDER BY created_at
                        LIMIT 1
                        FOR UPDATE SKIP LOCKED
                        """,
                        (now,),
                    )
                    row = await cur.fetchone()

                if row is None:
                    await conn.rollback()
                    return None

                await conn.execute(
                    """
                    UPDATE offline_jobs
                    SET status = 'processing', updated_at = NOW()
                    WHERE id = %s
                    """,
                    (row["id"],),
                )
                await conn.commit()
        except psycopg.Error as exc:
            raise JobStoreError(f"Failed to claim offline job: {exc}") from exc

        job = self._to_job(row)
        job.status = JobStatus.PROCESSING
        return job

    async def reschedule(
        self, job_id: str, attempt_count: int, next_eligible_at: datetime, last_error: str
    ) -> None:
        await self._execute(
            """
            UPDATE offline_jobs
            SET status = 'pending', attempt_count = %s, next_eligible_at = %s,
                last_error = %s, updated_at = NOW()
            WHERE id = %s
            """,
            (attempt_count, next_eligible_at, last_error, job_id),
        )

    async def mark_failed(self, job_id: str, attempt_count: int, last_error: str) -> None:
        await self._execute(
            """
            UPDATE offline_jobs
            SET status = 'failed-permanent', attempt_count = %s,
                last_error = %s, updated_at = NOW()
            WHERE id = %s
            """,
            (attempt_count, last_error, job_id),
        )

    async def delete(self, job_id: str) -> None:
        await self._execute("DELETE FROM offline_jobs WHERE id = %s", (job_id,))

    async def delete_for_document(self, document_id: str) -> list[OfflineJob]:
        rows = await self._fetch(
            f"DELETE FROM offline_jobs WHERE document_id = %s RETURNING {_COLUMNS}",
            (document_id,),
            commit=True,
        )
        return [self._to_job(row) for row in rows]

    async def list_jobs(self) -> list[OfflineJob]:
        rows = await self._fetch(
            f"SELECT {_COLUMNS} FROM offline_jobs ORDER BY created_at", ()
        )
        return [self._to_job(row) for row in rows]

    async def release_processing(self) -> int:
        rows = await self._fetch(
            """
            UPDATE offline_jobs
            SET status = 'pending', updated_at = NOW()
            WHERE status = 'processing'
            RETURNING id
            """,
            (),
            commit=True,
        )
        return len(rows)

    async def _execute(self, query: str, params: tuple[Any, ...]) -> None:
        try:
            async with get_connection() as conn:
                await conn.execute(query, params)
                await conn.commit()
        except psycopg.Error as exc:
            raise JobStoreError(f"Offline job store write failed: {exc}") from exc

    async def _fetch(
        self, query: str, params: tuple[Any, ...], commit: bool = False
    ) -> list[dict[str, Any]]:
        try:
            async with get_connection() as conn:
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(query, params)
                    rows = await cur.fetchall()
                if commit:
                    await conn.commit()
        except psycopg.Error as exc:
            raise JobStoreError(f"Offline job store read failed: {exc}") from exc
        return rows

    @staticmethod
    def _to_job(row: dict[str, Any]) -> OfflineJob:
        return OfflineJob(
            id=row["id"],
            document_id=row["document_id"],
            stage_kind=StageKind(row["stage_kind"]),
            payload_ref=row["payload_ref"],
            payload=dict(row["payload"] or {}),
            attempt_count=row["attempt_count"],
            next_eligible_at=row["next_eligible_at"],
            last_error=row["last_error"],
            status=JobStatus(row["status"]),
            created_at=row["created_at"],
        )
