"""Durable storage of remediation jobs keyed by (tenant_id, job_id)."""

from __future__ import annotations

import json
import threading
from collections.abc import Callable, Mapping
from contextlib import AbstractContextManager
from dataclasses import fields, replace
from typing import Any, Protocol

from services.remediation.errors import JobConflictError, JobNotFoundError, ValidationError
from services.remediation.models import JobStatus, RemediationJob

_JOB_FIELDS = frozenset(f.name for f in fields(RemediationJob))
_IMMUTABLE_FIELDS = frozenset({"job_id", "tenant_id"})


def _check_fields(updates: Mapping[str, Any]) -> None:
    unknown = set(updates) - _JOB_FIELDS
    if unknown:
        raise ValidationError(f"unknown job fields: {', '.join(sorted(unknown))}")
    frozen = set(updates) & _IMMUTABLE_FIELDS
    if frozen:
        raise ValidationError(f"job fields cannot be updated: {', '.join(sorted(frozen))}")


class JobStore(Protocol):
    """Persistence boundary for remediation jobs."""

    def create(self, job: RemediationJob) -> RemediationJob:
        """Insert the job; raise ``JobConflictError`` if the id already exists."""

    def get(self, tenant_id: str, job_id: str) -> RemediationJob | None:
        """Return the job or None."""

    def update(
        self,
        tenant_id: str,
        job_id: str,
        updates: Mapping[str, Any],
        *,
        expected_status: JobStatus | None = None,
    ) -> RemediationJob:
        """Apply a partial update, optionally only if the current status matches."""

    def query_by_status(self, status: JobStatus, *, tenant_id: str | None = None) -> list[RemediationJob]:
        """Return jobs in ``status`` ordered by request time."""


class InMemoryJobStore:
    """Thread-safe in-process store; jobs are immutable records so no copies are needed."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._jobs: dict[tuple[str, str], RemediationJob] = {}

    def create(self, job: RemediationJob) -> RemediationJob:
        key = (job.tenant_id, job.job_id)
        with self._lock:
            if key in self._jobs:
                raise JobConflictError(f"job {job.job_id} already exists")
            self._jobs[key] = job
        return job

    def get(self, tenant_id: str, job_id: str) -> RemediationJob | None:
        with self._lock:
            return self._jobs.get((tenant_id, job_id))

    def update(
        self,
        tenant_id: str,
        job_id: str,
        updates: Mapping[str, Any],
        *,
        expected_status: JobStatus | None = None,
    ) -> RemediationJob:
        _check_fields(updates)
        key = (tenant_id, job_id)
        with self._lock:
            current = self._jobs.get(key)
            if current is None:
                raise JobNotFoundError(f"job {job_id} not found")
            if expected_status is not None and current.status is not expected_status:
                raise JobConflictError(
                    f"job {job_id} is {current.status.value}, expected {expected_status.value}"
                )
            updated = replace(current, **dict(updates))
            self._jobs[key] = updated
            return updated

    def query_by_status(self, status: JobStatus, *, tenant_id: str | None = None) -> list[RemediationJob]:
        with self._lock:
            jobs = [
                job
                for (tenant, _), job in self._jobs.items()
                if job.status is status and (tenant_id is None or tenant == tenant_id)
            ]
        return sorted(jobs, key=lambda j: (j.requested_at, j.job_id))


ConnectionFactory = Callable[[], AbstractContextManager[Any]]


def _default_connection() -> AbstractContextManager[Any]:
    from apps.backend.db import db_conn

    return db_conn()


class PostgresJobStore:
    """Job documents stored as JSONB with status and timestamps projected to columns."""

    def __init__(self, *, connection: ConnectionFactory = _default_connection) -> None:
        self._connection = connection

    @staticmethod
    def _document(job: RemediationJob) -> str:
        from apps.backend.db import to_jsonb

        return to_jsonb(job.to_dict())

    @staticmethod
    def _load(row: Mapping[str, Any] | None) -> RemediationJob | None:
        if row is None:
            return None
        doc = row["document"]
        if isinstance(doc, (str, bytes)):
            doc = json.loads(doc)
        return RemediationJob.from_dict(doc)

    def create(self, job: RemediationJob) -> RemediationJob:
        from apps.backend.db import execute_conn

        with self._connection() as conn:
            inserted = execute_conn(
                conn,
                """
                INSERT INTO remediation_jobs (tenant_id, job_id, status, requested_at, document)
                VALUES (%s, %s, %s, %s, %s::jsonb)
                ON CONFLICT (tenant_id, job_id) DO NOTHING
                """,
                (job.tenant_id, job.job_id, job.status.value, job.requested_at, self._document(job)),
            )
            conn.commit()
        if inserted == 0:
            raise JobConflictError(f"job {job.job_id} already exists")
        return job

    def get(self, tenant_id: str, job_id: str) -> RemediationJob | None:
        from apps.backend.db import fetch_one_dict_conn

        with self._connection() as conn:
            row = fetch_one_dict_conn(
                conn,
                "SELECT document FROM remediation_jobs WHERE tenant_id = %s AND job_id = %s",
                (tenant_id, job_id),
            )
        return self._load(row)

    def update(
        self,
        tenant_id: str,
        job_id: str,
        updates: Mapping[str, Any],
        *,
        expected_status: JobStatus | None = None,
    ) -> RemediationJob:
        from apps.backend.db import execute_conn, fetch_one_dict_conn

        _check_fields(updates)
        with self._connection() as conn:
            row = fetch_one_dict_conn(
                conn,
                "SELECT document FROM remediation_jobs WHERE tenant_id = %s AND job_id = %s FOR UPDATE",
                (tenant_id, job_id),
            )
            current = self._load(row)
            if current is None:
                raise JobNotFoundError(f"job {job_id} not found")
            if expected_status is not None and current.status is not expected_status:
                raise JobConflictError(
                    f"job {job_id} is {current.status.value}, expected {expected_status.value}"
                )
            updated = replace(current, **dict(updates))
            execute_conn(
                conn,
                """
                UPDATE remediation_jobs
                   SET status = %s, document = %s::jsonb, updated_at = now()
                 WHERE tenant_id = %s AND job_id = %s AND status = %s
                """,
                (updated.status.value, self._document(updated), tenant_id, job_id, current.status.value),
            )
            conn.commit()
        return updated

    def query_by_status(self, status: JobStatus, *, tenant_id: str | None = None) -> list[RemediationJob]:
        from apps.backend.db import fetch_all_dict_conn

        sql = "SELECT document FROM remediation_jobs WHERE status = %s"
        params: list[Any] = [status.value]
        if tenant_id is not None:
            sql += " AND tenant_id = %s"
            params.append(tenant_id)
        sql += " ORDER BY requested_at, job_id"
        with self._connection() as conn:
            rows = fetch_all_dict_conn(conn, sql, params)
        return [job for job in (self._load(r) for r in rows) if job is not None]

