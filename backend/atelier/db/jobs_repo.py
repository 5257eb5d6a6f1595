"""Job Store: durable job rows, the single source of truth.

No business logic lives here beyond the two write guards every caller
relies on: terminal jobs reject updates, and an ``expected_status`` guard
lets a unit abandon its write when the job moved on underneath it.
"""

import json
import sqlite3
import uuid
from typing import Any, Dict, Iterable, List, Optional, Tuple

from atelier.core.errors import ConflictError, NotFoundError
from atelier.db.connection import execute, fetchall, fetchone, transaction
from atelier.schemas.jobs import FAILED, TERMINAL_STATUSES
from atelier.utils.time import iso_seconds_ago, utc_now


def _row_to_job(row: Any) -> Dict[str, Any]:
    return {
        "job_id": row["job_id"],
        "job_type": row["job_type"],
        "status": row["status"],
        "owner_id": row["owner_id"],
        "parent_id": row["parent_id"],
        "payload": json.loads(row["payload_json"]) if row["payload_json"] else {},
        "error_message": row["error_message"],
        "retry_count": row["retry_count"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


def _new_job_id() -> str:
    return f"job_{uuid.uuid4().hex}"


def _insert_sync(
    conn: sqlite3.Connection,
    job_type: str,
    owner_id: str,
    payload: Dict[str, Any],
    status: str,
    parent_id: Optional[str],
) -> Dict[str, Any]:
    job_id = _new_job_id()
    now = utc_now()
    conn.execute(
        """
        insert into jobs (
          job_id, job_type, status, owner_id, parent_id, payload_json,
          error_message, retry_count, created_at, updated_at
        )
        values (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            job_id,
            job_type,
            status,
            owner_id,
            parent_id,
            json.dumps(payload),
            None,
            0,
            now,
            now,
        ),
    )
    return _fetch_sync(conn, job_id)


def _fetch_sync(conn: sqlite3.Connection, job_id: str) -> Dict[str, Any]:
    row = conn.execute("select * from jobs where job_id = ?", (job_id,)).fetchone()
    if row is None:
        raise NotFoundError(f"job {job_id} not found")
    return _row_to_job(row)


async def create_job(
    job_type: str,
    owner_id: str,
    payload: Dict[str, Any],
    status: str,
    parent_id: Optional[str] = None,
) -> Dict[str, Any]:
    return await transaction(
        lambda conn: _insert_sync(conn, job_type, owner_id, payload, status, parent_id)
    )


async def create_job_tree(
    parent_type: str,
    owner_id: str,
    parent_payload: Dict[str, Any],
    parent_status: str,
    child_type: str,
    child_payloads: List[Dict[str, Any]],
    child_status: str,
) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
    """Insert a fan-out parent and all of its children atomically."""

    def _create(conn: sqlite3.Connection):
        parent = _insert_sync(
            conn, parent_type, owner_id, parent_payload, parent_status, None
        )
        children = [
            _insert_sync(
                conn, child_type, owner_id, payload, child_status, parent["job_id"]
            )
            for payload in child_payloads
        ]
        return parent, children

    return await transaction(_create)


async def fetch_job(job_id: str) -> Optional[Dict[str, Any]]:
    row = await fetchone("select * from jobs where job_id = ?", (job_id,))
    if row is None:
        return None
    return _row_to_job(row)


async def get_job(job_id: str) -> Dict[str, Any]:
    job = await fetch_job(job_id)
    if job is None:
        raise NotFoundError(f"job {job_id} not found")
    return job


async def update_job(
    job_id: str,
    status: Optional[str] = None,
    payload_patch: Optional[Dict[str, Any]] = None,
    error_message: Optional[str] = None,
    retry_count: Optional[int] = None,
    expected_status: Optional[str] = None,
) -> Dict[str, Any]:
    """Atomically patch a job and refresh ``updated_at``.

    Raises ConflictError when the job is already terminal or, if
    ``expected_status`` is given, when the job is no longer in it.
    """

    def _update(conn: sqlite3.Connection) -> Dict[str, Any]:
        current = _fetch_sync(conn, job_id)
        if current["status"] in TERMINAL_STATUSES:
            raise ConflictError(
                f"job {job_id} is already {current['status']}", reason="terminal"
            )
        if expected_status is not None and current["status"] != expected_status:
            raise ConflictError(
                f"job {job_id} is {current['status']}, expected {expected_status}",
                reason="stale_status",
            )
        new_status = status or current["status"]
        payload = current["payload"]
        if payload_patch:
            payload = {**payload, **payload_patch}
        message = None
        if new_status == FAILED:
            message = error_message or current["error_message"] or "failed"
        conn.execute(
            """
            update jobs
            set status = ?, payload_json = ?, error_message = ?,
                retry_count = ?, updated_at = ?
            where job_id = ?
            """,
            (
                new_status,
                json.dumps(payload),
                message,
                current["retry_count"] if retry_count is None else retry_count,
                utc_now(),
                job_id,
            ),
        )
        return _fetch_sync(conn, job_id)

    return await transaction(_update)


async def reset_job(
    job_id: str,
    status: str,
    payload_patch: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Explicit retry: move a ``failed`` job back to a re-entry stage."""

    def _reset(conn: sqlite3.Connection) -> Dict[str, Any]:
        current = _fetch_sync(conn, job_id)
        if current["status"] != FAILED:
            raise ConflictError(
                f"job {job_id} is {current['status']}, only failed jobs can be retried",
                reason="not_failed",
            )
        payload = {**current["payload"], **(payload_patch or {})}
        conn.execute(
            """
            update jobs
            set status = ?, payload_json = ?, error_message = null,
                retry_count = 0, updated_at = ?
            where job_id = ?
            """,
            (status, json.dumps(payload), utc_now(), job_id),
        )
        return _fetch_sync(conn, job_id)

    return await transaction(_reset)


async def find_stalled(
    job_type: str, statuses: Iterable[str], age_threshold_sec: float
) -> List[Dict[str, Any]]:
    status_list = [s for s in statuses if s not in TERMINAL_STATUSES]
    if not status_list:
        return []
    placeholders = ", ".join("?" for _ in status_list)
    rows = await fetchall(
        f"""
        select * from jobs
        where job_type = ? and status in ({placeholders}) and updated_at < ?
        order by updated_at asc
        """,
        (job_type, *status_list, iso_seconds_ago(age_threshold_sec)),
    )
    return [_row_to_job(row) for row in rows]


async def list_children(parent_id: str) -> List[Dict[str, Any]]:
    rows = await fetchall(
        "select * from jobs where parent_id = ? order by created_at asc, rowid asc",
        (parent_id,),
    )
    return [_row_to_job(row) for row in rows]


async def list_jobs(
    owner_id: Optional[str] = None,
    job_type: Optional[str] = None,
    active_only: bool = False,
    top_level_only: bool = True,
    limit: int = 200,
) -> List[Dict[str, Any]]:
    clauses: List[str] = []
    values: List[Any] = []
    if owner_id:
        clauses.append("owner_id = ?")
        values.append(owner_id)
    if job_type:
        clauses.append("job_type = ?")
        values.append(job_type)
    if active_only:
        clauses.append("status not in (?, ?)")
        values.extend(sorted(TERMINAL_STATUSES))
    if top_level_only:
        clauses.append("parent_id is null")
    where = f"where {' and '.join(clauses)}" if clauses else ""
    rows = await fetchall(
        f"select * from jobs {where} order by created_at desc limit ?",
        (*values, limit),
    )
    return [_row_to_job(row) for row in rows]


async def record_event(
    job_id: str, level: str, message: str, meta: Optional[Dict[str, Any]] = None
) -> None:
    await execute(
        """
        insert into job_events (job_id, created_at, level, message, meta_json)
        values (?, ?, ?, ?, ?)
        """,
        (job_id, utc_now(), level, message, json.dumps(meta) if meta else None),
    )


async def fetch_events(job_id: str, limit: int = 200) -> List[Dict[str, Any]]:
    rows = await fetchall(
        """
        select * from job_events where job_id = ?
        order by event_id asc limit ?
        """,
        (job_id, limit),
    )
    return [
        {
            "event_id": row["event_id"],
            "job_id": row["job_id"],
            "created_at": row["created_at"],
            "level": row["level"],
            "message": row["message"],
            "meta": json.loads(row["meta_json"]) if row["meta_json"] else None,
        }
        for row in rows
    ]


async def count_active_jobs() -> Dict[str, int]:
    rows = await fetchall(
        """
        select job_type, count(*) as total from jobs
        where status not in (?, ?)
        group by job_type
        """,
        tuple(sorted(TERMINAL_STATUSES)),
    )
    return {row["job_type"]: row["total"] for row in rows}
