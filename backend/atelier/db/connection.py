import asyncio
import sqlite3
from typing import Any, Callable, Optional, TypeVar

from atelier.core.config import DB_PATH

T = TypeVar("T")

db_lock = asyncio.Lock()
db_conn: sqlite3.Connection | None = None


def init_db(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        create table if not exists jobs (
          job_id text primary key,
          job_type text not null,
          status text not null,
          owner_id text not null,
          parent_id text references jobs (job_id),
          payload_json text,
          error_message text,
          retry_count integer not null default 0,
          created_at text not null,
          updated_at text not null
        );
        """
    )
    conn.execute(
        """
        create table if not exists job_events (
          event_id integer primary key,
          job_id text not null,
          created_at text not null,
          level text not null,
          message text not null,
          meta_json text
        );
        """
    )
    conn.execute(
        """
        create index if not exists idx_jobs_type_status_updated
        on jobs (job_type, status, updated_at);
        """
    )
    conn.execute(
        """
        create index if not exists idx_jobs_parent
        on jobs (parent_id);
        """
    )
    conn.execute(
        """
        create index if not exists idx_jobs_owner_created
        on jobs (owner_id, created_at);
        """
    )
    conn.execute(
        """
        create index if not exists idx_job_events_job
        on job_events (job_id, event_id);
        """
    )
    conn.commit()


async def connect_db(path: Optional[str] = None) -> None:
    global db_conn, db_lock
    db_lock = asyncio.Lock()
    db_conn = sqlite3.connect(path or DB_PATH, check_same_thread=False)
    db_conn.row_factory = sqlite3.Row
    db_conn.execute("pragma journal_mode=wal")
    db_conn.execute("pragma foreign_keys=on")
    init_db(db_conn)


async def close_db() -> None:
    global db_conn
    if db_conn:
        db_conn.close()
    db_conn = None


def _ensure_conn() -> sqlite3.Connection:
    if db_conn is None:
        raise RuntimeError("database not initialized")
    return db_conn


async def execute(query: str, params: tuple[Any, ...] = ()) -> None:
    async with db_lock:
        await asyncio.to_thread(_execute_sync, query, params)


def _execute_sync(query: str, params: tuple[Any, ...]) -> None:
    conn = _ensure_conn()
    conn.execute(query, params)
    conn.commit()


async def fetchone(
    query: str, params: tuple[Any, ...] = ()
) -> Optional[sqlite3.Row]:
    async with db_lock:
        return await asyncio.to_thread(_fetchone_sync, query, params)


def _fetchone_sync(
    query: str, params: tuple[Any, ...]
) -> Optional[sqlite3.Row]:
    conn = _ensure_conn()
    cur = conn.execute(query, params)
    return cur.fetchone()


async def fetchall(
    query: str, params: tuple[Any, ...] = ()
) -> list[sqlite3.Row]:
    async with db_lock:
        return await asyncio.to_thread(_fetchall_sync, query, params)


def _fetchall_sync(
    query: str, params: tuple[Any, ...]
) -> list[sqlite3.Row]:
    conn = _ensure_conn()
    cur = conn.execute(query, params)
    return cur.fetchall()


async def transaction(fn: Callable[[sqlite3.Connection], T]) -> T:
    """Run ``fn(conn)`` as one atomic read-modify-write.

    Commits when ``fn`` returns, rolls back when it raises.
    """
    async with db_lock:
        return await asyncio.to_thread(_transaction_sync, fn)


def _transaction_sync(fn: Callable[[sqlite3.Connection], T]) -> T:
    conn = _ensure_conn()
    try:
        result = fn(conn)
    except BaseException:
        conn.rollback()
        raise
    conn.commit()
    return result
