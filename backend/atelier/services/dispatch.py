"""Unit-of-Work Invoker: fire-and-forget dispatch of ``(unit, job_id)``.

Dispatch never blocks on the unit and never raises to the caller. A
dispatch that cannot be handed off is logged as a TransientDispatchError
and left for the next watchdog sweep to heal.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from atelier.core.errors import TransientDispatchError
from atelier.core.logging import logger

UnitRunner = Callable[[str, str, Dict[str, Any]], Awaitable[None]]


class UnitMessage:
    __slots__ = ("unit", "job_id", "body")

    def __init__(self, unit: str, job_id: str, body: Optional[Dict[str, Any]] = None):
        self.unit = unit
        self.job_id = job_id
        self.body = body or {}

    def __repr__(self) -> str:
        return f"UnitMessage({self.unit!r}, {self.job_id!r})"


class Invoker(ABC):
    """At-least-once handoff of unit invocations."""

    async def dispatch(
        self,
        unit: str,
        job_id: str,
        body: Optional[Dict[str, Any]] = None,
        delay: float = 0.0,
    ) -> bool:
        message = UnitMessage(unit, job_id, body)
        try:
            await self._send(message, delay)
        except TransientDispatchError as exc:
            logger.warning(f"dispatch {unit} for {job_id} dropped: {exc.message}")
            return False
        return True

    @abstractmethod
    async def _send(self, message: UnitMessage, delay: float) -> None:
        ...

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    @abstractmethod
    def snapshot(self) -> Dict[str, Any]:
        ...


class QueueInvoker(Invoker):
    """In-process invoker: an asyncio queue drained by N worker loops."""

    def __init__(self, runner: UnitRunner, workers: int = 2) -> None:
        self._runner = runner
        self._workers = workers
        self._queue: asyncio.Queue[UnitMessage] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []
        self._timers: set[asyncio.TimerHandle] = set()
        self._active: set[str] = set()
        self._running = False
        self._started_at = time.time()

    async def _send(self, message: UnitMessage, delay: float) -> None:
        if not self._running:
            raise TransientDispatchError("invoker is not running")
        if delay <= 0:
            self._queue.put_nowait(message)
            return
        loop = asyncio.get_running_loop()
        handle: Optional[asyncio.TimerHandle] = None

        def _fire() -> None:
            self._timers.discard(handle)
            if self._running:
                self._queue.put_nowait(message)

        handle = loop.call_later(delay, _fire)
        self._timers.add(handle)

    async def start(self) -> None:
        self._running = True
        self._started_at = time.time()
        for worker_id in range(self._workers):
            self._tasks.append(asyncio.create_task(self._worker_loop(worker_id)))

    async def stop(self) -> None:
        self._running = False
        for handle in list(self._timers):
            handle.cancel()
        self._timers.clear()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    async def _worker_loop(self, worker_id: int) -> None:
        logger.info(f"unit worker {worker_id} ready")
        while True:
            message = await self._queue.get()
            key = f"{message.unit}:{message.job_id}"
            self._active.add(key)
            try:
                await self._runner(message.unit, message.job_id, message.body)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pragma: no cover - safety net
                logger.exception(f"unit {key} crashed: {exc}")
            finally:
                self._active.discard(key)
                self._queue.task_done()

    def snapshot(self) -> Dict[str, Any]:
        return {
            "mode": "local",
            "uptime_sec": int(time.time() - self._started_at),
            "queue_depth": self._queue.qsize(),
            "scheduled": len(self._timers),
            "workers": {
                "active": len(self._active),
                "idle": max(self._workers - len(self._active), 0),
            },
        }


class HttpInvoker(Invoker):
    """Posts ``{job_id, body}`` to ``{base_url}/units/{unit}``.

    The target acknowledges with 202 before running the unit, so the post
    only waits for the handoff, never for the work.
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: Optional[httpx.Timeout] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {"X-Backend-Token": token} if token else {}
        self._timeout = timeout or httpx.Timeout(10.0, connect=5.0)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._pending: set[asyncio.Task] = set()
        self._sent = 0
        self._failed = 0

    async def _send(self, message: UnitMessage, delay: float) -> None:
        if self._client is None:
            raise TransientDispatchError("http invoker is not started")
        task = asyncio.create_task(self._post(message, delay))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _post(self, message: UnitMessage, delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        try:
            response = await self._client.post(
                f"{self._base_url}/units/{message.unit}",
                json={"job_id": message.job_id, "body": message.body},
                headers=self._headers,
            )
            if response.status_code >= 400:
                raise TransientDispatchError(
                    f"unit endpoint answered {response.status_code}"
                )
            self._sent += 1
        except (httpx.HTTPError, TransientDispatchError) as exc:
            self._failed += 1
            logger.warning(
                f"dispatch {message.unit} for {message.job_id} failed: {exc}"
            )

    async def start(self) -> None:
        self._client = httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport
        )

    async def stop(self) -> None:
        for task in list(self._pending):
            task.cancel()
        await asyncio.gather(*self._pending, return_exceptions=True)
        if self._client is not None:
            await self._client.aclose()
        self._client = None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "mode": "http",
            "target": self._base_url,
            "in_flight": len(self._pending),
            "sent": self._sent,
            "failed": self._failed,
        }


_invoker: Optional[Invoker] = None


def set_invoker(invoker: Optional[Invoker]) -> None:
    global _invoker
    _invoker = invoker


def get_invoker() -> Optional[Invoker]:
    return _invoker


async def dispatch(
    unit: str,
    job_id: str,
    body: Optional[Dict[str, Any]] = None,
    delay: float = 0.0,
) -> bool:
    if _invoker is None:
        logger.warning(f"dispatch {unit} for {job_id} dropped: no invoker configured")
        return False
    return await _invoker.dispatch(unit, job_id, body, delay)
