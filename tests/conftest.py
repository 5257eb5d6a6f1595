from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

import pytest

from atelier.core.errors import TransientDispatchError, VendorError
from atelier.db import connection
from atelier.services import dispatch
from atelier.services.units import load_units, run_unit
from atelier.storage.artifacts import ArtifactStore, set_store
from atelier.utils.time import iso_seconds_ago
from atelier.vendors import registry
from atelier.vendors.client import RemoteStatus


class ManualInvoker(dispatch.Invoker):
    """Records dispatches; tests decide when (and whether) they run."""

    def __init__(self) -> None:
        self.queue: List[Tuple[dispatch.UnitMessage, float]] = []
        self.history: List[Tuple[str, str, float]] = []
        self.drop = 0

    async def _send(self, message: dispatch.UnitMessage, delay: float) -> None:
        if self.drop > 0:
            self.drop -= 1
            raise TransientDispatchError("dropped by test")
        self.queue.append((message, delay))
        self.history.append((message.unit, message.job_id, delay))

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    def snapshot(self) -> Dict[str, Any]:
        return {"mode": "manual", "queue_depth": len(self.queue)}

    def units(self) -> List[str]:
        return [message.unit for message, _ in self.queue]

    async def run_next(self) -> dispatch.UnitMessage:
        message, _ = self.queue.pop(0)
        await run_unit(message.unit, message.job_id, message.body)
        return message

    async def drain(self, limit: int = 200) -> int:
        count = 0
        while self.queue and count < limit:
            await self.run_next()
            count += 1
        return count


def fake_image(url: str) -> bytes:
    return b"\x89PNG" + url.encode()


class FakeVendor:
    def __init__(self, name: str) -> None:
        self.name = name
        self.submitted: List[Dict[str, Any]] = []
        self.statuses: List[RemoteStatus] = []
        self.failed_tasks: Set[str] = set()
        self.checks: List[str] = []
        self.submit_error: Optional[str] = None
        self.on_check: Optional[Callable[[str], Awaitable[None]]] = None

    async def submit(self, body: Dict[str, Any]) -> str:
        if self.submit_error:
            raise VendorError(self.submit_error)
        self.submitted.append(body)
        return f"{self.name}-task-{len(self.submitted)}"

    async def check(self, task_id: str) -> RemoteStatus:
        self.checks.append(task_id)
        if self.on_check is not None:
            await self.on_check(task_id)
        if task_id in self.failed_tasks:
            return RemoteStatus(state="failed", error=f"{self.name} rejected {task_id}")
        if self.statuses:
            return self.statuses.pop(0)
        return RemoteStatus(
            state="succeeded",
            result_url=f"https://cdn.{self.name}.test/{task_id}.png",
            raw_status="COMPLETED",
        )

    async def download(self, url: str) -> bytes:
        return fake_image(url)


TOOL_RESPONSES: Dict[str, Any] = {
    "image_editor": {"result_url": "https://tools.test/edited.png"},
    "image_generator": {
        "images": [f"https://tools.test/base-{i}.png" for i in range(4)]
    },
    "quality_assurance": {"best_index": 2, "reasoning": "sharpest face"},
    "pose_generator": lambda body: {
        "images": [f"https://tools.test/pose-{i}.png" for i in range(len(body["poses"]))]
    },
    "vto_prompt_helper": {"final_prompt": "a person wearing the garment"},
    "segmentation": {"mask_url": "https://tools.test/mask.png"},
}


class FakeTools:
    def __init__(self) -> None:
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.responses: Dict[str, Any] = dict(TOOL_RESPONSES)
        self.errors: Dict[str, str] = {}
        self.on_call: Optional[Callable[[str], Awaitable[None]]] = None

    async def call(self, tool: str, body: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append((tool, body))
        if self.on_call is not None:
            await self.on_call(tool)
        if tool in self.errors:
            raise VendorError(self.errors[tool])
        response = self.responses[tool]
        return response(body) if callable(response) else dict(response)

    def called(self, tool: str) -> int:
        return sum(1 for name, _ in self.calls if name == tool)

    async def download(self, url: str) -> bytes:
        return fake_image(url)


@pytest.fixture
async def db(tmp_path):
    await connection.connect_db(str(tmp_path / "jobs.db"))
    yield
    await connection.close_db()


@pytest.fixture
def invoker():
    manual = ManualInvoker()
    dispatch.set_invoker(manual)
    yield manual
    dispatch.set_invoker(None)


@pytest.fixture
def store(tmp_path):
    artifact_store = ArtifactStore(str(tmp_path / "artifacts"))
    set_store(artifact_store)
    yield artifact_store
    set_store(None)


@pytest.fixture
def vendors():
    fakes = {name: FakeVendor(name) for name in registry.VENDOR_NAMES}
    for name, vendor in fakes.items():
        registry.set_vendor(name, vendor)
    yield fakes
    registry.reset()


@pytest.fixture
def tools():
    fake = FakeTools()
    registry.set_tools(fake)
    yield fake
    registry.reset()


@pytest.fixture
async def engine(db, invoker, store, vendors, tools):
    load_units()
    return invoker


@pytest.fixture
def backdate():
    async def _backdate(job_id: str, seconds: float) -> None:
        await connection.execute(
            "update jobs set updated_at = ? where job_id = ?",
            (iso_seconds_ago(seconds), job_id),
        )

    return _backdate
