import json

import httpx
import pytest

from atelier.core.errors import VendorError
from atelier.vendors.client import HttpVendor, ToolClient, normalize_remote_status


@pytest.mark.parametrize(
    "data, state",
    [
        ({"status": "IN_QUEUE"}, "in_progress"),
        ({"status": "processing"}, "in_progress"),
        ({"status": "COMPLETED", "result": "https://cdn.test/x.png"}, "succeeded"),
        ({"status": "success", "output_url": "https://cdn.test/x.png"}, "succeeded"),
        ({"status": "FAILED", "error": "bad input"}, "failed"),
    ],
)
def test_normalize_remote_status(data, state):
    assert normalize_remote_status(data).state == state


@pytest.mark.parametrize("data", [None, {}, {"status": "COMPLETED"}])
def test_unusable_status_is_vendor_error(data):
    with pytest.raises(VendorError):
        normalize_remote_status(data)


async def test_http_vendor_submit_and_check():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path, json.loads(request.content)))
        if request.url.path == "/queue":
            return httpx.Response(200, json={"success": True, "requestId": "req-1"})
        return httpx.Response(200, json={"status": "FAILED", "error": "blurry"})

    vendor = HttpVendor(
        "enhancor", "https://vendor.test", "key", transport=httpx.MockTransport(handler)
    )
    assert await vendor.submit({"img_url": "https://img.test/a.png"}) == "req-1"
    remote = await vendor.check("req-1")
    assert remote.state == "failed"
    assert remote.error == "blurry"
    assert seen[1] == ("/status", {"request_id": "req-1"})


async def test_http_vendor_surfaces_client_errors():
    vendor = HttpVendor(
        "bitstudio",
        "https://vendor.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(400, text="bad mask")),
    )
    with pytest.raises(VendorError, match="bad mask"):
        await vendor.submit({})


async def test_unconfigured_vendor_fails_fast():
    with pytest.raises(VendorError, match="not configured"):
        await HttpVendor("comfyui", "").submit({})


async def test_tool_client_reports_tool_errors():
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, json={"error": "no garment found"})
    )
    tools = ToolClient("https://tools.test", "k", transport=transport)
    with pytest.raises(VendorError, match="no garment found"):
        await tools.call("segmentation", {})
