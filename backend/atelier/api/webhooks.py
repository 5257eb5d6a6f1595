from typing import Any, Dict

from fastapi import APIRouter, Query, Request

from atelier.core.logging import logger
from atelier.schemas.jobs import VendorCallback
from atelier.services.callbacks import handle_callback
from atelier.vendors.registry import VENDOR_NAMES

router = APIRouter()


@router.post("/webhooks/{vendor}")
async def vendor_webhook(
    vendor: str, request: Request, job_id: str = Query(default="")
) -> Dict[str, Any]:
    # Vendors redeliver on anything but 200, so every outcome is acknowledged.
    if vendor not in VENDOR_NAMES or not job_id:
        logger.warning(f"webhook rejected: vendor={vendor} job_id={job_id!r}")
        return {"success": False, "error": "unknown vendor or missing job_id"}
    try:
        callback = VendorCallback.model_validate(await request.json())
    except ValueError as exc:
        logger.warning(f"webhook {vendor}: malformed body for {job_id}: {exc}")
        return {"success": False, "error": "malformed callback body"}
    result = await handle_callback(vendor, job_id, callback)
    return {"success": True, **result}
