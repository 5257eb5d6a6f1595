from typing import Any, Dict, List, Optional

from atelier.core.config import WEBHOOK_BASE_URL
from atelier.core.errors import VendorError


def result_url(data: Dict[str, Any], tool: str, key: str = "result_url") -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise VendorError(f"{tool} returned no {key}")
    return value


def result_urls(data: Dict[str, Any], tool: str, key: str = "images") -> List[str]:
    values = data.get(key)
    if not isinstance(values, list) or not values:
        raise VendorError(f"{tool} returned no {key}")
    urls = [value for value in values if isinstance(value, str) and value]
    if len(urls) != len(values):
        raise VendorError(f"{tool} returned malformed {key}")
    return urls


def webhook_url(vendor: str, job_id: str) -> Optional[str]:
    """Callback address handed to vendors that push completion."""
    if not WEBHOOK_BASE_URL:
        return None
    return f"{WEBHOOK_BASE_URL.rstrip('/')}/webhooks/{vendor}?job_id={job_id}"


def with_webhook(body: Dict[str, Any], vendor: str, job_id: str) -> Dict[str, Any]:
    url = webhook_url(vendor, job_id)
    if url:
        body["webhookUrl"] = url
    return body
