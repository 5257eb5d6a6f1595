from typing import Dict, Optional

from atelier.core.config import TOOLS_API_KEY, TOOLS_BASE_URL, vendor_settings
from atelier.vendors.client import HttpVendor, ToolClient

VENDOR_NAMES = ("enhancor", "bitstudio", "comfyui")

_vendors: Dict[str, object] = {}
_tools: Optional[object] = None


def get_vendor(name: str):
    if name not in _vendors:
        if name not in VENDOR_NAMES:
            raise KeyError(f"unknown vendor {name}")
        base_url, api_key = vendor_settings(name)
        _vendors[name] = HttpVendor(name, base_url, api_key)
    return _vendors[name]


def set_vendor(name: str, vendor: object) -> None:
    _vendors[name] = vendor


def get_tools():
    global _tools
    if _tools is None:
        _tools = ToolClient(TOOLS_BASE_URL, TOOLS_API_KEY)
    return _tools


def set_tools(tools: object) -> None:
    global _tools
    _tools = tools


def reset() -> None:
    global _tools
    _vendors.clear()
    _tools = None
