import os

BACKEND_TOKEN = os.environ.get("BACKEND_TOKEN", "")
APP_DATA_DIR = os.environ.get("APP_DATA_DIR", os.path.join(os.getcwd(), "data"))
LOG_DIR = os.environ.get("LOG_DIR", os.path.join(APP_DATA_DIR, "logs"))
ARTIFACT_DIR = os.environ.get("ARTIFACT_DIR", os.path.join(APP_DATA_DIR, "artifacts"))
BACKEND_WORKERS = int(os.environ.get("BACKEND_WORKERS", "4"))
BACKEND_PORT = int(os.environ.get("BACKEND_PORT", "49671"))

DB_PATH = os.environ.get("DB_PATH", os.path.join(APP_DATA_DIR, "jobs.db"))

# Unit-of-work dispatch: "local" runs units on the in-process queue,
# "http" posts them to DISPATCH_BASE_URL/units/{unit}.
DISPATCH_MODE = os.environ.get("DISPATCH_MODE", "local")
DISPATCH_BASE_URL = os.environ.get(
    "DISPATCH_BASE_URL", f"http://127.0.0.1:{BACKEND_PORT}"
)

POLL_INTERVAL_SEC = float(os.environ.get("POLL_INTERVAL_SEC", "10"))
MAX_WATCHDOG_RETRIES = int(os.environ.get("MAX_WATCHDOG_RETRIES", "3"))
SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "1") not in {"0", "false", ""}

# Watchdog families: (trigger interval, stall threshold) in seconds.
WATCHDOG_DEFAULTS = {
    "agent": (60, 60),
    "vto": (120, 300),
    "enhancement": (300, 300),
    "upscale": (300, 600),
    "inpaint": (120, 300),
}


def watchdog_timing(family: str) -> tuple[int, int]:
    interval, threshold = WATCHDOG_DEFAULTS[family]
    prefix = f"WATCHDOG_{family.upper()}"
    return (
        int(os.environ.get(f"{prefix}_INTERVAL_SEC", str(interval))),
        int(os.environ.get(f"{prefix}_THRESHOLD_SEC", str(threshold))),
    )


def vendor_settings(name: str) -> tuple[str, str]:
    prefix = f"VENDOR_{name.upper()}"
    return (
        os.environ.get(f"{prefix}_URL", ""),
        os.environ.get(f"{prefix}_API_KEY", ""),
    )


TOOLS_BASE_URL = os.environ.get("TOOLS_BASE_URL", "")
TOOLS_API_KEY = os.environ.get("TOOLS_API_KEY", "")
WEBHOOK_BASE_URL = os.environ.get("WEBHOOK_BASE_URL", "")


def ensure_dirs() -> None:
    os.makedirs(APP_DATA_DIR, exist_ok=True)
    os.makedirs(LOG_DIR, exist_ok=True)
    os.makedirs(ARTIFACT_DIR, exist_ok=True)
