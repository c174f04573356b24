"""
Runtime configuration for the shared task tree service.

All settings are read from environment variables once, at import time.
Invalid values fall back to safe defaults with a logged warning rather than
failing startup.
"""

import logging
import os
from typing import List

logger = logging.getLogger(__name__)


def _read_int(name: str, default: int, minimum: int, maximum: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"⚠️  Invalid {name} value in environment: {raw!r}. Using default of {default}.")
        return default
    if value < minimum or value > maximum:
        logger.warning(
            f"⚠️  {name}={value} is outside safe range ({minimum}-{maximum}). "
            f"Using default of {default}."
        )
        return default
    return value


def _read_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"⚠️  Invalid {name} value in environment: {raw!r}. Using default of {default}.")
        return default
    if value <= 0:
        logger.warning(f"⚠️  {name} must be positive, got {value}. Using default of {default}.")
        return default
    return value


def parse_due_windows(raw: str) -> List[int]:
    """
    Parse a comma separated list of reminder windows (seconds).

    Returns the windows sorted ascending with duplicates removed.

    Raises:
        ValueError: if any entry is not a positive integer
    """
    windows = set()
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        value = int(part)
        if value <= 0:
            raise ValueError(f"Due window must be positive, got {value}")
        windows.add(value)
    return sorted(windows)


DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./tasks.db")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# One hour, one day, two days
DEFAULT_DUE_WINDOWS = [3600, 86400, 172800]

try:
    DUE_WINDOWS = parse_due_windows(os.environ.get("DUE_WINDOWS", "")) or DEFAULT_DUE_WINDOWS
except ValueError as e:
    logger.warning(f"⚠️  Invalid DUE_WINDOWS ({e}). Using default of {DEFAULT_DUE_WINDOWS}.")
    DUE_WINDOWS = DEFAULT_DUE_WINDOWS

# 0 disables the background due-reminder loop
DUE_CHECK_INTERVAL_SECONDS = _read_int("DUE_CHECK_INTERVAL_SECONDS", 60, 0, 86400)

PUSH_API_URL = os.environ.get("PUSH_API_URL", "https://exp.host/--/api/v2/push/send")
PUSH_TIMEOUT_SECONDS = _read_float("PUSH_TIMEOUT_SECONDS", 10.0)

OPTIMIZER_URL = os.environ.get("OPTIMIZER_URL", "http://localhost:5000/optimize")
OPTIMIZER_TIMEOUT_SECONDS = _read_float("OPTIMIZER_TIMEOUT_SECONDS", 30.0)

# Effort assumed for tasks that never had an estimate (seconds)
DEFAULT_EXPECTED_DURATION = _read_float("DEFAULT_EXPECTED_DURATION", 3600.0)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get(
        "CORS_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000,http://localhost:8081",
    ).split(",")
    if origin.strip()
]
