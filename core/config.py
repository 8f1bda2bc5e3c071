"""Environment-driven configuration.

Reads reconciliation defaults and logging options from the environment,
loading a `.env` file from the repository root first if one exists.

Variables:
- RECON_AMOUNT_TOLERANCE: Amount tolerance as a decimal string (default "0.01")
- RECON_DATE_TOLERANCE_HOURS: Date tolerance in hours (default 24)
- RECON_CONFIDENCE_THRESHOLD: Minimum confidence for a trusted match (default 0.8)
- RECON_AUTO_RESOLVE: Auto-resolve minor discrepancies (default true)
- RECON_REQUIRE_MANUAL_APPROVAL: Hold auto resolutions for approval (default false)
- RECON_MAX_THREADS: Worker threads per engine (default 5)
- RECON_MATERIAL_THRESHOLD: Amount above which a missing record is material (default "10000")
- RECON_LOG_JSON: Emit JSON logs (default false)
- RECON_LOG_LEVEL: Logging level name (default INFO)
"""

import logging
import os
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional, Tuple

# Load .env file if it exists
from dotenv import load_dotenv
env_path = Path(__file__).resolve().parents[1] / ".env"
if env_path.exists():
    load_dotenv(env_path)


_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _env_decimal(name: str, default: str) -> Decimal:
    raw = os.getenv(name, default)
    try:
        return Decimal(raw.strip())
    except InvalidOperation:
        raise ValueError(f"{name} must be a decimal number, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean flag, got {raw!r}")


def load_settings():
    """Build ReconciliationSettings from environment variables.

    Returns:
        Validated ReconciliationSettings

    Raises:
        ValueError: If a variable is present but cannot be parsed
    """
    from reconciliation.models import ReconciliationSettings

    return ReconciliationSettings(
        amount_tolerance=_env_decimal("RECON_AMOUNT_TOLERANCE", "0.01"),
        date_tolerance=timedelta(hours=_env_float("RECON_DATE_TOLERANCE_HOURS", 24.0)),
        confidence_threshold=_env_float("RECON_CONFIDENCE_THRESHOLD", 0.8),
        auto_resolve_minor_discrepancies=_env_bool("RECON_AUTO_RESOLVE", True),
        require_manual_approval=_env_bool("RECON_REQUIRE_MANUAL_APPROVAL", False),
        max_processing_threads=_env_int("RECON_MAX_THREADS", 5),
        material_amount_threshold=_env_decimal("RECON_MATERIAL_THRESHOLD", "10000"),
    )


def get_log_settings() -> Tuple[int, bool]:
    """Return (level, json_format) for configure_logging."""
    level_name: Optional[str] = os.getenv("RECON_LOG_LEVEL", "INFO")
    level = logging.getLevelName(level_name.strip().upper())
    if not isinstance(level, int):
        level = logging.INFO
    return level, _env_bool("RECON_LOG_JSON", False)
