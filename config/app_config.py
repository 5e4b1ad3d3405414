"""Centralised application settings (dotenv + env overrides)."""
from __future__ import annotations
import os
from pathlib import Path
from dotenv import load_dotenv

ROOT = Path(__file__).parents[1]
load_dotenv(ROOT / ".env", override=False)


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class settings:                            # pylint: disable=too-few-public-methods
    ENGINE_POLL_INTERVAL_MS = int(os.getenv("ENGINE_POLL_INTERVAL_MS", 10000))
    ENGINE_AUTOSTART        = _flag("ENGINE_AUTOSTART", "true")
    SEED_FILE               = os.getenv("SEED_FILE", "")
    LOG_LEVEL               = os.getenv("LOG_LEVEL", "INFO").upper()
