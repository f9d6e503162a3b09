"""Centralized helpers for resolving where backups are written and read."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

LOGGER = logging.getLogger(__name__)

APP_ROOT = Path(__file__).resolve().parent
BACKUPS_ROOT = APP_ROOT / "backups"
BACKUP_ROOT_ENV = "CRM_BACKUP_ROOT"


def resolve_backups_root() -> Path:
    """Return the configured backups directory without creating it."""
    override = os.environ.get(BACKUP_ROOT_ENV, "").strip()
    if override:
        return Path(override).expanduser()
    return BACKUPS_ROOT


def ensure_backups_root(destination_dir: Optional[Path] = None) -> Path:
    """Return the backups directory, creating it if absent."""
    root = Path(destination_dir) if destination_dir is not None else resolve_backups_root()
    if not root.exists():
        LOGGER.info("Creating backups directory %s", root)
    root.mkdir(parents=True, exist_ok=True)
    return root
