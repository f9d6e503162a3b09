"""Restore a JSON backup; defaults to the newest backups/backup-* directory."""
from __future__ import annotations

from services.restore import main


if __name__ == "__main__":  # pragma: no cover - thin wrapper
    raise SystemExit(main())
