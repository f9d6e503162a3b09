"""Write a backups/backup-<timestamp>/ directory with one JSON file per table."""
from __future__ import annotations

from services.backup import main_tables as main


if __name__ == "__main__":  # pragma: no cover - thin wrapper
    raise SystemExit(main())
