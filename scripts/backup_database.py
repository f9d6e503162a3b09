"""Write a table-keyed JSON snapshot of every CRM table to backups/."""
from __future__ import annotations

from services.backup import main


if __name__ == "__main__":  # pragma: no cover - thin wrapper
    raise SystemExit(main())
