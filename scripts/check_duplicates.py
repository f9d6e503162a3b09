"""List companies and legacy customers whose names match or overlap."""
from __future__ import annotations

from services.verification import main_duplicates as main


if __name__ == "__main__":  # pragma: no cover - thin wrapper
    raise SystemExit(main())
