"""Print table counts and number_of_blocks samples for a manual check."""
from __future__ import annotations

from services.verification import main_verify as main


if __name__ == "__main__":  # pragma: no cover - thin wrapper
    raise SystemExit(main())
