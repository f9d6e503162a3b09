"""Collapse decimal-formatted enquiries.number_of_blocks values."""
from __future__ import annotations

from services.normalization import main


if __name__ == "__main__":  # pragma: no cover - thin wrapper
    raise SystemExit(main())
