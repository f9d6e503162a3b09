"""Point enquiries still tied to a legacy customer at the same-named company."""
from __future__ import annotations

from services.verification import main_link as main


if __name__ == "__main__":  # pragma: no cover - thin wrapper
    raise SystemExit(main())
