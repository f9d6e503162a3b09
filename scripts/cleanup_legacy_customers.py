"""Delete legacy customer, location and contact rows after a verified migration."""
from __future__ import annotations

from services.cleanup import main


if __name__ == "__main__":  # pragma: no cover - thin wrapper
    raise SystemExit(main())
