"""Write the nested customer-centric backup of the legacy customer tables."""
from __future__ import annotations

from services.backup import main_customer_form as main


if __name__ == "__main__":  # pragma: no cover - thin wrapper
    raise SystemExit(main())
