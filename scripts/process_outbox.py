#!/usr/bin/env python3
"""Deliver pending outbox events, rescheduling failures with exponential backoff."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lease_ops.config import SessionLocal, settings  # noqa: E402
from lease_ops.core.logging import configure_logging  # noqa: E402
from lease_ops.services.events import process_outbox  # noqa: E402


def main() -> None:
    configure_logging(settings.log_level, settings.log_format)
    with SessionLocal() as session:
        summary = process_outbox(session)
    if summary.total:
        print(f"Outbox: processed={summary.processed} failed={summary.failed} total={summary.total}")
    else:
        print("No outbox events due.")


if __name__ == "__main__":
    main()
