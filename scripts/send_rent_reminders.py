#!/usr/bin/env python3
"""Detect late rent invoices and send the matching reminder to each principal tenant."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lease_ops.config import SessionLocal, settings  # noqa: E402
from lease_ops.core.logging import configure_logging  # noqa: E402
from lease_ops.models.models import utcnow  # noqa: E402
from lease_ops.services.delinquency import scan_late_invoices  # noqa: E402
from lease_ops.services.reminders import dispatch_reminders  # noqa: E402
from lease_ops.services.store import LeaseStore  # noqa: E402


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--dry-run", action="store_true", help="List late invoices without sending anything.")
    args = parser.parse_args()
    configure_logging(settings.log_level, settings.log_format)

    with SessionLocal() as session:
        late = scan_late_invoices(LeaseStore(session), utcnow())
        if not late:
            print("No late invoices.")
            return
        if args.dry_run:
            for item in late:
                print(f"Invoice {item.invoice_id}: {item.days_late} days late -> {item.reminder_level} ({item.tenant_email or 'no email'})")
            return
        outcomes = dispatch_reminders(late, db_session=session)

    counts: dict[str, int] = {}
    for outcome in outcomes:
        counts[outcome.status] = counts.get(outcome.status, 0) + 1
    summary = ", ".join(f"{status}={count}" for status, count in sorted(counts.items()))
    print(f"Reminders for {len(late)} late invoice(s): {summary}")


if __name__ == "__main__":
    main()
