#!/usr/bin/env python3
"""Reconcile charges against provisions for every active lease (or a single one)."""

from __future__ import annotations

import argparse
import sys
from datetime import date
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lease_ops.config import SessionLocal, settings  # noqa: E402
from lease_ops.core.logging import configure_logging  # noqa: E402
from lease_ops.services.batch import SCOPE_ALL, SCOPE_LEASE, run_batch  # noqa: E402
from lease_ops.services.events import EventEmitter  # noqa: E402
from lease_ops.services.store import LeaseStore  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--year", type=int, default=date.today().year - 1, help="Calendar year to reconcile.")
    parser.add_argument("--lease-id", type=int, default=None, help="Reconcile a single lease instead of all active leases.")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    configure_logging(settings.log_level, settings.log_format)
    scope = SCOPE_LEASE if args.lease_id is not None else SCOPE_ALL
    with SessionLocal() as session, EventEmitter(SessionLocal) as emitter:
        result = run_batch(
            LeaseStore(session),
            scope,
            args.year,
            user=None,
            lease_id=args.lease_id,
            emitter=emitter,
            session_factory=SessionLocal,
            authorize=False,
        )
    print(f"Reconciled {len(result.results)} lease(s) for {args.year}.")
    for error in result.errors:
        print(f"  lease {error.lease_id}: {error.error} ({error.detail})")
    return 1 if result.errors else 0


if __name__ == "__main__":
    sys.exit(main())
