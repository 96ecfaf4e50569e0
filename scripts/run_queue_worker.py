from __future__ import annotations

import argparse

from tablebook.db.session import SessionLocal
from tablebook.services.reconciliation_service import drain_queue


def main() -> int:
    parser = argparse.ArgumentParser(description="Drain due POS webhook events from the queue")
    parser.add_argument("--max-batches", type=int, default=1)
    args = parser.parse_args()

    db = SessionLocal()
    try:
        totals = [0, 0, 0]
        for _ in range(max(1, args.max_batches)):
            result = drain_queue(db)
            totals[0] += result.processed
            totals[1] += result.retried
            totals[2] += result.escalated
            if not (result.processed or result.retried or result.escalated):
                break
        print(f"processed: {totals[0]} retried: {totals[1]} escalated: {totals[2]}")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
