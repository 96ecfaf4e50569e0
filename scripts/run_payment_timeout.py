from __future__ import annotations

from tablebook.db.session import SessionLocal
from tablebook.services.reservation_service import expire_pending_payments


def main() -> int:
    db = SessionLocal()
    try:
        count = expire_pending_payments(db)
        if not count:
            print("no_targets")
            return 0
        print(f"incomplete: {count}")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
