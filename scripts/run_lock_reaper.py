from __future__ import annotations

from tablebook.db.session import SessionLocal
from tablebook.services.lock_service import reap_expired_locks
from tablebook.services.rate_limit_service import purge_expired


def main() -> int:
    db = SessionLocal()
    try:
        expired = reap_expired_locks(db)
        purged = purge_expired(db)
        print(f"expired_locks: {expired} purged_buckets: {purged}")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
