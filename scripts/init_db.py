from __future__ import annotations

from tablebook.db.base import Base
from tablebook.db.session import engine

# Import models to register with SQLAlchemy
import tablebook.models  # noqa: F401


def main() -> int:
    # The no-overlap constraint (and btree_gist on PostgreSQL) is attached to
    # reservation_allocations as create-time DDL.
    Base.metadata.create_all(bind=engine)
    print("DB initialized")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
