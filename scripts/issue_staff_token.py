from __future__ import annotations

import argparse

from tablebook.core.security import STAFF_ROLES, create_access_token


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--subject", required=True, help="Staff identifier recorded in audit logs")
    parser.add_argument("--role", default="staff", choices=sorted(STAFF_ROLES))
    parser.add_argument("--minutes", type=int, default=None, help="Token lifetime; defaults to ACCESS_TOKEN_EXP_MINUTES")

    args = parser.parse_args()

    token = create_access_token(args.subject, args.role, expires_minutes=args.minutes)
    print(token)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
