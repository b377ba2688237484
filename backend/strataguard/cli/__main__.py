# backend/strataguard/cli/__main__.py
from __future__ import annotations

import argparse

from strataguard.cli.seed_demo import seed_demo
from strataguard.db import init_db


def main() -> None:
    p = argparse.ArgumentParser(prog="strataguard.cli")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="create all tables on the configured database")

    seed = sub.add_parser("seed-demo", help="admin + council users, one unit with owner/tenant, two categories, two bylaws")
    seed.add_argument("--admin-email", default="admin@strataguard.local")
    seed.add_argument("--admin-password", default="change-me")
    seed.add_argument("--unit-number", default="101")

    args = p.parse_args()

    if args.command == "init-db":
        init_db()
        print({"ok": True, "command": "init-db"})
        return

    init_db()
    out = seed_demo(
        admin_email=args.admin_email,
        admin_password=args.admin_password,
        unit_number=args.unit_number,
    )
    print(
        {
            "ok": True,
            "admin_email": out.admin_email,
            "unit_number": out.unit_number,
            "unit_id": out.unit_id,
            "category_ids": list(out.category_ids),
            "bylaw_ids": list(out.bylaw_ids),
        }
    )


if __name__ == "__main__":
    main()
