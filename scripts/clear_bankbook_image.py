#!/usr/bin/env python3
"""Blank the embedded base64 bank-book copy once a URL exists (idempotent).

Users with a base64 copy but no URL are skipped: clearing would lose the
only copy of the image.
"""

import argparse
import sys

sys.path.insert(0, ".")

from sqlalchemy import select

from reimburse import create_app
from reimburse.models import db
from reimburse.models.user import AppUser


def clear_bankbook_images(*, apply: bool = False) -> dict:
    summary = {
        "mode": "apply" if apply else "dry-run",
        "cleared": 0,
        "skipped_empty": 0,
        "skipped_no_url": 0,
    }

    users = db.session.scalars(select(AppUser).order_by(AppUser.uid)).all()
    print(f"[INFO] mode={summary['mode']} users={len(users)}")

    for user in users:
        image = user.bank_book_image or ""
        if not image.startswith("data:"):
            summary["skipped_empty"] += 1
            continue

        url = user.bank_book_url or user.bank_book_drive_url
        size_kb = round(len(image) / 1024)
        if not url:
            summary["skipped_no_url"] += 1
            print(f"[SKIP] {user.label} has base64 ({size_kb}KB) but no URL")
            continue

        print(f"[{'CLEAR' if apply else 'PLAN'}] {user.label} {size_kb}KB base64 -> {url}")
        if apply:
            user.bank_book_image = ""
        summary["cleared"] += 1

    if apply and summary["cleared"]:
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    print(
        "[SUMMARY] "
        f"mode={summary['mode']} "
        f"cleared={summary['cleared']} "
        f"skipped_empty={summary['skipped_empty']} "
        f"skipped_no_url={summary['skipped_no_url']}"
    )
    return summary


def main() -> int:
    parser = argparse.ArgumentParser(description="Clear redundant bank-book base64 images (idempotent).")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--dry-run", action="store_true", help="Preview only; do not write data")
    mode.add_argument("--apply", action="store_true", help="Persist changes")
    args = parser.parse_args()

    if not args.dry_run and not args.apply:
        print("[INFO] No mode specified; defaulting to --dry-run")

    app = create_app()
    with app.app_context():
        clear_bankbook_images(apply=bool(args.apply))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
