#!/usr/bin/env python3
"""
Rebuild the partner_hierarchy index from users.parent_partner_id.

Use after bulk imports or manual fixes to the referral tree. Reports any
cycle in the pointer chain instead of writing a partial index.

Run: python scripts/rebuild_partner_hierarchy.py [--database-url URL]
"""

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from commission_engine.config import Settings  # noqa: E402
from commission_engine.db import Database  # noqa: E402
from commission_engine.errors import HierarchyCycle  # noqa: E402
from commission_engine.hierarchy import HierarchyService  # noqa: E402


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--database-url", help="Overrides DATABASE_URL")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level)

    db = Database(args.database_url or settings.database_url)
    db.create_all()
    try:
        rows = HierarchyService(db).rebuild()
    except HierarchyCycle as e:
        print(f"❌ Referral tree has a cycle: {e.message}")
        return 1
    finally:
        db.dispose()

    print(f"✅ Partner hierarchy rebuilt: {rows} ancestor rows")
    return 0


if __name__ == "__main__":
    sys.exit(main())
