"""
Create any missing onboarding tables (identities, verification_codes, business_accounts,
account_types, provisioning_events).
For a NEW database: not needed; startup runs create_all().
Run on an EXISTING DB: python scripts/create_tables.py (from project root)
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from sqlalchemy import inspect
from client_portal.database import engine, Base
from client_portal import models  # noqa: F401


def main():
    insp = inspect(engine)
    existing = set(insp.get_table_names())
    for table in Base.metadata.sorted_tables:
        if table.name in existing:
            print(f"  skip (exists): {table.name}")
        else:
            table.create(engine)
            print(f"  created: {table.name}")
    print("Done.")


if __name__ == "__main__":
    main()
