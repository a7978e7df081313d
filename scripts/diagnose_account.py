"""Print the account-health report for an email or identity id, optionally repairing it.
Usage: python scripts/diagnose_account.py <email|identity_id> [--repair]
"""
import json
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from client_portal.database import SessionLocal
from client_portal.services.auth import get_identity_by_email
from client_portal.services.diagnostics import diagnose, repair


def main():
    args = [a for a in sys.argv[1:] if not a.startswith("--")]
    if not args:
        print("Usage: python scripts/diagnose_account.py <email|identity_id> [--repair]")
        return 1
    target = args[0].strip()

    db = SessionLocal()
    try:
        if target.isdigit():
            identity_id = int(target)
        else:
            identity = get_identity_by_email(db, target)
            if not identity:
                print(f"NO - No identity found with email: {target}")
                return 1
            identity_id = identity.id

        report = diagnose(db, identity_id)
        print(json.dumps(report.to_dict(), indent=2))
        if "--repair" in sys.argv and report.identity_exists:
            result = repair(db, identity_id, actor_email="operator")
            print(f"Repair: success={result.success} created={result.created}")
            print(json.dumps(diagnose(db, identity_id).to_dict(), indent=2))
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
