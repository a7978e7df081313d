"""
Delete the identity with the given email and everything hanging off it (codes, business
account, account-type tag). Use to clear an orphaned signup explicitly.
Provisioning events are kept.
Usage: python scripts/delete_identity_by_email.py <email> [--confirmed-too]
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from client_portal.database import SessionLocal
from client_portal.models import AccountType, BusinessAccount, Identity, VerificationCode


def main():
    args = [a for a in sys.argv[1:] if not a.startswith("--")]
    email = (args[0] if args else "").strip().lower()
    if not email:
        print("Usage: python scripts/delete_identity_by_email.py <email> [--confirmed-too]")
        sys.exit(1)
    allow_confirmed = "--confirmed-too" in sys.argv

    db = SessionLocal()
    try:
        deleted_codes = db.query(VerificationCode).filter(VerificationCode.email == email).delete()
        identity = db.query(Identity).filter(Identity.email == email).first()
        if not identity:
            db.commit()
            print(f"No identity found with email: {email} (deleted {deleted_codes} code(s))")
            sys.exit(0)
        if identity.email_confirmed and not allow_confirmed:
            db.rollback()
            print(f"Identity {identity.id} is confirmed; pass --confirmed-too to delete it anyway.")
            sys.exit(1)

        iid = identity.id
        was_confirmed = bool(identity.email_confirmed)
        db.query(BusinessAccount).filter(BusinessAccount.identity_id == iid).delete()
        db.query(AccountType).filter(AccountType.identity_id == iid).delete()
        db.delete(identity)
        db.commit()
        print(f"Deleted identity: {email} (id={iid}, confirmed={was_confirmed}, codes={deleted_codes})")
    except Exception as e:
        db.rollback()
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
