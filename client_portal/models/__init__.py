"""
All SQLAlchemy models. Schema is the source of truth for new DBs.
Base.metadata.create_all() creates every table; no migration scripts needed for fresh installs.
"""
from client_portal.models.identity import Identity
from client_portal.models.verification_code import VerificationCode
from client_portal.models.business_account import BusinessAccount, AccountType, AccountTypeName
from client_portal.models.provisioning_event import ProvisioningEvent

__all__ = [
    "Identity",
    "VerificationCode",
    "BusinessAccount",
    "AccountType",
    "AccountTypeName",
    "ProvisioningEvent",
]
