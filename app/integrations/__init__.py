# External collaborators
from app.integrations.crm import CRMClient, MockCRMClient, PushResult, CustomerFlags
from app.integrations.identity import IdentityRegistry, MockIdentityRegistry, PersonalData
from app.integrations.delivery import OtpDelivery, LoggingOtpDelivery

__all__ = [
    "CRMClient", "MockCRMClient", "PushResult", "CustomerFlags",
    "IdentityRegistry", "MockIdentityRegistry", "PersonalData",
    "OtpDelivery", "LoggingOtpDelivery",
]
