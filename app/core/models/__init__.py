from app.auth.models import Role, User
from app.core.models.tenant import Tenant
from app.core.models.class_model import SchoolClass
from app.core.models.student import Student
from app.core.models.product import Product
from app.core.models.fee_structure import FeeStructure
from app.core.models.fee_collection import FeeCollection, FeeCollectionPayment, FeeReminder
from app.core.models.promo_code import PromoCode, PromoCodeUsage
from app.core.models.fee_audit_log import FeeAuditLog

__all__ = [
    "Role",
    "User",
    "Tenant",
    "SchoolClass",
    "Student",
    "Product",
    "FeeStructure",
    "FeeCollection",
    "FeeCollectionPayment",
    "FeeReminder",
    "PromoCode",
    "PromoCodeUsage",
    "FeeAuditLog",
]
