"""
Persistence layer: ORM entities, engine/session management, repositories.
"""

from .base import Base
from .database import Database
from .entities import AdminAuditLog, CommissionPayment, Deal, PartnerHierarchy, PaymentSplit, User

__all__ = [
    "Base",
    "Database",
    "User",
    "Deal",
    "PartnerHierarchy",
    "CommissionPayment",
    "PaymentSplit",
    "AdminAuditLog",
]
