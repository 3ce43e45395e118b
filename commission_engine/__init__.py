"""
PARTNER COMMISSION ENGINE
Referral commission splitting and payment workflow
"""

from .deals import DealService
from .hierarchy import HierarchyService
from .models import CommissionDistribution, PaymentRecord
from .stages import map_deal_stage_to_customer_journey
from .workflow import PaymentWorkflow

__all__ = [
    "PaymentWorkflow",
    "DealService",
    "HierarchyService",
    "CommissionDistribution",
    "PaymentRecord",
    "map_deal_stage_to_customer_journey",
]
