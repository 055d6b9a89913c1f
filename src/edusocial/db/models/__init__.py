"""
Database models for the EduSocial backend
"""
from .order import CreditPlan, CreditOrder, OrderStatus
from .credits import BusinessCredit, CreditTransaction, CreditTransactionType
from .invoice import Invoice, InvoiceStatus, BusinessProfile
from .billing import BillingEvent
from .post import Post, PostVisibility, EngagementApplied, EngagementType
from .moderation import ModerationJob, ModerationStatus, TERMINAL_MODERATION_STATUSES

__all__ = [
    "CreditPlan",
    "CreditOrder",
    "OrderStatus",
    "BusinessCredit",
    "CreditTransaction",
    "CreditTransactionType",
    "Invoice",
    "InvoiceStatus",
    "BusinessProfile",
    "BillingEvent",
    "Post",
    "PostVisibility",
    "EngagementApplied",
    "EngagementType",
    "ModerationJob",
    "ModerationStatus",
    "TERMINAL_MODERATION_STATUSES",
]
