"""
Database module for the EduSocial backend
"""
from .engine import engine, SessionLocal, get_db, init_db
from .base import Base
from .models import (
    CreditPlan,
    CreditOrder,
    OrderStatus,
    BusinessCredit,
    CreditTransaction,
    Invoice,
    BusinessProfile,
    BillingEvent,
    Post,
    ModerationJob,
)

__all__ = [
    "engine",
    "SessionLocal",
    "get_db",
    "init_db",
    "Base",
    "CreditPlan",
    "CreditOrder",
    "OrderStatus",
    "BusinessCredit",
    "CreditTransaction",
    "Invoice",
    "BusinessProfile",
    "BillingEvent",
    "Post",
    "ModerationJob",
]
