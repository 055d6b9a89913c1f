#!/usr/bin/env python
"""
Database seeding script
Creates the tables and the default credit plan catalogue for development/testing
"""
import sys
from decimal import Decimal
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from edusocial.db.engine import SessionLocal, init_db
from edusocial.db.models import CreditPlan

DEFAULT_PLANS = [
    {"name": "Starter", "description": "100 posting credits", "credit_amount": 100, "original_price": Decimal("49.00")},
    {"name": "Growth", "description": "500 posting credits", "credit_amount": 500, "original_price": Decimal("199.00")},
    {
        "name": "Campus",
        "description": "2000 posting credits",
        "credit_amount": 2000,
        "original_price": Decimal("699.00"),
        "discount_price": Decimal("599.00"),
        "is_discounted": True,
    },
]


def seed_database():
    """Seed database with initial data"""
    init_db()
    db = SessionLocal()

    try:
        existing_plans = db.query(CreditPlan).count()
        if existing_plans > 0:
            print(f"⚠️  Database already contains {existing_plans} credit plans. Skipping seed.")
            return

        print("Seeding database with credit plans...")

        for plan in DEFAULT_PLANS:
            db.add(CreditPlan(currency="myr", **plan))
        db.commit()

        print("✓ Database seeded successfully!")
        for plan in db.query(CreditPlan).order_by(CreditPlan.credit_amount).all():
            print(f"  Created plan: {plan.name} ({plan.credit_amount} credits, {plan.effective_price} {plan.currency}) id={plan.id}")

    except Exception as e:
        print(f"❌ Error seeding database: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        db.rollback()
        raise
    finally:
        db.close()

if __name__ == "__main__":
    seed_database()
