"""
storify/features/plans/service.py

Subscription plan catalog.

Handles:
- Plan seeding (Mingguan, Bulanan, Tahunan)
- Plan lookup for payment creation and activation
"""

from typing import List, Optional

from sqlalchemy import select, insert

from storify.core.database import get_db_session, subscription_plans
from storify.models.plan import SubscriptionPlan


# Default plan configurations (prices in IDR)
DEFAULT_PLANS = [
    {
        "name": "Mingguan",
        "price": 15000,
        "duration_days": 7,
        "description": "Akses unlimited selama 1 minggu",
    },
    {
        "name": "Bulanan",
        "price": 49000,
        "duration_days": 30,
        "description": "Akses unlimited selama 1 bulan - BEST VALUE",
    },
    {
        "name": "Tahunan",
        "price": 399000,
        "duration_days": 365,
        "description": "Akses unlimited selama 1 tahun - Hemat 32%",
    },
]


def _row_to_plan(row) -> SubscriptionPlan:
    return SubscriptionPlan(
        id=row.plan_id,
        name=row.name,
        price=row.price,
        duration_days=row.duration_days,
        description=row.description or "",
        is_active=bool(row.is_active),
    )


def seed_plans() -> int:
    """
    Seed default plans into database (idempotent).

    Plans are matched by name. Returns the number of plans inserted.
    """
    inserted = 0
    with get_db_session() as session:
        for config in DEFAULT_PLANS:
            existing = session.execute(
                select(subscription_plans.c.plan_id).where(subscription_plans.c.name == config["name"])
            ).first()
            if existing:
                continue
            session.execute(insert(subscription_plans).values(is_active=True, **config))
            inserted += 1
    return inserted


def list_plans(active_only: bool = True) -> List[SubscriptionPlan]:
    stmt = select(subscription_plans).order_by(subscription_plans.c.price)
    if active_only:
        stmt = stmt.where(subscription_plans.c.is_active.is_(True))
    with get_db_session() as session:
        rows = session.execute(stmt).fetchall()
    return [_row_to_plan(row) for row in rows]


def get_plan(plan_id: int) -> Optional[SubscriptionPlan]:
    with get_db_session() as session:
        row = session.execute(
            select(subscription_plans).where(subscription_plans.c.plan_id == plan_id)
        ).first()
    return _row_to_plan(row) if row else None


def get_plan_by_name(name: str) -> Optional[SubscriptionPlan]:
    with get_db_session() as session:
        row = session.execute(
            select(subscription_plans).where(subscription_plans.c.name == name)
        ).first()
    return _row_to_plan(row) if row else None
