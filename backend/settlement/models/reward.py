"""
Reward Models — Loyalty points, referral rewards and their settings.
"""
from datetime import datetime
from sqlalchemy import (
    Column, String, Integer, Float, Boolean, DateTime, ForeignKey, UniqueConstraint,
)

from settlement.database import Base


class RewardType:
    PURCHASE = "PURCHASE"
    REFERRAL_PURCHASE = "REFERRAL_PURCHASE"


class Reward(Base):
    __tablename__ = "rewards"
    __table_args__ = (
        # At most one reward of each type per order
        UniqueConstraint("order_id", "type", name="uq_rewards_order_type"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=True, index=True)

    points = Column(Integer, nullable=False)
    type = Column(String(24), nullable=False)
    description = Column(String(256))

    created_at = Column(DateTime, default=datetime.utcnow)


class PointsSettings(Base):
    """Every `amount_threshold` naira spent earns `points_per_threshold` points."""
    __tablename__ = "points_settings"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    amount_threshold = Column(Float, nullable=False, default=50000.0)
    points_per_threshold = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)


class ReferralSettings(Base):
    __tablename__ = "referral_settings"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    referrer_points_per_purchase = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)


class Referral(Base):
    __tablename__ = "referrals"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    referrer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    referred_email = Column(String(256), nullable=False, index=True)

    reward_amount = Column(Float, default=0.0)
    first_purchase_bonus_paid_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
