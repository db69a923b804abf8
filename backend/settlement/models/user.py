"""
User Model — Wallet-bearing projection of a marketplace customer.
Balance and points only ever move through relative increments.
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, Integer, Float, DateTime, ForeignKey

from settlement.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(128))
    email = Column(String(256), unique=True, index=True)
    role = Column(String(16), default="CUSTOMER")   # CUSTOMER | ADMIN

    wallet_balance = Column(Float, nullable=False, default=0.0)   # Naira
    points = Column(Integer, nullable=False, default=0)

    # Lookup-only back-reference to whoever referred this user
    referred_by_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
