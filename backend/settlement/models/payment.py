"""
Payment Record Model — One audit row per gateway reference.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, Float, DateTime, JSON, ForeignKey

from settlement.database import Base


class PaymentStatus:
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    TERMINAL = (COMPLETED, FAILED)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)

    # Exactly one of these is set: order settlement or wallet funding
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=True, index=True)
    wallet_transaction_id = Column(Integer, ForeignKey("wallet_transactions.id"), nullable=True)
    user_id = Column(String(36), nullable=False, index=True)

    amount = Column(Float, nullable=False)            # Naira, as reported by the gateway
    currency = Column(String(3), default="NGN")
    method = Column(String(16), default="PAYSTACK")

    status = Column(String(16), nullable=False, default=PaymentStatus.PENDING)
    transaction_id = Column(String(128), nullable=False, unique=True, index=True)
    gateway_response = Column(JSON, default=dict)     # Raw gateway payload, opaque

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
