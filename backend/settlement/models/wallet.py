"""
Wallet Transaction Model — Wallet funding attempts and credits.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, Float, DateTime

from settlement.database import Base


class WalletTransactionType:
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class WalletTransaction(Base):
    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    # No FK: funding rows can outlive their user and must still be reconcilable
    user_id = Column(String(36), nullable=False, index=True)

    type = Column(String(8), nullable=False, default=WalletTransactionType.CREDIT)
    amount = Column(Float, nullable=False)            # Naira
    method = Column(String(32))
    description = Column(String(256))

    status = Column(String(16), nullable=False, default="PENDING")  # PENDING | COMPLETED | FAILED
    reference = Column(String(128), nullable=False, unique=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
