"""
Audit Log Model — Immutable, tamper-evident settlement trail.
Every applied transition is SHA-256 hashed and chained per reference.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, JSON, UniqueConstraint

from settlement.database import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"
    # One successor per link: two writers that read the same tail cannot both append
    __table_args__ = (
        UniqueConstraint("reference", "previous_hash", name="uq_audit_logs_chain_link"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    reference = Column(String(128), nullable=False, index=True)

    action = Column(String(50), nullable=False)
    # Actions: ORDER_SETTLED, ORDER_PAYMENT_FAILED, WALLET_CREDITED,
    #          WALLET_CREDIT_PARTIAL, WALLET_FUNDING_FAILED, AMOUNT_MISMATCH

    payload_hash = Column(String(64))       # Chain hash of the action payload
    previous_hash = Column(String(64))      # Previous entry's hash for tamper detection

    source = Column(String(16))             # webhook | verify

    log_metadata = Column(JSON, default=dict)
    timestamp = Column(DateTime, default=datetime.utcnow)
