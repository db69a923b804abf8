"""
Notification Model — Fire-and-forget user-visible events.
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, Boolean, DateTime

from settlement.database import Base


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    user_id = Column(String(36), nullable=False, index=True)

    title = Column(String(256), nullable=False)
    message = Column(String(1024), nullable=False)
    type = Column(String(16), nullable=False)      # PAYMENT | ORDER | WALLET | REFERRAL
    order_id = Column(String(36), nullable=True)
    is_read = Column(Boolean, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
