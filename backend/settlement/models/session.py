"""
Auth Session Model — Bearer tokens issued by the login flow.
Read-only from this service's point of view.
"""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey

from settlement.database import Base


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    token = Column(String(128), primary_key=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=False)
