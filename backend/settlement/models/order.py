"""
Order Model — Orders created by checkout, settled by the reconciliation engine.
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, String, Integer, Float, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from settlement.database import Base


class OrderStatus:
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    DELIVERED = "DELIVERED"


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    final_amount = Column(Float, nullable=False)       # Naira
    payment_method = Column(String(24), default="paystack")
    payment_status = Column(String(16), nullable=False, default="PENDING")  # PENDING | COMPLETED | FAILED
    status = Column(String(16), nullable=False, default=OrderStatus.PENDING)

    # Gateway reference, attached at checkout (may be missing if the redirect raced the write)
    transaction_id = Column(String(128), nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship("OrderItem", back_populates="order", lazy="selectin")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)

    product_id = Column(String(36), nullable=False)
    product_name = Column(String(256))
    unit = Column(String(32), default="item")
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Float, nullable=False)

    order = relationship("Order", back_populates="items")
