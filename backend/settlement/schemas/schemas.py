"""
Pydantic Schemas — Request & Response models for API validation.
"""
from datetime import datetime
from typing import Optional, Dict
from pydantic import BaseModel, Field


# ──────────────── Payment verification ────────────────

class VerifyPaymentRequest(BaseModel):
    reference: Optional[str] = Field(None, description="Gateway transaction reference")


class TransactionData(BaseModel):
    reference: str
    amount: float                      # Naira
    status: str                        # Gateway status (success | failed | abandoned | ...)
    paid_at: Optional[str] = None


class VerifyPaymentResponse(BaseModel):
    success: bool
    payment_status: str = Field(..., alias="paymentStatus")
    order_status: Optional[str] = Field(None, alias="orderStatus")
    order_id: str = Field(..., alias="orderId")
    already_processed: bool = Field(False, alias="alreadyProcessed")
    message: str = ""
    transaction_data: TransactionData = Field(..., alias="transactionData")

    class Config:
        populate_by_name = True


# ──────────────── Webhook ────────────────

class WebhookAckResponse(BaseModel):
    status: str = "success"
    result: str = "processed"          # processed | noop | ignored | unmatched


# ──────────────── Admin / Audit ────────────────

class AuditLogEntry(BaseModel):
    id: int
    reference: str
    action: str
    source: Optional[str] = None
    payload_hash: Optional[str] = None
    timestamp: datetime
    log_metadata: Optional[Dict] = None

    class Config:
        from_attributes = True


class ReconciliationSummaryResponse(BaseModel):
    payments_by_status: Dict[str, int]
    settled_volume: float
    pending_orders: int
    failed_orders: int
    pending_wallet_fundings: int
    rewards_issued: int
