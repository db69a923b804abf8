from settlement.schemas.schemas import (
    VerifyPaymentRequest, VerifyPaymentResponse, TransactionData, WebhookAckResponse,
    AuditLogEntry, ReconciliationSummaryResponse,
)

__all__ = [
    "VerifyPaymentRequest", "VerifyPaymentResponse", "TransactionData", "WebhookAckResponse",
    "AuditLogEntry", "ReconciliationSummaryResponse",
]
