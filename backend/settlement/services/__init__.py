from settlement.services.signature import SignatureVerifier, SignatureCheck
from settlement.services.gateway_client import PaystackClient, GatewayResult, GatewayError, GatewayTimeoutError
from settlement.services.order_matcher import OrderMatcher, OrderFound, OrderNotFound, MatchStrategy
from settlement.services.reconciliation import ReconciliationEngine, Outcome, SettlementResult
from settlement.services.wallet_credit import WalletCreditProcessor, CreditStatus
from settlement.services.rewards import RewardDispatcher, calculate_points
from settlement.services.webhook_processor import (
    WebhookProcessor, WebhookAck, WebhookRejected, WebhookConfigurationError,
)
from settlement.services.audit_service import AuditService

__all__ = [
    "SignatureVerifier", "SignatureCheck",
    "PaystackClient", "GatewayResult", "GatewayError", "GatewayTimeoutError",
    "OrderMatcher", "OrderFound", "OrderNotFound", "MatchStrategy",
    "ReconciliationEngine", "Outcome", "SettlementResult",
    "WalletCreditProcessor", "CreditStatus",
    "RewardDispatcher", "calculate_points",
    "WebhookProcessor", "WebhookAck", "WebhookRejected", "WebhookConfigurationError",
    "AuditService",
]
