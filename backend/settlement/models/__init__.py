from settlement.models.user import User
from settlement.models.order import Order, OrderItem, OrderStatus
from settlement.models.payment import Payment, PaymentStatus
from settlement.models.wallet import WalletTransaction, WalletTransactionType
from settlement.models.reward import Reward, RewardType, PointsSettings, ReferralSettings, Referral
from settlement.models.notification import Notification
from settlement.models.session import AuthSession
from settlement.models.audit import AuditLog

__all__ = [
    "User", "Order", "OrderItem", "OrderStatus", "Payment", "PaymentStatus",
    "WalletTransaction", "WalletTransactionType", "Reward", "RewardType",
    "PointsSettings", "ReferralSettings", "Referral", "Notification",
    "AuthSession", "AuditLog",
]
