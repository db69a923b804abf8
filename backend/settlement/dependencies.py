"""
FastAPI dependency providers — builds the settlement components per request.

Every component receives the request-scoped Store explicitly; tests override
`get_db`, `get_settings`, `get_gateway_client` or `get_email_sender`.
"""
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from settlement.config import Settings, get_settings
from settlement.database import get_db
from settlement.services.audit_service import AuditService
from settlement.services.auth import CurrentUser, NotAuthenticated, SessionTokenResolver
from settlement.services.gateway_client import PaystackClient
from settlement.services.notification_service import DatabaseNotifier, EmailSender, LoggingEmailSender
from settlement.services.order_matcher import OrderMatcher
from settlement.services.reconciliation import ReconciliationEngine
from settlement.services.rewards import RewardDispatcher
from settlement.services.signature import SignatureVerifier
from settlement.services.wallet_credit import WalletCreditProcessor
from settlement.services.webhook_processor import WebhookProcessor
from settlement.store import SqlStore, Store

_email_sender = LoggingEmailSender()


def get_store(db: Session = Depends(get_db)) -> Store:
    return SqlStore(db)


def get_email_sender() -> EmailSender:
    return _email_sender


def get_gateway_client(settings: Settings = Depends(get_settings)) -> PaystackClient:
    return PaystackClient(
        secret_key=settings.PAYSTACK_SECRET_KEY,
        base_url=settings.PAYSTACK_BASE_URL,
        timeout=settings.GATEWAY_TIMEOUT_SECONDS,
    )


def get_matcher(
    store: Store = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> OrderMatcher:
    return OrderMatcher(store, payment_method=settings.GATEWAY_PAYMENT_METHOD)


def get_engine(
    db: Session = Depends(get_db),
    store: Store = Depends(get_store),
    emailer: EmailSender = Depends(get_email_sender),
    settings: Settings = Depends(get_settings),
) -> ReconciliationEngine:
    notifier = DatabaseNotifier(store)
    return ReconciliationEngine(
        store=store,
        wallet_credit=WalletCreditProcessor(store, notifier),
        rewards=RewardDispatcher(store, notifier, first_purchase_bonus=settings.REFERRAL_FIRST_PURCHASE_BONUS),
        notifier=notifier,
        emailer=emailer,
        tolerance_minor_units=settings.AMOUNT_TOLERANCE_MINOR_UNITS,
        currency=settings.SETTLEMENT_CURRENCY,
        admin_email=settings.ADMIN_EMAIL,
        audit=lambda reference, action, payload, source: AuditService.log(
            db, reference, action, payload=payload, source=source,
        ),
    )


def get_webhook_processor(
    store: Store = Depends(get_store),
    engine: ReconciliationEngine = Depends(get_engine),
    matcher: OrderMatcher = Depends(get_matcher),
    settings: Settings = Depends(get_settings),
) -> WebhookProcessor:
    return WebhookProcessor(
        verifier=SignatureVerifier(settings.PAYSTACK_SECRET_KEY),
        engine=engine,
        matcher=matcher,
        store=store,
    )


def get_current_user(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> CurrentUser:
    try:
        return SessionTokenResolver(db).resolve(authorization)
    except NotAuthenticated:
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
