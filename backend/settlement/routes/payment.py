"""
Payment Routes — Gateway webhook and client-initiated verification.
Both converge on the same ReconciliationEngine, so either may settle first.
"""
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from settlement.config import get_settings
from settlement.dependencies import (
    get_current_user, get_engine, get_gateway_client, get_matcher, get_webhook_processor,
)
from settlement.schemas.schemas import (
    TransactionData, VerifyPaymentRequest, VerifyPaymentResponse, WebhookAckResponse,
)
from settlement.services.auth import CurrentUser
from settlement.services.gateway_client import GatewayError, PaystackClient
from settlement.services.order_matcher import OrderMatcher, OrderNotFound
from settlement.services.reconciliation import Outcome, ReconciliationEngine
from settlement.services.webhook_processor import (
    WebhookConfigurationError, WebhookProcessor, WebhookRejected,
)
from settlement.utils.money import from_minor_units
from settlement.utils.rate_limiter import rate_limit

settings = get_settings()
logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/payments", tags=["Payments"])


@router.post("/webhook", response_model=WebhookAckResponse)
async def payment_webhook(
    request: Request,
    signature: Optional[str] = Header(None, alias="x-paystack-signature"),
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    """Receive a gateway event. Acknowledged with 200 unless it cannot be trusted or read."""
    # Raw bytes: the signature covers the body exactly as sent
    raw_body = await request.body()

    try:
        ack = await run_in_threadpool(processor.handle, raw_body, signature)
    except WebhookRejected as e:
        raise HTTPException(status_code=400, detail=str(e))
    except WebhookConfigurationError:
        raise HTTPException(status_code=500, detail="Webhook configuration error")
    except SQLAlchemyError:
        logger.critical("webhook_store_failure", exc_info=True)
        raise HTTPException(status_code=500, detail="Webhook processing failed")

    return WebhookAckResponse(result=ack.result)


@router.post("/verify", response_model=VerifyPaymentResponse)
def verify_payment(
    payload: Optional[VerifyPaymentRequest] = None,
    user: CurrentUser = Depends(get_current_user),
    gateway: PaystackClient = Depends(get_gateway_client),
    matcher: OrderMatcher = Depends(get_matcher),
    engine: ReconciliationEngine = Depends(get_engine),
    _throttle: bool = Depends(rate_limit(
        requests=settings.VERIFY_RATE_LIMIT_REQUESTS,
        window=settings.VERIFY_RATE_LIMIT_WINDOW,
        scope="verify",
    )),
):
    """Verify a payment with the gateway after the customer returns from checkout."""
    reference = (payload.reference or "").strip() if payload else ""
    if not reference:
        raise HTTPException(status_code=400, detail="Payment reference is required")

    log = logger.bind(reference=reference, user_id=user.user_id)

    try:
        transaction = gateway.verify_transaction(reference)
    except GatewayError:
        log.error("payment_verification_gateway_error")
        raise HTTPException(status_code=500, detail="Failed to verify payment")

    log.info(
        "payment_verification_gateway_response",
        gateway_status=transaction.status,
        amount_minor=transaction.amount_minor_units,
    )

    try:
        match = matcher.match(reference, transaction.metadata, user.user_id)
        if isinstance(match, OrderNotFound):
            raise HTTPException(
                status_code=404,
                detail=f"Order not found. Please contact support with reference: {reference}",
            )

        settlement = engine.settle_order(
            match.order,
            Outcome.from_gateway_status(transaction.status),
            reference,
            transaction.amount_minor_units,
            transaction.raw,
            source="verify",
        )
    except SQLAlchemyError:
        log.critical("payment_verification_store_failure", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to verify payment")

    if settlement.applied:
        message = "Payment verified"
    elif settlement.detail == "awaiting_gateway":
        message = "Payment is still being processed"
    else:
        message = "Payment already verified"

    return VerifyPaymentResponse(
        success=True,
        payment_status=settlement.payment_status,
        order_status=settlement.order_status,
        order_id=settlement.order_id,
        already_processed=settlement.already_processed,
        message=message,
        transaction_data=TransactionData(
            reference=transaction.reference,
            amount=from_minor_units(transaction.amount_minor_units),
            status=transaction.status,
            paid_at=transaction.paid_at,
        ),
    )
