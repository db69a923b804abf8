"""
Reconciliation Engine — the single place where settlements change state.

Both entry points (gateway webhook and client verify) funnel into the same
methods, so whichever arrives first performs the transition and the other
observes a no-op. Rules per settlement target:

    PENDING --success--> COMPLETED      (terminal, never downgraded)
    PENDING --failure--> FAILED
    FAILED  --success--> COMPLETED      (orders only: a retried payment on the
                                         same reference may still complete)

The terminal check is advisory; the decision is made by a conditional update
(Store.transition) so two concurrent callers that both read PENDING cannot
both write.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

import structlog

from settlement.models import Order, OrderStatus, Payment, PaymentStatus, WalletTransaction
from settlement.services.notification_service import (
    EmailSender, NotificationSender,
    admin_order_email, admin_payment_email, admin_wallet_deposit_email,
    order_confirmation_email, order_status_update_email,
)
from settlement.services.rewards import RewardDispatcher
from settlement.services.wallet_credit import CreditStatus, WalletCreditProcessor
from settlement.store import Store
from settlement.utils.effects import run_nonfatal
from settlement.utils.money import format_naira, from_minor_units, to_minor_units

logger = structlog.get_logger(__name__)

AuditHook = Callable[[str, str, Dict[str, Any], str], Any]


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"

    @classmethod
    def from_gateway_status(cls, status: Optional[str]) -> "Outcome":
        """Map a gateway transaction status onto a settlement outcome."""
        status = (status or "").lower()
        if status == "success":
            return cls.SUCCESS
        if status in ("failed", "reversed", "abandoned"):
            return cls.FAILURE
        return cls.PENDING


@dataclass
class SettlementResult:
    applied: bool
    payment_status: str
    order_status: Optional[str] = None
    order_id: Optional[str] = None
    wallet_transaction_id: Optional[int] = None
    detail: str = ""
    credit_status: Optional[CreditStatus] = None

    @property
    def already_processed(self) -> bool:
        return not self.applied


class ReconciliationEngine:
    """Idempotent order and wallet settlement."""

    def __init__(
        self,
        store: Store,
        wallet_credit: WalletCreditProcessor,
        rewards: RewardDispatcher,
        notifier: NotificationSender,
        emailer: EmailSender,
        tolerance_minor_units: int = 1,
        currency: str = "NGN",
        admin_email: str = "",
        audit: Optional[AuditHook] = None,
    ):
        self.store = store
        self.wallet_credit = wallet_credit
        self.rewards = rewards
        self.notifier = notifier
        self.emailer = emailer
        self.tolerance_minor_units = tolerance_minor_units
        self.currency = currency
        self.admin_email = admin_email
        self.audit = audit

    # ─── Shared helpers ─────────────────────────────────────────────

    def check_amount(self, reference: str, expected_minor: int, reported_minor: int, source: str) -> bool:
        """Compare amounts in minor units. A mismatch is logged, never rejected."""
        difference = abs(expected_minor - reported_minor)
        if difference <= self.tolerance_minor_units:
            return True

        logger.warning(
            "amount_mismatch",
            reference=reference,
            expected_minor=expected_minor,
            reported_minor=reported_minor,
            difference=difference,
            source=source,
        )
        self._audit(reference, "AMOUNT_MISMATCH", {
            "expected_minor": expected_minor,
            "reported_minor": reported_minor,
        }, source)
        return False

    def _audit(self, reference: str, action: str, payload: Dict[str, Any], source: str) -> None:
        if self.audit is not None:
            run_nonfatal("audit_log", self.audit, reference, action, payload, source)

    def _record_payment(
        self,
        reference: str,
        status: str,
        user_id: str,
        amount: float,
        gateway_data: Optional[Dict[str, Any]],
        order_id: Optional[str] = None,
        wallet_transaction_id: Optional[int] = None,
    ) -> Payment:
        return self.store.upsert_by_reference(
            Payment,
            "transaction_id",
            reference,
            if_absent={
                "order_id": order_id,
                "wallet_transaction_id": wallet_transaction_id,
                "user_id": user_id,
                "amount": amount,
                "currency": self.currency,
                "method": "PAYSTACK",
                "status": status,
                "gateway_response": gateway_data or {},
            },
            if_present={
                "status": status,
                "amount": amount,
                "gateway_response": gateway_data or {},
            },
        )

    def _send_email(self, to: str, message: tuple[str, str]) -> None:
        subject, body = message
        self.emailer.send_email(to, subject, body)

    # ─── Orders ─────────────────────────────────────────────────────

    def _order_noop(self, order: Order, detail: str) -> SettlementResult:
        self.store.refresh(order)
        logger.info(
            "settlement_noop",
            order_id=order.id,
            reference=order.transaction_id,
            payment_status=order.payment_status,
            detail=detail,
        )
        return SettlementResult(
            applied=False,
            payment_status=order.payment_status,
            order_status=order.status,
            order_id=order.id,
            detail=detail,
        )

    def settle_order(
        self,
        order: Order,
        outcome: Outcome,
        reference: str,
        reported_minor: int,
        gateway_data: Optional[Dict[str, Any]] = None,
        source: str = "webhook",
    ) -> SettlementResult:
        """Apply a gateway outcome to an order, at most once per transition.

        Args:
            order: Matched order.
            outcome: Gateway-reported outcome.
            reference: Gateway reference (idempotency key).
            reported_minor: Amount the gateway reports, in minor units.
            gateway_data: Raw gateway payload, stored on the Payment row.
            source: "webhook" or "verify", for logs and audit.

        Returns:
            SettlementResult; `applied` is False for every idempotent no-op.
        """
        order_id, user_id = order.id, order.user_id
        current = order.payment_status
        log = logger.bind(order_id=order_id, reference=reference, source=source)

        if outcome is Outcome.PENDING:
            return self._order_noop(order, "awaiting_gateway")

        if outcome is Outcome.SUCCESS:
            if current == PaymentStatus.COMPLETED:
                return self._order_noop(order, "already_completed")

            self.check_amount(reference, to_minor_units(order.final_amount), reported_minor, source)
            amount = from_minor_units(reported_minor) or order.final_amount

            with self.store.atomic():
                claimed = self.store.transition(
                    Order, order_id, [PaymentStatus.PENDING, PaymentStatus.FAILED],
                    field="payment_status",
                    payment_status=PaymentStatus.COMPLETED,
                    status=OrderStatus.CONFIRMED,
                )
                if claimed:
                    self._record_payment(
                        reference, PaymentStatus.COMPLETED, user_id, amount, gateway_data, order_id=order_id,
                    )
            if not claimed:
                return self._order_noop(order, "already_completed")

            log.info("order_settled", previous_status=current, amount=amount)
            self._audit(reference, "ORDER_SETTLED", {
                "order_id": order_id, "amount": amount, "previous_status": current,
            }, source)
            self._on_order_completed(order_id, user_id, amount, reference)
            return SettlementResult(
                applied=True,
                payment_status=PaymentStatus.COMPLETED,
                order_status=OrderStatus.CONFIRMED,
                order_id=order_id,
                detail="completed",
            )

        if current in PaymentStatus.TERMINAL:
            return self._order_noop(order, f"already_{current.lower()}")

        amount = from_minor_units(reported_minor) or order.final_amount
        with self.store.atomic():
            claimed = self.store.transition(
                Order, order_id, [PaymentStatus.PENDING],
                field="payment_status",
                payment_status=PaymentStatus.FAILED,
                status=OrderStatus.CANCELLED,
            )
            if claimed:
                self._record_payment(
                    reference, PaymentStatus.FAILED, user_id, amount, gateway_data, order_id=order_id,
                )
        if not claimed:
            return self._order_noop(order, "already_terminal")

        log.info("order_payment_failed")
        self._audit(reference, "ORDER_PAYMENT_FAILED", {"order_id": order_id, "amount": amount}, source)
        run_nonfatal(
            "payment_failed_notification",
            self.notifier.notify,
            user_id,
            "Payment Failed",
            f"Your payment for order #{order_id} could not be processed. Please try again or contact support.",
            "PAYMENT",
            order_id,
        )
        return SettlementResult(
            applied=True,
            payment_status=PaymentStatus.FAILED,
            order_status=OrderStatus.CANCELLED,
            order_id=order_id,
            detail="failed",
        )

    def _on_order_completed(self, order_id: str, user_id: str, amount: float, reference: str) -> None:
        """Side effects of a first-time order completion; none of them can fail the settlement."""
        order = self.store.get_order(order_id)
        user = self.store.get_user(user_id)

        run_nonfatal("rewards", self.rewards.dispatch, order)

        customer_name = ((user.name or "").strip() or user.email) if user else None
        run_nonfatal(
            "payment_notification",
            self.notifier.notify,
            user_id,
            f"Payment from {customer_name or 'A customer'} - Order Confirmed",
            f"Your payment of {format_naira(amount)} has been confirmed. "
            f"Order #{order_id} is now being processed and will be delivered soon!",
            "ORDER",
            order_id,
        )

        if user is not None and user.email:
            run_nonfatal("order_confirmation_email", self._send_email, user.email, order_confirmation_email(order, user))
            run_nonfatal(
                "order_status_update_email",
                self._send_email,
                user.email,
                order_status_update_email(order, user, "confirmed"),
            )
        if self.admin_email:
            run_nonfatal(
                "admin_payment_email",
                self._send_email,
                self.admin_email,
                admin_payment_email(order, user, amount, reference),
            )
            run_nonfatal("admin_order_email", self._send_email, self.admin_email, admin_order_email(order, user))

    # ─── Wallet funding ─────────────────────────────────────────────

    def _wallet_noop(self, wallet_tx: WalletTransaction, detail: str) -> SettlementResult:
        self.store.refresh(wallet_tx)
        logger.info(
            "settlement_noop",
            wallet_transaction_id=wallet_tx.id,
            reference=wallet_tx.reference,
            payment_status=wallet_tx.status,
            detail=detail,
        )
        return SettlementResult(
            applied=False,
            payment_status=wallet_tx.status,
            wallet_transaction_id=wallet_tx.id,
            detail=detail,
        )

    def settle_wallet(
        self,
        wallet_tx: WalletTransaction,
        outcome: Outcome,
        reference: str,
        reported_minor: int,
        gateway_data: Optional[Dict[str, Any]] = None,
        source: str = "webhook",
    ) -> SettlementResult:
        """Apply a gateway outcome to a wallet funding transaction."""
        wallet_tx_id, user_id, amount = wallet_tx.id, wallet_tx.user_id, wallet_tx.amount

        if outcome is Outcome.PENDING:
            return self._wallet_noop(wallet_tx, "awaiting_gateway")
        if wallet_tx.status in PaymentStatus.TERMINAL:
            return self._wallet_noop(wallet_tx, f"already_{wallet_tx.status.lower()}")

        if outcome is Outcome.SUCCESS:
            self.check_amount(reference, to_minor_units(amount), reported_minor, source)
            credit = self.wallet_credit.credit(wallet_tx)

            if credit is CreditStatus.ALREADY_APPLIED:
                return self._wallet_noop(wallet_tx, "already_completed")

            if credit is CreditStatus.USER_MISSING:
                self._audit(reference, "WALLET_FUNDING_FAILED", {"reason": "user_missing", "user_id": user_id}, source)
                return SettlementResult(
                    applied=True,
                    payment_status=PaymentStatus.FAILED,
                    wallet_transaction_id=wallet_tx_id,
                    detail="user_missing",
                    credit_status=credit,
                )

            run_nonfatal(
                "wallet_payment_record",
                self._record_wallet_payment,
                reference, user_id, from_minor_units(reported_minor) or amount, gateway_data, wallet_tx_id,
            )
            action = "WALLET_CREDIT_PARTIAL" if credit is CreditStatus.PARTIAL else "WALLET_CREDITED"
            self._audit(reference, action, {"user_id": user_id, "amount": amount}, source)

            user = self.store.get_user(user_id)
            if self.admin_email and user is not None:
                run_nonfatal(
                    "admin_wallet_deposit_email",
                    self._send_email,
                    self.admin_email,
                    admin_wallet_deposit_email(user, amount, reference),
                )
            return SettlementResult(
                applied=True,
                payment_status=PaymentStatus.COMPLETED,
                wallet_transaction_id=wallet_tx_id,
                detail=credit.value,
                credit_status=credit,
            )

        with self.store.atomic():
            claimed = self.store.transition(
                WalletTransaction, wallet_tx_id, [PaymentStatus.PENDING], status=PaymentStatus.FAILED,
            )
            if claimed:
                self._record_payment(
                    reference, PaymentStatus.FAILED, user_id, from_minor_units(reported_minor) or amount,
                    gateway_data, wallet_transaction_id=wallet_tx_id,
                )
        if not claimed:
            return self._wallet_noop(wallet_tx, "already_terminal")

        logger.info("wallet_funding_failed", reference=reference, user_id=user_id)
        self._audit(reference, "WALLET_FUNDING_FAILED", {"user_id": user_id, "amount": amount}, source)
        run_nonfatal(
            "wallet_failed_notification",
            self.notifier.notify,
            user_id,
            "Wallet Funding Failed",
            f"Your wallet funding of {format_naira(amount)} could not be processed. "
            "Please try again or contact support.",
            "WALLET",
        )
        return SettlementResult(
            applied=True,
            payment_status=PaymentStatus.FAILED,
            wallet_transaction_id=wallet_tx_id,
            detail="failed",
        )

    def _record_wallet_payment(self, reference, user_id, amount, gateway_data, wallet_tx_id) -> None:
        with self.store.atomic():
            self._record_payment(
                reference, PaymentStatus.COMPLETED, user_id, amount, gateway_data,
                wallet_transaction_id=wallet_tx_id,
            )
