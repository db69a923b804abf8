"""
Wallet Credit Processor — applies a completed funding transaction to a wallet.

Preferred path is one atomic unit: claim the transaction (PENDING → COMPLETED),
increment the balance, record the notification. If the store cannot do that,
the writes are replayed one by one with the balance first, and any step that
fails after the balance moved is logged at CRITICAL: a retried delivery of the
same reference would find the transaction still PENDING and credit it again.
"""
from enum import Enum

import structlog
from sqlalchemy.exc import SQLAlchemyError

from settlement.models import Notification, PaymentStatus, User, WalletTransaction
from settlement.services.notification_service import NotificationSender
from settlement.store import Store
from settlement.utils.effects import run_nonfatal
from settlement.utils.money import format_naira

logger = structlog.get_logger(__name__)


class CreditStatus(str, Enum):
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    USER_MISSING = "user_missing"
    PARTIAL = "partial"     # balance moved, status write lost; needs an operator


class WalletCreditProcessor:
    """Exactly-once wallet balance increments keyed by funding reference."""

    def __init__(self, store: Store, notifier: NotificationSender):
        self.store = store
        self.notifier = notifier

    @staticmethod
    def _funded_message(wallet_tx: WalletTransaction) -> tuple[str, str]:
        return (
            "Wallet Funded Successfully",
            f"Your wallet has been credited with {format_naira(wallet_tx.amount)}",
        )

    def credit(self, wallet_tx: WalletTransaction) -> CreditStatus:
        """Credit the owner of `wallet_tx` with its amount, at most once.

        Returns:
            CreditStatus describing what happened.
        """
        user = self.store.get_user(wallet_tx.user_id)
        if user is None:
            logger.error(
                "wallet_credit_user_missing",
                reference=wallet_tx.reference,
                user_id=wallet_tx.user_id,
            )
            with self.store.atomic():
                self.store.transition(
                    WalletTransaction, wallet_tx.id, [PaymentStatus.PENDING], status=PaymentStatus.FAILED,
                )
            return CreditStatus.USER_MISSING

        if self.store.supports_atomic:
            try:
                return self._credit_atomically(wallet_tx)
            except SQLAlchemyError as e:
                logger.error(
                    "wallet_credit_atomic_failed",
                    reference=wallet_tx.reference,
                    error=str(e),
                    exc_info=True,
                )

        return self._credit_sequentially(wallet_tx)

    def _credit_atomically(self, wallet_tx: WalletTransaction) -> CreditStatus:
        title, message = self._funded_message(wallet_tx)
        with self.store.atomic():
            claimed = self.store.transition(
                WalletTransaction, wallet_tx.id, [PaymentStatus.PENDING], status=PaymentStatus.COMPLETED,
            )
            if claimed:
                self.store.increment(User, wallet_tx.user_id, wallet_balance=wallet_tx.amount)
                self.store.add(Notification(
                    user_id=wallet_tx.user_id, title=title, message=message, type="WALLET",
                ))

        if not claimed:
            logger.info("wallet_credit_already_applied", reference=wallet_tx.reference)
            return CreditStatus.ALREADY_APPLIED

        logger.info(
            "wallet_credited",
            reference=wallet_tx.reference,
            user_id=wallet_tx.user_id,
            amount=wallet_tx.amount,
        )
        return CreditStatus.APPLIED

    def _credit_sequentially(self, wallet_tx: WalletTransaction) -> CreditStatus:
        reference, user_id, amount = wallet_tx.reference, wallet_tx.user_id, wallet_tx.amount
        logger.warning("wallet_credit_sequential_fallback", reference=reference, user_id=user_id)

        # The caller's copy predates the failed atomic attempt; re-read before moving money
        self.store.refresh(wallet_tx)
        if wallet_tx.status != PaymentStatus.PENDING:
            logger.info(
                "wallet_credit_already_applied",
                reference=reference,
                status=wallet_tx.status,
                degraded=True,
            )
            return CreditStatus.ALREADY_APPLIED

        self.store.increment(User, user_id, wallet_balance=amount)
        self.store.commit()

        try:
            claimed = self.store.transition(
                WalletTransaction, wallet_tx.id, [PaymentStatus.PENDING], status=PaymentStatus.COMPLETED,
            )
            self.store.commit()
        except SQLAlchemyError as e:
            self.store.rollback()
            logger.critical(
                "wallet_credit_partial",
                reference=reference,
                user_id=user_id,
                amount=amount,
                detail="balance incremented but transaction still PENDING",
                error=str(e),
                exc_info=True,
            )
            return CreditStatus.PARTIAL

        if not claimed:
            logger.critical(
                "wallet_credit_partial",
                reference=reference,
                user_id=user_id,
                amount=amount,
                detail="balance incremented but transaction was settled concurrently",
            )
            return CreditStatus.PARTIAL

        title, message = self._funded_message(wallet_tx)
        run_nonfatal("wallet_funded_notification", self.notifier.notify, user_id, title, message, "WALLET")

        logger.info("wallet_credited", reference=reference, user_id=user_id, amount=amount, degraded=True)
        return CreditStatus.APPLIED
