"""
Reward Dispatcher — one-time loyalty side effects of a completed order.

Each reward is keyed by (order_id, type) and guarded twice: an existence
check before computing it, and the unique constraint on the rewards table
when it is written. Either guard alone makes a second dispatch for the same
order a no-op, whichever entry point (webhook or verify) reaches it.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError

from settlement.models import (
    Notification, Order, PaymentStatus, PointsSettings, Referral, Reward, RewardType,
    User, WalletTransaction, WalletTransactionType,
)
from settlement.services.notification_service import NotificationSender
from settlement.store import Store
from settlement.utils.effects import run_nonfatal
from settlement.utils.money import format_naira

logger = structlog.get_logger(__name__)

DEFAULT_AMOUNT_THRESHOLD = 50000
DEFAULT_POINTS_PER_THRESHOLD = 1


def calculate_points(amount: float, settings: Optional[PointsSettings]) -> int:
    """Points for a purchase: floor(amount / threshold) * points_per_threshold.

    Example: threshold 50,000 and 10 points per threshold → ₦100,000 earns 20.
    No settings, inactive settings or a non-positive amount earn nothing.
    """
    if settings is None or not settings.is_active or not amount or amount <= 0:
        return 0
    threshold = settings.amount_threshold if settings.amount_threshold and settings.amount_threshold > 0 \
        else DEFAULT_AMOUNT_THRESHOLD
    points_per = settings.points_per_threshold if settings.points_per_threshold and settings.points_per_threshold > 0 \
        else DEFAULT_POINTS_PER_THRESHOLD
    return int(amount // threshold) * points_per


@dataclass
class RewardSummary:
    purchase_points: int = 0
    referral_points: int = 0
    first_purchase_bonus: bool = False


class RewardDispatcher:
    """Awards purchase points, referrer points and the first-purchase referral bonus."""

    def __init__(self, store: Store, notifier: NotificationSender, first_purchase_bonus: float = 0.0):
        self.store = store
        self.notifier = notifier
        self.first_purchase_bonus = first_purchase_bonus

    def dispatch(self, order: Order) -> RewardSummary:
        """Run every reward for a settled order; a failure in one never blocks the others."""
        purchase = run_nonfatal("purchase_reward", self.award_purchase_points, order)
        referral = run_nonfatal("referral_reward", self.award_referral_points, order)
        bonus = run_nonfatal("referral_first_purchase_bonus", self.apply_first_purchase_bonus, order)
        return RewardSummary(
            purchase_points=purchase.value or 0,
            referral_points=referral.value or 0,
            first_purchase_bonus=bool(bonus.value),
        )

    def award_purchase_points(self, order: Order) -> int:
        order_id, user_id = order.id, order.user_id
        if self.store.reward_exists(order_id, RewardType.PURCHASE):
            logger.info("purchase_reward_already_awarded", order_id=order_id)
            return 0

        points = calculate_points(order.final_amount, self.store.active_points_settings())
        if points <= 0:
            return 0

        try:
            with self.store.atomic():
                # Reward row first: a duplicate trips the unique constraint before points move
                self.store.add(Reward(
                    user_id=user_id,
                    order_id=order_id,
                    points=points,
                    type=RewardType.PURCHASE,
                    description=f"Points earned from payment for order #{order_id}",
                ))
                self.store.increment(User, user_id, points=points)
        except IntegrityError:
            logger.info("purchase_reward_already_awarded", order_id=order_id)
            return 0

        logger.info("purchase_reward_awarded", order_id=order_id, user_id=user_id, points=points)
        return points

    def award_referral_points(self, order: Order) -> int:
        order_id = order.id
        buyer = self.store.get_user(order.user_id)
        if buyer is None or not buyer.referred_by_id:
            return 0
        referrer_id = buyer.referred_by_id

        if self.store.reward_exists(order_id, RewardType.REFERRAL_PURCHASE):
            logger.info("referral_reward_already_awarded", order_id=order_id)
            return 0

        settings = self.store.latest_referral_settings()
        points = settings.referrer_points_per_purchase if settings else 0
        if not points or points <= 0:
            return 0

        try:
            with self.store.atomic():
                self.store.add(Reward(
                    user_id=referrer_id,
                    order_id=order_id,
                    points=points,
                    type=RewardType.REFERRAL_PURCHASE,
                    description=f"Referred customer purchase - Order #{order_id}",
                ))
        except IntegrityError:
            logger.info("referral_reward_already_awarded", order_id=order_id)
            return 0

        run_nonfatal(
            "referral_reward_notification",
            self.notifier.notify,
            referrer_id,
            "Referral purchase points",
            f"You earned {points} points because someone you referred completed a purchase "
            f"(Order #{order_id}). Convert points to cash in Wallet.",
            "REFERRAL",
        )
        logger.info("referral_reward_awarded", order_id=order_id, referrer_id=referrer_id, points=points)
        return points

    def apply_first_purchase_bonus(self, order: Order) -> bool:
        """Credit referrer and referee wallets when a referee's first order settles.

        The Referral row is claimed with a conditional update on
        first_purchase_bonus_paid_at, so concurrent settlements pay it once.
        """
        bonus = self.first_purchase_bonus
        if not bonus or bonus <= 0:
            return False

        buyer = self.store.get_user(order.user_id)
        if buyer is None or not buyer.referred_by_id or not buyer.email:
            return False
        referee_id, referrer_id = buyer.id, buyer.referred_by_id

        referral = self.store.find_referral(referrer_id, buyer.email)
        if referral is None or referral.first_purchase_bonus_paid_at is not None:
            return False
        referral_id = referral.id

        if self.store.count_completed_orders(referee_id) != 1:
            return False

        with self.store.atomic():
            claimed = self.store.transition(
                Referral,
                referral_id,
                [None],
                field="first_purchase_bonus_paid_at",
                first_purchase_bonus_paid_at=datetime.utcnow(),
                reward_amount=bonus,
            )
            if claimed:
                self.store.increment(User, referrer_id, wallet_balance=bonus)
                self.store.increment(User, referee_id, wallet_balance=bonus)
                for user_id, suffix, description, message in (
                    (
                        referrer_id, "referrer",
                        "Referral bonus - referred customer made first purchase",
                        f"You received {format_naira(bonus)} because someone you referred completed their first purchase.",
                    ),
                    (
                        referee_id, "referee",
                        "Referral bonus - first purchase as referred customer",
                        f"You received {format_naira(bonus)} bonus for your first purchase as a referred customer.",
                    ),
                ):
                    self.store.add(WalletTransaction(
                        user_id=user_id,
                        type=WalletTransactionType.CREDIT,
                        amount=bonus,
                        method="referral_bonus",
                        description=description,
                        status=PaymentStatus.COMPLETED,
                        reference=f"ref-bonus-{referral_id}-{suffix}",
                    ))
                    self.store.add(Notification(
                        user_id=user_id, title="Referral bonus credited", message=message, type="REFERRAL",
                    ))

        if claimed:
            logger.info("referral_bonus_paid", referral_id=referral_id, referrer_id=referrer_id, referee_id=referee_id)
        return claimed
