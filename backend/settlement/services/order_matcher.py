"""
Order Matcher — resolves a gateway reference to an internal order.

Fallback chain, first hit wins, every step scoped to the paying user:
1. order whose stored transaction_id is the reference
2. order whose id is metadata.orderId
3. the user's most recent PENDING order on the gateway payment method

Step 3 is a heuristic of last resort: a user with two orders pending at once
(two browser tabs) can be matched to the wrong one. It is kept as-is on the
client verify path and never used for webhooks.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

import structlog

from settlement.models import Order
from settlement.store import Store

logger = structlog.get_logger(__name__)


class MatchStrategy(str, Enum):
    REFERENCE = "reference"
    METADATA_ORDER_ID = "metadata_order_id"
    LATEST_PENDING = "latest_pending"


@dataclass(frozen=True)
class OrderFound:
    order: Order
    strategy: MatchStrategy


@dataclass(frozen=True)
class OrderNotFound:
    reference: str
    user_id: Optional[str]
    tried: Tuple[MatchStrategy, ...]


MatchResult = Union[OrderFound, OrderNotFound]


def metadata_order_id(metadata: Optional[Dict[str, Any]]) -> Optional[str]:
    """Order id from gateway metadata: `orderId`, or the `order_id` custom field."""
    if not metadata:
        return None
    order_id = metadata.get("orderId") or metadata.get("order_id")
    if order_id:
        return str(order_id)
    for custom in metadata.get("custom_fields") or []:
        if isinstance(custom, dict) and custom.get("variable_name") == "order_id" and custom.get("value"):
            return str(custom["value"])
    return None


class OrderMatcher:
    """Deterministic reference → order resolution."""

    def __init__(self, store: Store, payment_method: str = "paystack"):
        self.store = store
        self.payment_method = payment_method

    def match(self, reference: str, metadata: Optional[Dict[str, Any]], user_id: str) -> MatchResult:
        """Run the full fallback chain for an authenticated user."""
        tried = []

        tried.append(MatchStrategy.REFERENCE)
        order = self.store.find_order_by_reference(reference, user_id=user_id)
        if order:
            return OrderFound(order, MatchStrategy.REFERENCE)

        order_id = metadata_order_id(metadata)
        if order_id:
            tried.append(MatchStrategy.METADATA_ORDER_ID)
            logger.info("order_match_fallback_metadata", reference=reference, order_id=order_id)
            order = self.store.find_order_for_user(order_id, user_id)
            if order:
                return OrderFound(order, MatchStrategy.METADATA_ORDER_ID)

        tried.append(MatchStrategy.LATEST_PENDING)
        logger.info("order_match_fallback_latest_pending", reference=reference, user_id=user_id)
        order = self.store.latest_pending_order(user_id, self.payment_method)
        if order:
            logger.warning(
                "order_matched_by_heuristic",
                reference=reference,
                user_id=user_id,
                order_id=order.id,
            )
            return OrderFound(order, MatchStrategy.LATEST_PENDING)

        logger.error("order_not_matched", reference=reference, user_id=user_id, tried=[t.value for t in tried])
        return OrderNotFound(reference=reference, user_id=user_id, tried=tuple(tried))

    def match_webhook(self, reference: str, metadata: Optional[Dict[str, Any]]) -> MatchResult:
        """Signed webhook path: the reference alone, then metadata orderId + userId together."""
        tried = [MatchStrategy.REFERENCE]
        order = self.store.find_order_by_reference(reference)
        if order:
            return OrderFound(order, MatchStrategy.REFERENCE)

        order_id = metadata_order_id(metadata)
        user_id = (metadata or {}).get("userId")
        if order_id and user_id:
            tried.append(MatchStrategy.METADATA_ORDER_ID)
            order = self.store.find_order_for_user(order_id, str(user_id))
            if order:
                return OrderFound(order, MatchStrategy.METADATA_ORDER_ID)

        logger.error("order_not_matched", reference=reference, user_id=user_id, tried=[t.value for t in tried])
        return OrderNotFound(reference=reference, user_id=user_id, tried=tuple(tried))
