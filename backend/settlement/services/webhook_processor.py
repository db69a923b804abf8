"""
Webhook Processor — the event-driven settlement entry point.

Only an invalid signature, a missing secret or an unparseable payload are
reported back as errors. Everything else, including unknown event types,
unmatched references and duplicate deliveries, is acknowledged so the
gateway stops retrying.
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog

from settlement.services.gateway_client import normalize_metadata
from settlement.services.order_matcher import OrderFound, OrderMatcher
from settlement.services.reconciliation import Outcome, ReconciliationEngine, SettlementResult
from settlement.services.signature import SignatureCheck, SignatureVerifier
from settlement.store import Store

logger = structlog.get_logger(__name__)

HANDLED_EVENTS = {
    "charge.success": Outcome.SUCCESS,
    "charge.failed": Outcome.FAILURE,
}


class WebhookRejected(Exception):
    """The delivery is not trustworthy or not readable; nothing was written."""


class WebhookConfigurationError(Exception):
    """The server cannot verify deliveries at all."""


@dataclass
class WebhookAck:
    event: Optional[str]
    reference: Optional[str]
    result: str     # processed | noop | ignored | unmatched
    settlement: Optional[SettlementResult] = None


def is_wallet_funding(metadata: Dict[str, Any]) -> bool:
    if metadata.get("type") == "wallet_funding":
        return True
    return any(
        isinstance(custom, dict)
        and custom.get("variable_name") == "funding_type"
        and custom.get("value") == "wallet"
        for custom in metadata.get("custom_fields") or []
    )


class WebhookProcessor:
    """Verifies, parses and routes gateway events into the reconciliation engine."""

    def __init__(
        self,
        verifier: SignatureVerifier,
        engine: ReconciliationEngine,
        matcher: OrderMatcher,
        store: Store,
    ):
        self.verifier = verifier
        self.engine = engine
        self.matcher = matcher
        self.store = store

    def handle(self, raw_body: bytes, signature: Optional[str]) -> WebhookAck:
        """Process one delivery.

        Args:
            raw_body: Request body bytes, untouched.
            signature: Value of the vendor signature header.

        Raises:
            WebhookConfigurationError: No signing secret is configured.
            WebhookRejected: Bad signature or malformed payload.
        """
        check = self.verifier.verify(raw_body, signature)
        if check is SignatureCheck.MISSING_SECRET:
            logger.critical("webhook_secret_missing")
            raise WebhookConfigurationError("Webhook configuration error")
        if check is SignatureCheck.INVALID:
            logger.warning("webhook_signature_invalid", has_signature=bool(signature))
            raise WebhookRejected("Invalid signature")

        try:
            event = json.loads(raw_body)
        except ValueError:
            logger.warning("webhook_payload_unparseable")
            raise WebhookRejected("Malformed payload")
        if not isinstance(event, dict):
            raise WebhookRejected("Malformed payload")

        event_type = event.get("event")
        outcome = HANDLED_EVENTS.get(event_type)
        if outcome is None:
            logger.info("webhook_event_ignored", event_type=event_type)
            return WebhookAck(event=event_type, reference=None, result="ignored")

        data = event.get("data")
        if not isinstance(data, dict) or not data.get("reference"):
            logger.warning("webhook_payload_missing_reference", event_type=event_type)
            raise WebhookRejected("Malformed payload")

        reference = str(data["reference"])
        metadata = normalize_metadata(data.get("metadata"))
        try:
            reported_minor = int(data.get("amount") or 0)
        except (TypeError, ValueError):
            raise WebhookRejected("Malformed payload")

        logger.info("webhook_received", event_type=event_type, reference=reference)

        if is_wallet_funding(metadata):
            return self._settle_wallet(event_type, reference, outcome, reported_minor, data)

        match = self.matcher.match_webhook(reference, metadata)
        if isinstance(match, OrderFound):
            settlement = self.engine.settle_order(
                match.order, outcome, reference, reported_minor, data, source="webhook",
            )
            return self._ack(event_type, reference, settlement)

        # References without wallet metadata may still belong to a funding attempt
        if self.store.get_wallet_transaction(reference) is not None:
            return self._settle_wallet(event_type, reference, outcome, reported_minor, data)

        return WebhookAck(event=event_type, reference=reference, result="unmatched")

    def _settle_wallet(self, event_type, reference, outcome, reported_minor, data) -> WebhookAck:
        wallet_tx = self.store.get_wallet_transaction(reference)
        if wallet_tx is None:
            logger.error("wallet_transaction_not_found", reference=reference)
            return WebhookAck(event=event_type, reference=reference, result="unmatched")

        settlement = self.engine.settle_wallet(
            wallet_tx, outcome, reference, reported_minor, data, source="webhook",
        )
        return self._ack(event_type, reference, settlement)

    @staticmethod
    def _ack(event_type, reference, settlement: SettlementResult) -> WebhookAck:
        return WebhookAck(
            event=event_type,
            reference=reference,
            result="processed" if settlement.applied else "noop",
            settlement=settlement,
        )
