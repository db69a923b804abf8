"""
Tests for the reconciliation engine: order and wallet settlement.

Idempotency is asserted on side effects (balances, rewards, notifications,
emails), not only on the returned status.
"""
import pytest
from structlog.testing import capture_logs

from settlement.models import (
    AuditLog, Notification, Order, OrderStatus, Payment, PaymentStatus, Reward, User, WalletTransaction,
)
from settlement.services.audit_service import AuditService
from settlement.services.reconciliation import Outcome
from settlement.store import SqlStore


def notifications_for(db, user_id):
    return db.query(Notification).filter(Notification.user_id == user_id).all()


class BrokenEmailer:
    def send_email(self, to, subject, body):
        raise RuntimeError("mail provider down")


class TestOutcomeMapping:

    @pytest.mark.parametrize("status,expected", [
        ("success", Outcome.SUCCESS),
        ("SUCCESS", Outcome.SUCCESS),
        ("failed", Outcome.FAILURE),
        ("reversed", Outcome.FAILURE),
        ("abandoned", Outcome.FAILURE),
        ("ongoing", Outcome.PENDING),
        ("", Outcome.PENDING),
        (None, Outcome.PENDING),
    ])
    def test_from_gateway_status(self, status, expected) -> None:
        assert Outcome.from_gateway_status(status) is expected


class TestOrderSettlement:
    """PENDING/FAILED → COMPLETED once; COMPLETED is never downgraded."""

    def test_success_completes_order(self, db, settlement_engine, make_user, make_order, emailer) -> None:
        user = make_user()
        order = make_order(user, final_amount=5000.0, transaction_id="ref_ok")

        result = settlement_engine.settle_order(order, Outcome.SUCCESS, "ref_ok", 500000, {"id": 1}, source="verify")

        assert result.applied
        assert not result.already_processed
        assert result.payment_status == PaymentStatus.COMPLETED
        assert result.order_status == OrderStatus.CONFIRMED

        stored = db.query(Order).filter(Order.id == order.id).one()
        assert stored.payment_status == PaymentStatus.COMPLETED
        assert stored.status == OrderStatus.CONFIRMED

        payment = db.query(Payment).filter(Payment.transaction_id == "ref_ok").one()
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.order_id == order.id
        assert payment.amount == 5000.0
        assert payment.gateway_response == {"id": 1}

        titles = [n.title for n in notifications_for(db, user.id)]
        assert "Payment from Ada Obi - Order Confirmed" in titles
        assert {m["to"] for m in emailer.outbox} == {user.email, "ops@market.test"}

    def test_second_success_is_noop(
        self, db, settlement_engine, make_user, make_order, points_settings, emailer,
    ) -> None:
        user = make_user()
        order = make_order(user, final_amount=5000.0, transaction_id="ref_twice")

        first = settlement_engine.settle_order(order, Outcome.SUCCESS, "ref_twice", 500000)
        notifications_after_first = len(notifications_for(db, user.id))
        emails_after_first = len(emailer.outbox)

        second = settlement_engine.settle_order(order, Outcome.SUCCESS, "ref_twice", 500000)

        assert first.applied
        assert not second.applied
        assert second.already_processed
        assert second.payment_status == PaymentStatus.COMPLETED

        db.expire_all()
        assert db.query(User).filter(User.id == user.id).one().points == 10
        assert db.query(Reward).filter(Reward.order_id == order.id).count() == 1
        assert db.query(Payment).filter(Payment.transaction_id == "ref_twice").count() == 1
        assert len(notifications_for(db, user.id)) == notifications_after_first
        assert len(emailer.outbox) == emails_after_first

    def test_completed_is_never_downgraded(self, db, settlement_engine, make_user, make_order) -> None:
        order = make_order(make_user(), transaction_id="ref_keep")
        settlement_engine.settle_order(order, Outcome.SUCCESS, "ref_keep", 500000)

        result = settlement_engine.settle_order(order, Outcome.FAILURE, "ref_keep", 500000)

        assert not result.applied
        assert result.payment_status == PaymentStatus.COMPLETED
        db.expire_all()
        assert db.query(Order).filter(Order.id == order.id).one().payment_status == PaymentStatus.COMPLETED
        assert db.query(Payment).filter(Payment.transaction_id == "ref_keep").one().status == PaymentStatus.COMPLETED

    def test_failure_then_success_completes(self, db, settlement_engine, make_user, make_order) -> None:
        user = make_user()
        order = make_order(user, transaction_id="ref_retry")

        failed = settlement_engine.settle_order(order, Outcome.FAILURE, "ref_retry", 500000)
        completed = settlement_engine.settle_order(order, Outcome.SUCCESS, "ref_retry", 500000)

        assert failed.applied and failed.payment_status == PaymentStatus.FAILED
        assert failed.order_status == OrderStatus.CANCELLED
        assert completed.applied and completed.payment_status == PaymentStatus.COMPLETED

        payment = db.query(Payment).filter(Payment.transaction_id == "ref_retry").one()
        assert payment.status == PaymentStatus.COMPLETED
        titles = [n.title for n in notifications_for(db, user.id)]
        assert "Payment Failed" in titles

    def test_repeated_failure_is_noop(self, settlement_engine, make_user, make_order) -> None:
        order = make_order(make_user(), transaction_id="ref_fail")
        settlement_engine.settle_order(order, Outcome.FAILURE, "ref_fail", 500000)

        again = settlement_engine.settle_order(order, Outcome.FAILURE, "ref_fail", 500000)

        assert not again.applied
        assert again.payment_status == PaymentStatus.FAILED

    def test_pending_outcome_changes_nothing(self, db, settlement_engine, make_user, make_order) -> None:
        order = make_order(make_user(), transaction_id="ref_wait")

        result = settlement_engine.settle_order(order, Outcome.PENDING, "ref_wait", 500000)

        assert not result.applied
        assert result.detail == "awaiting_gateway"
        assert result.payment_status == PaymentStatus.PENDING
        assert db.query(Payment).count() == 0

    def test_stale_read_loses_the_race(
        self, db, other_db, settlement_engine, make_engine, make_user, make_order, points_settings,
    ) -> None:
        """A worker that read PENDING before another settled must not settle again."""
        user = make_user()
        order = make_order(user, final_amount=5000.0, transaction_id="ref_race")

        other_store = SqlStore(other_db)
        stale_order = other_store.get_order(order.id)
        assert stale_order.payment_status == PaymentStatus.PENDING

        winner = settlement_engine.settle_order(order, Outcome.SUCCESS, "ref_race", 500000, source="webhook")
        loser = make_engine(other_store).settle_order(
            stale_order, Outcome.SUCCESS, "ref_race", 500000, source="verify",
        )

        assert winner.applied
        assert not loser.applied
        assert loser.payment_status == PaymentStatus.COMPLETED

        db.expire_all()
        assert db.query(User).filter(User.id == user.id).one().points == 10
        assert db.query(Reward).filter(Reward.order_id == order.id).count() == 1
        confirmations = [n for n in notifications_for(db, user.id) if n.title.endswith("Order Confirmed")]
        assert len(confirmations) == 1


class TestAmountCheck:

    def test_mismatch_is_logged_and_settles_anyway(self, db, settlement_engine, make_user, make_order) -> None:
        order = make_order(make_user(), final_amount=5000.0, transaction_id="ref_short")

        with capture_logs() as logs:
            result = settlement_engine.settle_order(order, Outcome.SUCCESS, "ref_short", 400000)

        assert result.applied
        mismatches = [e for e in logs if e["event"] == "amount_mismatch"]
        assert len(mismatches) == 1
        assert mismatches[0]["log_level"] == "warning"
        assert mismatches[0]["expected_minor"] == 500000
        assert mismatches[0]["reported_minor"] == 400000
        # The Payment row records what the gateway actually charged
        assert db.query(Payment).filter(Payment.transaction_id == "ref_short").one().amount == 4000.0

    def test_one_kobo_rounding_is_tolerated(self, settlement_engine) -> None:
        with capture_logs() as logs:
            assert settlement_engine.check_amount("ref", 500000, 500001, "verify")
            assert not settlement_engine.check_amount("ref", 500000, 500002, "verify")

        assert [e["event"] for e in logs] == ["amount_mismatch"]


class TestSideEffects:

    def test_email_failure_does_not_fail_settlement(self, db, store, make_engine, make_user, make_order) -> None:
        order = make_order(make_user(), transaction_id="ref_mail")
        engine = make_engine(store, emailer=BrokenEmailer())

        with capture_logs() as logs:
            result = engine.settle_order(order, Outcome.SUCCESS, "ref_mail", 500000)

        assert result.applied
        assert db.query(Order).filter(Order.id == order.id).one().payment_status == PaymentStatus.COMPLETED
        failed_effects = {e["effect"] for e in logs if e["event"] == "side_effect_failed"}
        assert failed_effects == {
            "order_confirmation_email", "order_status_update_email", "admin_payment_email", "admin_order_email",
        }

    def test_completion_sends_customer_and_admin_emails(
        self, settlement_engine, make_user, make_order, emailer,
    ) -> None:
        user = make_user()
        order = make_order(user, final_amount=5000.0, transaction_id="ref_emails")

        settlement_engine.settle_order(order, Outcome.SUCCESS, "ref_emails", 500000)

        sent = [(m["to"], m["subject"]) for m in emailer.outbox]
        assert sent == [
            (user.email, f"Order #{order.id} confirmed"),
            (user.email, f"Order #{order.id} status: confirmed"),
            ("ops@market.test", f"Payment received - order #{order.id}"),
            ("ops@market.test", f"New order #{order.id}"),
        ]
        admin_order = emailer.outbox[-1]["body"]
        assert "Basmati Rice" in admin_order
        assert "Total: ₦5,000" in admin_order

    def test_applied_transitions_are_audited(self, db, store, make_engine, make_user, make_order) -> None:
        order = make_order(make_user(), transaction_id="ref_audit")
        engine = make_engine(
            store,
            audit=lambda reference, action, payload, source: AuditService.log(
                db, reference, action, payload=payload, source=source,
            ),
        )

        engine.settle_order(order, Outcome.FAILURE, "ref_audit", 500000, source="webhook")
        engine.settle_order(order, Outcome.SUCCESS, "ref_audit", 500000, source="verify")
        engine.settle_order(order, Outcome.SUCCESS, "ref_audit", 500000, source="webhook")

        actions = [e.action for e in AuditService.get_trail(db, "ref_audit")]
        assert actions == ["ORDER_PAYMENT_FAILED", "ORDER_SETTLED"]
        assert AuditService.verify_chain(db, "ref_audit")["valid"]


class TestWalletSettlement:

    def test_success_credits_once(self, db, settlement_engine, make_user, make_wallet_tx, emailer) -> None:
        user = make_user()
        wallet_tx = make_wallet_tx(user.id, amount=10000.0)

        first = settlement_engine.settle_wallet(wallet_tx, Outcome.SUCCESS, wallet_tx.reference, 1000000)
        second = settlement_engine.settle_wallet(wallet_tx, Outcome.SUCCESS, wallet_tx.reference, 1000000)

        assert first.applied
        assert first.payment_status == PaymentStatus.COMPLETED
        assert not second.applied
        assert second.payment_status == PaymentStatus.COMPLETED

        db.expire_all()
        assert db.query(User).filter(User.id == user.id).one().wallet_balance == 10000.0
        assert db.query(WalletTransaction).filter(
            WalletTransaction.id == wallet_tx.id
        ).one().status == PaymentStatus.COMPLETED
        funded = [n for n in notifications_for(db, user.id) if n.title == "Wallet Funded Successfully"]
        assert len(funded) == 1
        assert [m["subject"] for m in emailer.outbox] == ["Wallet deposit received"]

        payment = db.query(Payment).filter(Payment.transaction_id == wallet_tx.reference).one()
        assert payment.wallet_transaction_id == wallet_tx.id
        assert payment.order_id is None

    def test_missing_user_fails_the_transaction(self, db, settlement_engine, make_wallet_tx) -> None:
        wallet_tx = make_wallet_tx("no-such-user", amount=2500.0)

        result = settlement_engine.settle_wallet(wallet_tx, Outcome.SUCCESS, wallet_tx.reference, 250000)

        assert result.applied
        assert result.payment_status == PaymentStatus.FAILED
        assert result.detail == "user_missing"
        db.expire_all()
        assert db.query(WalletTransaction).filter(
            WalletTransaction.id == wallet_tx.id
        ).one().status == PaymentStatus.FAILED

    def test_failure_marks_failed_and_notifies(self, db, settlement_engine, make_user, make_wallet_tx) -> None:
        user = make_user()
        wallet_tx = make_wallet_tx(user.id, amount=3000.0)

        result = settlement_engine.settle_wallet(wallet_tx, Outcome.FAILURE, wallet_tx.reference, 300000)

        assert result.applied
        assert result.payment_status == PaymentStatus.FAILED
        db.expire_all()
        assert db.query(User).filter(User.id == user.id).one().wallet_balance == 0.0
        assert db.query(Payment).filter(Payment.transaction_id == wallet_tx.reference).one().status == "FAILED"
        assert "Wallet Funding Failed" in [n.title for n in notifications_for(db, user.id)]

    def test_failed_funding_is_terminal(self, db, settlement_engine, make_user, make_wallet_tx) -> None:
        user = make_user()
        wallet_tx = make_wallet_tx(user.id, amount=3000.0, status=PaymentStatus.FAILED)

        result = settlement_engine.settle_wallet(wallet_tx, Outcome.SUCCESS, wallet_tx.reference, 300000)

        assert not result.applied
        db.expire_all()
        assert db.query(User).filter(User.id == user.id).one().wallet_balance == 0.0

    def test_stale_read_credits_once(self, db, other_db, settlement_engine, make_engine, make_user, make_wallet_tx) -> None:
        user = make_user(wallet_balance=100.0)
        wallet_tx = make_wallet_tx(user.id, amount=10000.0)
        other_store = SqlStore(other_db)
        stale_tx = other_store.get_wallet_transaction(wallet_tx.reference)

        winner = settlement_engine.settle_wallet(wallet_tx, Outcome.SUCCESS, wallet_tx.reference, 1000000)
        loser = make_engine(other_store).settle_wallet(stale_tx, Outcome.SUCCESS, wallet_tx.reference, 1000000)

        assert winner.applied
        assert not loser.applied
        db.expire_all()
        assert db.query(User).filter(User.id == user.id).one().wallet_balance == 10100.0
