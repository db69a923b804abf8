"""
Pytest configuration and fixtures.

Every test gets its own SQLite file database, so two sessions on the same
engine see each other's commits the way two workers would in production.
"""
import json
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Iterator, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from settlement.config import Settings, get_settings
from settlement.database import get_db, init_db
from settlement.dependencies import get_email_sender, get_gateway_client
from settlement.main import app
from settlement.models import (
    AuthSession, Order, OrderItem, PaymentStatus, PointsSettings, Referral,
    ReferralSettings, User, WalletTransaction, WalletTransactionType,
)
from settlement.services.gateway_client import GatewayError, GatewayResult
from settlement.services.notification_service import DatabaseNotifier
from settlement.services.reconciliation import ReconciliationEngine
from settlement.services.rewards import RewardDispatcher
from settlement.services.signature import SignatureVerifier
from settlement.services.wallet_credit import WalletCreditProcessor
from settlement.store import SqlStore
from settlement.utils.rate_limiter import reset_rate_limits

WEBHOOK_SECRET = "sk_test_settlement_secret"
ADMIN_EMAIL = "ops@market.test"


class RecordingEmailSender:
    """Mailer that keeps every message it was asked to send."""

    def __init__(self):
        self.outbox: list = []

    def send_email(self, to: str, subject: str, body: str) -> None:
        if not to:
            raise ValueError("Email recipient is empty")
        self.outbox.append({"to": to, "subject": subject, "body": body})


class FakeGateway:
    """Stands in for PaystackClient: answers from a dict of canned results."""

    def __init__(self) -> None:
        self.results: dict[str, Any] = {}
        self.calls: list[str] = []

    def set(
        self,
        reference: str,
        status: str = "success",
        amount_minor_units: int = 500000,
        metadata: Optional[dict] = None,
    ) -> None:
        self.results[reference] = GatewayResult(
            status=status,
            amount_minor_units=amount_minor_units,
            reference=reference,
            metadata=metadata or {},
            paid_at="2024-05-01T10:00:00.000Z",
            raw={"reference": reference, "status": status, "amount": amount_minor_units},
        )

    def fail(self, reference: str, error: Optional[Exception] = None) -> None:
        self.results[reference] = error or GatewayError("Gateway request failed")

    def verify_transaction(self, reference: str) -> GatewayResult:
        self.calls.append(reference)
        result = self.results.get(reference)
        if result is None:
            raise GatewayError("Gateway verification failed: Transaction reference not found")
        if isinstance(result, Exception):
            raise result
        return result


# ─── Settings ────────────────────────────────────────────────────────

@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Create test settings."""
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'settlement.db'}",
        PAYSTACK_SECRET_KEY=WEBHOOK_SECRET,
        ADMIN_EMAIL=ADMIN_EMAIL,
        LOG_DIR=str(tmp_path / "logs"),
        LOG_JSON=False,
    )


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> Iterator[None]:
    reset_rate_limits()
    yield
    reset_rate_limits()


# ─── Database ────────────────────────────────────────────────────────

@pytest.fixture
def engine(test_settings: Settings):
    engine = create_engine(
        test_settings.DATABASE_URL,
        connect_args={"check_same_thread": False},
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory) -> Iterator[Session]:
    """Primary test database session."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def other_db(session_factory) -> Iterator[Session]:
    """A second, independent session: the 'other worker' in race scenarios."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(db: Session) -> SqlStore:
    return SqlStore(db)


# ─── Components ──────────────────────────────────────────────────────

@pytest.fixture
def emailer() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def make_engine(emailer: RecordingEmailSender) -> Callable[..., ReconciliationEngine]:
    """Build a ReconciliationEngine over a given store, wired like the app does."""

    def _make(store: SqlStore, **overrides: Any) -> ReconciliationEngine:
        notifier = DatabaseNotifier(store)
        options = {
            "store": store,
            "wallet_credit": WalletCreditProcessor(store, notifier),
            "rewards": RewardDispatcher(store, notifier, first_purchase_bonus=500.0),
            "notifier": notifier,
            "emailer": emailer,
            "tolerance_minor_units": 1,
            "currency": "NGN",
            "admin_email": ADMIN_EMAIL,
        }
        options.update(overrides)
        return ReconciliationEngine(**options)

    return _make


@pytest.fixture
def settlement_engine(store: SqlStore, make_engine) -> ReconciliationEngine:
    return make_engine(store)


# ─── Record factories ────────────────────────────────────────────────

@pytest.fixture
def make_user(db: Session) -> Callable[..., User]:
    def _make(**fields: Any) -> User:
        suffix = uuid.uuid4().hex[:8]
        values = {
            "name": "Ada Obi",
            "email": f"ada.{suffix}@market.test",
            "wallet_balance": 0.0,
            "points": 0,
        }
        values.update(fields)
        user = User(**values)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_order(db: Session) -> Callable[..., Order]:
    def _make(user: User, final_amount: float = 5000.0, **fields: Any) -> Order:
        values = {
            "user_id": user.id,
            "final_amount": final_amount,
            "payment_method": "paystack",
            "payment_status": PaymentStatus.PENDING,
        }
        values.update(fields)
        order = Order(**values)
        order.items = [OrderItem(
            product_id=str(uuid.uuid4()),
            product_name="Basmati Rice",
            unit="bag",
            quantity=1,
            unit_price=final_amount,
        )]
        db.add(order)
        db.commit()
        db.refresh(order)
        return order

    return _make


@pytest.fixture
def make_wallet_tx(db: Session) -> Callable[..., WalletTransaction]:
    def _make(user_id: str, amount: float = 10000.0, **fields: Any) -> WalletTransaction:
        values = {
            "user_id": user_id,
            "type": WalletTransactionType.CREDIT,
            "amount": amount,
            "method": "paystack",
            "description": "Wallet funding",
            "status": PaymentStatus.PENDING,
            "reference": f"wal_{uuid.uuid4().hex[:12]}",
        }
        values.update(fields)
        wallet_tx = WalletTransaction(**values)
        db.add(wallet_tx)
        db.commit()
        db.refresh(wallet_tx)
        return wallet_tx

    return _make


@pytest.fixture
def make_token(db: Session) -> Callable[..., str]:
    def _make(user: User, expires_in: timedelta = timedelta(hours=1)) -> str:
        token = uuid.uuid4().hex
        db.add(AuthSession(
            token=token,
            user_id=user.id,
            expires_at=datetime.utcnow() + expires_in,
        ))
        db.commit()
        return token

    return _make


@pytest.fixture
def points_settings(db: Session) -> PointsSettings:
    settings = PointsSettings(amount_threshold=1000.0, points_per_threshold=2, is_active=True)
    db.add(settings)
    db.commit()
    return settings


@pytest.fixture
def referral_setup(db: Session, make_user) -> tuple[User, User, Referral]:
    """A referrer, a referred customer, and the referral linking them."""
    referrer = make_user(name="Chidi Referrer")
    referee = make_user(name="Ngozi Referee", referred_by_id=referrer.id)
    referral = Referral(referrer_id=referrer.id, referred_email=referee.email)
    db.add(referral)
    db.add(ReferralSettings(referrer_points_per_purchase=25))
    db.commit()
    return referrer, referee, referral


# ─── HTTP ────────────────────────────────────────────────────────────

def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return SignatureVerifier(secret).sign(body)


def webhook_body(event: str, reference: str, amount_minor: int, metadata: Optional[dict] = None) -> bytes:
    return json.dumps({
        "event": event,
        "data": {
            "reference": reference,
            "amount": amount_minor,
            "status": "success" if event == "charge.success" else "failed",
            "metadata": metadata or {},
        },
    }).encode("utf-8")


@pytest.fixture
def client(
    session_factory,
    test_settings: Settings,
    gateway: FakeGateway,
    emailer: RecordingEmailSender,
) -> Iterator[TestClient]:
    """HTTP client with the database, settings, gateway and mailer overridden."""

    def _get_db() -> Iterator[Session]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_gateway_client] = lambda: gateway
    app.dependency_overrides[get_email_sender] = lambda: emailer

    # Not used as a context manager: startup hooks would touch the real database
    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def post_webhook(client: TestClient) -> Callable[..., Any]:
    def _post(body: bytes, signature: Optional[str] = "sign"):
        headers = {"Content-Type": "application/json"}
        if signature == "sign":
            headers["x-paystack-signature"] = sign(body)
        elif signature is not None:
            headers["x-paystack-signature"] = signature
        return client.post("/api/payments/webhook", content=body, headers=headers)

    return _post
