"""
Store — the persistence port used by every settlement component.

Components never touch a module-level database handle; they receive a Store.
The two primitives the settlement guarantees rest on are explicit here:

- ``transition``: a conditional ``UPDATE ... WHERE <status> IN (...)`` that
  reports whether this caller actually moved the row. Two concurrent callers
  can both *read* PENDING, but only one of them can *transition* it.
- ``increment``: a relative ``SET col = col + :delta`` so concurrent credits to
  the same user never lose an update.
"""
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, Optional, Type

from sqlalchemy import func
from sqlalchemy.orm import Session

from settlement.models import (
    Order, Payment, PaymentStatus, PointsSettings, Referral, ReferralSettings,
    Reward, User, WalletTransaction, WalletTransactionType,
)


class Store(ABC):
    """Record lookup, conditional transitions and an optional atomic multi-write."""

    #: False when the backing engine cannot group several writes into one unit.
    supports_atomic: bool = True

    # --- Lookups -------------------------------------------------------

    @abstractmethod
    def get_order(self, order_id: str) -> Optional[Order]: ...

    @abstractmethod
    def find_order_by_reference(self, reference: str, user_id: Optional[str] = None) -> Optional[Order]: ...

    @abstractmethod
    def find_order_for_user(self, order_id: str, user_id: str) -> Optional[Order]: ...

    @abstractmethod
    def latest_pending_order(self, user_id: str, payment_method: str) -> Optional[Order]: ...

    @abstractmethod
    def count_completed_orders(self, user_id: str) -> int: ...

    @abstractmethod
    def get_wallet_transaction(self, reference: str) -> Optional[WalletTransaction]: ...

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    def get_payment(self, reference: str) -> Optional[Payment]: ...

    @abstractmethod
    def reward_exists(self, order_id: str, reward_type: str) -> bool: ...

    @abstractmethod
    def active_points_settings(self) -> Optional[PointsSettings]: ...

    @abstractmethod
    def latest_referral_settings(self) -> Optional[ReferralSettings]: ...

    @abstractmethod
    def find_referral(self, referrer_id: str, referred_email: str) -> Optional[Referral]: ...

    # --- Writes --------------------------------------------------------

    @abstractmethod
    def transition(
        self,
        model: Type[Any],
        record_id: Any,
        from_values: Iterable[Any],
        field: str = "status",
        **values: Any,
    ) -> bool:
        """Set ``values`` on the row only if ``field`` currently holds one of ``from_values``."""

    @abstractmethod
    def increment(self, model: Type[Any], record_id: Any, **deltas: Any) -> bool:
        """Apply relative increments, e.g. ``increment(User, uid, wallet_balance=100)``."""

    @abstractmethod
    def upsert_by_reference(
        self,
        model: Type[Any],
        key_field: str,
        key: str,
        if_absent: Dict[str, Any],
        if_present: Dict[str, Any],
    ) -> Any:
        """Insert ``if_absent`` under ``key`` or apply ``if_present`` to the existing row."""

    @abstractmethod
    def add(self, record: Any) -> Any: ...

    @abstractmethod
    def commit(self) -> None: ...

    @abstractmethod
    def rollback(self) -> None: ...

    @abstractmethod
    def refresh(self, record: Any) -> None: ...

    @contextmanager
    def atomic(self) -> Iterator["Store"]:
        """Group writes into one unit: commit on success, roll back on any error."""
        try:
            yield self
            self.commit()
        except Exception:
            self.rollback()
            raise


class SqlStore(Store):
    """Store backed by a SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    # --- Lookups -------------------------------------------------------

    def get_order(self, order_id: str) -> Optional[Order]:
        return self.db.query(Order).filter(Order.id == order_id).first()

    def find_order_by_reference(self, reference: str, user_id: Optional[str] = None) -> Optional[Order]:
        query = self.db.query(Order).filter(Order.transaction_id == reference)
        if user_id is not None:
            query = query.filter(Order.user_id == user_id)
        return query.first()

    def find_order_for_user(self, order_id: str, user_id: str) -> Optional[Order]:
        return self.db.query(Order).filter(
            Order.id == order_id,
            Order.user_id == user_id,
        ).first()

    def latest_pending_order(self, user_id: str, payment_method: str) -> Optional[Order]:
        return (
            self.db.query(Order)
            .filter(
                Order.user_id == user_id,
                Order.payment_status == PaymentStatus.PENDING,
                Order.payment_method == payment_method,
            )
            .order_by(Order.created_at.desc())
            .first()
        )

    def count_completed_orders(self, user_id: str) -> int:
        return self.db.query(func.count(Order.id)).filter(
            Order.user_id == user_id,
            Order.payment_status == PaymentStatus.COMPLETED,
        ).scalar() or 0

    def get_wallet_transaction(self, reference: str) -> Optional[WalletTransaction]:
        return self.db.query(WalletTransaction).filter(
            WalletTransaction.reference == reference,
            WalletTransaction.type == WalletTransactionType.CREDIT,
        ).first()

    def get_user(self, user_id: str) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def get_payment(self, reference: str) -> Optional[Payment]:
        return self.db.query(Payment).filter(Payment.transaction_id == reference).first()

    def reward_exists(self, order_id: str, reward_type: str) -> bool:
        return self.db.query(Reward.id).filter(
            Reward.order_id == order_id,
            Reward.type == reward_type,
        ).first() is not None

    def active_points_settings(self) -> Optional[PointsSettings]:
        return (
            self.db.query(PointsSettings)
            .filter(PointsSettings.is_active.is_(True))
            .order_by(PointsSettings.created_at.desc(), PointsSettings.id.desc())
            .first()
        )

    def latest_referral_settings(self) -> Optional[ReferralSettings]:
        return (
            self.db.query(ReferralSettings)
            .order_by(ReferralSettings.created_at.desc(), ReferralSettings.id.desc())
            .first()
        )

    def find_referral(self, referrer_id: str, referred_email: str) -> Optional[Referral]:
        return self.db.query(Referral).filter(
            Referral.referrer_id == referrer_id,
            Referral.referred_email == referred_email,
        ).first()

    # --- Writes --------------------------------------------------------

    def transition(self, model, record_id, from_values, field="status", **values) -> bool:
        column = getattr(model, field)
        from_values = list(from_values)
        if None in from_values:
            condition = column.is_(None) if len(from_values) == 1 else (
                column.is_(None) | column.in_([v for v in from_values if v is not None])
            )
        else:
            condition = column.in_(from_values)

        changed = (
            self.db.query(model)
            .filter(model.id == record_id, condition)
            .update(values, synchronize_session=False)
        )
        return changed == 1

    def increment(self, model, record_id, **deltas) -> bool:
        updates = {getattr(model, name): getattr(model, name) + delta for name, delta in deltas.items()}
        changed = (
            self.db.query(model)
            .filter(model.id == record_id)
            .update(updates, synchronize_session=False)
        )
        return changed == 1

    def upsert_by_reference(self, model, key_field, key, if_absent, if_present):
        record = self.db.query(model).filter(getattr(model, key_field) == key).first()
        if record is None:
            record = model(**{key_field: key}, **if_absent)
            self.db.add(record)
        else:
            for name, value in if_present.items():
                setattr(record, name, value)
        self.db.flush()
        return record

    def add(self, record):
        self.db.add(record)
        self.db.flush()
        return record

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    def refresh(self, record) -> None:
        self.db.refresh(record)
