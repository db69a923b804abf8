"""
Current-user resolution — bearer tokens issued by the login flow.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from sqlalchemy.orm import Session

from settlement.models import AuthSession, User


class NotAuthenticated(Exception):
    """No valid bearer token on the request."""


@dataclass(frozen=True)
class CurrentUser:
    user_id: str
    email: Optional[str] = None
    role: str = "CUSTOMER"

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"


class CurrentUserResolver(Protocol):
    def resolve(self, authorization: Optional[str]) -> CurrentUser: ...


class SessionTokenResolver:
    """Looks bearer tokens up in the auth_sessions table."""

    def __init__(self, db: Session):
        self.db = db

    def resolve(self, authorization: Optional[str]) -> CurrentUser:
        if not authorization or not authorization.startswith("Bearer "):
            raise NotAuthenticated("Missing bearer token")

        token = authorization[len("Bearer "):].strip()
        session = self.db.query(AuthSession).filter(AuthSession.token == token).first()
        if session is None or session.expires_at <= datetime.utcnow():
            raise NotAuthenticated("Invalid or expired token")

        user = self.db.query(User).filter(User.id == session.user_id).first()
        if user is None:
            raise NotAuthenticated("Unknown user")

        return CurrentUser(user_id=user.id, email=user.email, role=user.role or "CUSTOMER")
