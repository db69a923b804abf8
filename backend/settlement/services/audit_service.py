"""
Audit Service — Manages the immutable, hash-chained settlement trail.
"""
import hashlib
import json
from datetime import datetime
from typing import Optional, Dict

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settlement.models.audit import AuditLog

logger = structlog.get_logger(__name__)

APPEND_ATTEMPTS = 3


def entry_hash(payload: Dict, previous_hash: str = "") -> str:
    """SHA-256 over the previous entry's hash and the canonical JSON of this payload."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256()
    digest.update(previous_hash.encode("utf-8"))
    digest.update(hashlib.sha256(canonical.encode("utf-8")).hexdigest().encode("utf-8"))
    return digest.hexdigest()


class AuditService:
    """Creates tamper-evident audit log entries with hash chaining per reference."""

    @staticmethod
    def log(
        db: Session,
        reference: str,
        action: str,
        payload: Optional[Dict] = None,
        source: Optional[str] = None,
        metadata: Optional[Dict] = None,
    ) -> AuditLog:
        """Create an audit log entry with hash chaining.

        Args:
            db: Database session.
            reference: Gateway reference this action belongs to.
            action: Action identifier (e.g. ORDER_SETTLED, WALLET_CREDITED).
            payload: Data payload to hash.
            source: Entry point that caused the action (webhook | verify).
            metadata: Additional metadata to store.

        Returns:
            The created AuditLog entry.

        Raises:
            IntegrityError: when the chain tail kept moving for every attempt.
        """
        payload_data = payload or {}
        for attempt in range(1, APPEND_ATTEMPTS + 1):
            previous_hash = AuditService._last_hash(db, reference)
            entry = AuditLog(
                reference=reference,
                action=action,
                payload_hash=entry_hash(payload_data, previous_hash),
                previous_hash=previous_hash,
                source=source,
                log_metadata={**(metadata or {}), "payload": payload_data},
                timestamp=datetime.utcnow(),
            )

            db.add(entry)
            try:
                db.commit()
            except IntegrityError:
                # Another writer appended after our read; link to the new tail
                db.rollback()
                if attempt == APPEND_ATTEMPTS:
                    raise
                logger.warning("audit_chain_contended", reference=reference, action=action, attempt=attempt)
            except Exception:
                db.rollback()
                raise
            db.refresh(entry)
            return entry

    @staticmethod
    def _last_hash(db: Session, reference: str) -> str:
        last_entry = (
            db.query(AuditLog)
            .filter(AuditLog.reference == reference)
            .order_by(AuditLog.id.desc())
            .first()
        )
        return last_entry.payload_hash if last_entry else ""

    @staticmethod
    def get_trail(db: Session, reference: str) -> list[AuditLog]:
        """Get the full audit trail for a reference, ordered chronologically."""
        return (
            db.query(AuditLog)
            .filter(AuditLog.reference == reference)
            .order_by(AuditLog.id.asc())
            .all()
        )

    @staticmethod
    def verify_chain(db: Session, reference: str) -> dict:
        """Verify the integrity of the audit chain for a reference.

        Each entry's hash is recomputed from its stored payload and the
        previous entry's hash, so both re-linking and payload edits show up.

        Returns:
            dict with 'valid' (bool), 'total_entries', and 'broken_at' (if invalid).
        """
        entries = AuditService.get_trail(db, reference)

        if not entries:
            return {"valid": True, "total_entries": 0, "broken_at": None}

        for i, entry in enumerate(entries):
            expected_prev = entries[i - 1].payload_hash if i > 0 else ""
            payload = (entry.log_metadata or {}).get("payload", {})
            if entry.previous_hash != expected_prev or entry.payload_hash != entry_hash(payload, expected_prev):
                return {
                    "valid": False,
                    "total_entries": len(entries),
                    "broken_at": entry.id,
                    "message": f"Chain broken at entry {entry.id} ({entry.action})",
                }

        return {"valid": True, "total_entries": len(entries), "broken_at": None}
