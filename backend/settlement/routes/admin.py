"""
Admin Routes — Reconciliation overview and settlement audit trail access.
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from sqlalchemy import func

from settlement.database import get_db
from settlement.dependencies import require_admin
from settlement.models import Order, Payment, PaymentStatus, Reward, WalletTransaction, WalletTransactionType
from settlement.schemas.schemas import AuditLogEntry, ReconciliationSummaryResponse
from settlement.services.audit_service import AuditService

router = APIRouter(prefix="/api/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


@router.get("/reconciliation/summary", response_model=ReconciliationSummaryResponse)
def get_reconciliation_summary(db: Session = Depends(get_db)):
    """Aggregated settlement state for the back office."""

    payment_counts = db.query(
        Payment.status, func.count(Payment.id)
    ).group_by(Payment.status).all()
    payments_by_status = {s: c for s, c in payment_counts}

    settled_volume = db.query(func.coalesce(func.sum(Payment.amount), 0.0)).filter(
        Payment.status == PaymentStatus.COMPLETED
    ).scalar() or 0.0

    pending_orders = db.query(func.count(Order.id)).filter(
        Order.payment_status == PaymentStatus.PENDING
    ).scalar() or 0
    failed_orders = db.query(func.count(Order.id)).filter(
        Order.payment_status == PaymentStatus.FAILED
    ).scalar() or 0

    pending_wallet = db.query(func.count(WalletTransaction.id)).filter(
        WalletTransaction.type == WalletTransactionType.CREDIT,
        WalletTransaction.status == PaymentStatus.PENDING,
    ).scalar() or 0

    rewards_issued = db.query(func.count(Reward.id)).scalar() or 0

    return ReconciliationSummaryResponse(
        payments_by_status=payments_by_status,
        settled_volume=round(float(settled_volume), 2),
        pending_orders=pending_orders,
        failed_orders=failed_orders,
        pending_wallet_fundings=pending_wallet,
        rewards_issued=rewards_issued,
    )


@router.get("/payments/{reference}/audit", response_model=list[AuditLogEntry])
def get_audit_trail(reference: str, db: Session = Depends(get_db)):
    """Get the full settlement audit trail for a gateway reference."""
    logs = AuditService.get_trail(db, reference)

    if not logs:
        raise HTTPException(status_code=404, detail="No audit logs found for this reference")

    return logs


@router.get("/payments/{reference}/audit/verify")
def verify_audit_chain(reference: str, db: Session = Depends(get_db)):
    """Verify the integrity of the audit hash chain for a reference."""
    return AuditService.verify_chain(db, reference)
