from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import func
from db import get_db
from models.models import Invoice, Driver, DeliveryProof, DeliveryStatus
from schemas.schemas import DashboardStats
from routers.auth import Principal, require_admin

router = APIRouter(prefix="/dashboard", tags=["dashboard"])

RANKING_SIZE = 5


@router.get("/stats", response_model=DashboardStats)
async def get_stats(db: Session = Depends(get_db),
                    _: Principal = Depends(require_admin)):
    delivered = Invoice.status == DeliveryStatus.DELIVERED
    failed = Invoice.status == DeliveryStatus.FAILED

    total_delivered = db.query(func.sum(Invoice.value)).filter(delivered).scalar() or 0.0
    total_failed = db.query(func.sum(Invoice.value)).filter(failed).scalar() or 0.0
    total_loss = db.query(func.sum(DeliveryProof.loss_amount)).scalar() or 0.0

    counts = dict(db.query(Invoice.status, func.count(Invoice.id)).group_by(Invoice.status).all())

    # Top drivers by number of completed deliveries
    ranking_rows = (db.query(Driver.id, Driver.name,
                             func.coalesce(func.sum(Invoice.value), 0.0),
                             func.count(Invoice.id))
                    .join(Invoice, Invoice.driver_id == Driver.id)
                    .filter(delivered)
                    .group_by(Driver.id, Driver.name)
                    .order_by(func.count(Invoice.id).desc(), Driver.name)
                    .limit(RANKING_SIZE)
                    .all())

    return DashboardStats(
        total_delivered=total_delivered,
        total_failed=total_failed,
        total_loss=total_loss,
        pending=counts.get(DeliveryStatus.PENDING, 0),
        in_progress=counts.get(DeliveryStatus.IN_PROGRESS, 0),
        delivered=counts.get(DeliveryStatus.DELIVERED, 0),
        failed=counts.get(DeliveryStatus.FAILED, 0),
        ranking=[{"id": r[0], "name": r[1], "value": r[2], "count": r[3]} for r in ranking_rows],
    )
