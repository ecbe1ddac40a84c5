from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List
from db import get_db
from schemas.schemas import NotificationOut
from services import notification_service
from routers.auth import Principal, get_current_user

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.post("/consume", response_model=List[NotificationOut])
async def consume(db: Session = Depends(get_db),
                  current_user: Principal = Depends(get_current_user)):
    """Unread notifications of the caller; each one is delivered to a single poll."""
    return notification_service.consume(db, current_user.subject)


@router.get("/", response_model=List[NotificationOut])
async def recent(limit: int = 50, db: Session = Depends(get_db),
                 current_user: Principal = Depends(get_current_user)):
    return notification_service.list_recent(db, current_user.subject, limit)
