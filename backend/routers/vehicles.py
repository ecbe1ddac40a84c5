from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List
from db import get_db
from schemas.schemas import VehicleCreate, VehicleOut
from services import fleet_service
from routers.auth import Principal, get_current_user, require_admin

router = APIRouter(prefix="/vehicles", tags=["vehicles"])


@router.get("/", response_model=List[VehicleOut])
async def list_vehicles(db: Session = Depends(get_db),
                        _: Principal = Depends(get_current_user)):
    return fleet_service.list_vehicles(db)


@router.post("/", response_model=VehicleOut)
async def create_vehicle(data: VehicleCreate, db: Session = Depends(get_db),
                         _: Principal = Depends(require_admin)):
    return fleet_service.create_vehicle(db, data.plate, data.model)


@router.delete("/{vehicle_id}")
async def delete_vehicle(vehicle_id: int, db: Session = Depends(get_db),
                         _: Principal = Depends(require_admin)):
    fleet_service.delete_vehicle(db, vehicle_id)
    return {"ok": True}
