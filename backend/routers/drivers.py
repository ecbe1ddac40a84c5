from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List
from db import get_db
from models.models import TERMINAL_STATUSES
from schemas.schemas import DriverCreate, DriverOut, LocationUpdate, RouteStarted, RouteLink
from services import fleet_service, invoice_service
from services.links_service import full_route, full_address
from routers.auth import Principal, get_current_user, require_admin, ensure_driver_access

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.get("/", response_model=List[DriverOut])
async def list_drivers(db: Session = Depends(get_db),
                       _: Principal = Depends(require_admin)):
    return fleet_service.list_drivers(db)


@router.post("/", response_model=DriverOut)
async def create_driver(data: DriverCreate, db: Session = Depends(get_db),
                        _: Principal = Depends(require_admin)):
    return fleet_service.create_driver(db, data.name, data.password)


@router.get("/{driver_id}", response_model=DriverOut)
async def get_driver(driver_id: int, db: Session = Depends(get_db),
                     current_user: Principal = Depends(get_current_user)):
    ensure_driver_access(current_user, driver_id)
    return fleet_service.get_driver(db, driver_id)


@router.delete("/{driver_id}")
async def delete_driver(driver_id: int, db: Session = Depends(get_db),
                        _: Principal = Depends(require_admin)):
    fleet_service.delete_driver(db, driver_id)
    return {"ok": True}


@router.post("/{driver_id}/start-route", response_model=RouteStarted)
async def start_route(driver_id: int, db: Session = Depends(get_db),
                      current_user: Principal = Depends(get_current_user)):
    ensure_driver_access(current_user, driver_id)
    return {"started": invoice_service.start_route(db, driver_id)}


@router.put("/{driver_id}/location", response_model=DriverOut)
async def update_location(driver_id: int, data: LocationUpdate,
                          db: Session = Depends(get_db),
                          current_user: Principal = Depends(get_current_user)):
    ensure_driver_access(current_user, driver_id)
    return fleet_service.update_driver_location(db, driver_id, data.lat, data.lng)


@router.get("/{driver_id}/route-link", response_model=RouteLink)
async def route_link(driver_id: int, db: Session = Depends(get_db),
                     current_user: Principal = Depends(get_current_user)):
    """Google Maps directions through every open stop of the driver."""
    ensure_driver_access(current_user, driver_id)
    open_stops = [inv for inv in invoice_service.list_invoices(db, driver_id=driver_id)
                  if inv.status not in TERMINAL_STATUSES]
    open_stops.sort(key=lambda inv: inv.id)
    addresses = [full_address(inv.customer_address, inv.customer_zip) for inv in open_stops]
    return {"url": full_route(addresses), "stops": len(addresses)}
