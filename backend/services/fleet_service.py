import logging
from datetime import datetime, timezone
from typing import List, Optional
from passlib.context import CryptContext
from sqlalchemy.orm import Session
from models.models import Driver, Vehicle, Invoice, DeliveryStatus, TERMINAL_STATUSES
from services.errors import NotFoundError, CredentialError, ValidationError

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["sha256_crypt"], deprecated="auto")


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


# ── Drivers ───────────────────────────────────────────────────────────────────

def list_drivers(db: Session) -> List[Driver]:
    return db.query(Driver).order_by(Driver.name).all()


def get_driver(db: Session, driver_id: int) -> Driver:
    driver = db.query(Driver).filter(Driver.id == driver_id).first()
    if not driver:
        raise NotFoundError("Motorista não encontrado")
    return driver


def create_driver(db: Session, name: str, password: Optional[str] = None) -> Driver:
    if not name or not name.strip():
        raise ValidationError("Nome do motorista é obrigatório")
    driver = Driver(name=name.strip(),
                    hashed_password=get_password_hash(password) if password else None)
    db.add(driver)
    db.commit()
    db.refresh(driver)
    logger.info(f"Motorista cadastrado: {driver.id} {driver.name}")
    return driver


def delete_driver(db: Session, driver_id: int) -> None:
    """Remove a driver; its open deliveries go back to the unassigned PENDING pool."""
    driver = get_driver(db, driver_id)
    (db.query(Invoice)
       .filter(Invoice.driver_id == driver.id, Invoice.status.notin_(TERMINAL_STATUSES))
       .update({Invoice.status: DeliveryStatus.PENDING}, synchronize_session=False))
    (db.query(Invoice)
       .filter(Invoice.driver_id == driver.id)
       .update({Invoice.driver_id: None}, synchronize_session=False))
    db.delete(driver)
    db.commit()
    logger.info(f"Motorista removido: {driver_id}")


def verify_driver_credentials(db: Session, driver_id: int, password: str) -> Driver:
    """Return the driver or raise CredentialError. Drivers without password accept any input."""
    driver = db.query(Driver).filter(Driver.id == driver_id).first()
    if not driver:
        raise CredentialError()
    if driver.hashed_password and not verify_password(password or "", driver.hashed_password):
        raise CredentialError()
    return driver


def update_driver_location(db: Session, driver_id: int, lat: float, lng: float,
                           at: Optional[datetime] = None) -> Driver:
    driver = get_driver(db, driver_id)
    driver.last_lat = lat
    driver.last_lng = lng
    driver.last_location_at = at or datetime.now(timezone.utc)
    db.commit()
    db.refresh(driver)
    return driver


# ── Vehicles ──────────────────────────────────────────────────────────────────

def list_vehicles(db: Session) -> List[Vehicle]:
    return db.query(Vehicle).order_by(Vehicle.plate).all()


def get_vehicle(db: Session, vehicle_id: int) -> Vehicle:
    vehicle = db.query(Vehicle).filter(Vehicle.id == vehicle_id).first()
    if not vehicle:
        raise NotFoundError("Veículo não encontrado")
    return vehicle


def create_vehicle(db: Session, plate: str, model: str) -> Vehicle:
    if not plate or not model:
        raise ValidationError("Placa e modelo são obrigatórios")
    vehicle = Vehicle(plate=plate.strip().upper(), model=model.strip())
    db.add(vehicle)
    db.commit()
    db.refresh(vehicle)
    return vehicle


def delete_vehicle(db: Session, vehicle_id: int) -> None:
    vehicle = get_vehicle(db, vehicle_id)
    (db.query(Invoice)
       .filter(Invoice.vehicle_id == vehicle.id)
       .update({Invoice.vehicle_id: None}, synchronize_session=False))
    db.delete(vehicle)
    db.commit()
