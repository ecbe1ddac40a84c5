import uuid
import logging
from typing import Dict, Iterable, List, Optional
from sqlalchemy import or_, cast, String
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from config import LOCK_FAILED_INVOICES
from models.models import (Invoice, InvoiceItem, Driver, Vehicle, DeliveryStatus,
                           NotificationType, ADMIN_RECIPIENT)
from services import notification_service
from services.errors import NotFoundError, DuplicateError, InvoiceLockedError

logger = logging.getLogger(__name__)

# Portuguese labels the manager types in the search box
STATUS_LABELS = {
    DeliveryStatus.PENDING: "pendente",
    DeliveryStatus.IN_PROGRESS: "rota",
    DeliveryStatus.DELIVERED: "entregue",
    DeliveryStatus.FAILED: "devolvido",
}

_INVOICE_FIELDS = ("access_key", "number", "series", "customer_name", "customer_doc",
                   "customer_address", "customer_zip", "value")
_ITEM_FIELDS = ("position", "code", "name", "quantity", "unit", "unit_value", "value")


def placeholder_access_key() -> str:
    return f"GEN{uuid.uuid4().hex.upper()}"


def existing_access_keys(db: Session, keys: Iterable[str]) -> set[str]:
    keys = [k for k in keys if k]
    if not keys:
        return set()
    rows = db.query(Invoice.access_key).filter(Invoice.access_key.in_(keys)).all()
    return {r[0] for r in rows}


def create_invoice(db: Session, record: Dict) -> Invoice:
    """
    Persist an extracted invoice record (as returned by the XML extractor or
    the key lookup) with status PENDING and no logistics.
    """
    data = {k: record.get(k) for k in _INVOICE_FIELDS}
    data["access_key"] = data["access_key"] or placeholder_access_key()
    if existing_access_keys(db, [data["access_key"]]):
        raise DuplicateError(f"A nota fiscal {data['number']} já existe.", data["access_key"])

    invoice = Invoice(**data, status=DeliveryStatus.PENDING, driver_id=None, vehicle_id=None)
    for item in record.get("items") or []:
        invoice.items.append(InvoiceItem(**{k: item.get(k) for k in _ITEM_FIELDS}))
    db.add(invoice)
    try:
        db.commit()
    except IntegrityError:
        # Another import committed the same key between the check and the insert
        db.rollback()
        raise DuplicateError(f"A nota fiscal {data['number']} já existe.", data["access_key"])
    db.refresh(invoice)
    logger.info(f"NF {invoice.number} importada (id={invoice.id})")
    return invoice


def get_invoice(db: Session, invoice_id: int) -> Invoice:
    invoice = db.query(Invoice).filter(Invoice.id == invoice_id).first()
    if not invoice:
        raise NotFoundError("Nota não encontrada")
    return invoice


def list_invoices(db: Session, search: Optional[str] = None,
                  driver_id: Optional[int] = None,
                  status: Optional[DeliveryStatus] = None) -> List[Invoice]:
    q = db.query(Invoice)
    if driver_id is not None:
        q = q.filter(Invoice.driver_id == driver_id)
    if status:
        q = q.filter(Invoice.status == status)
    if search:
        term = search.strip().lower()
        statuses = [s for s, label in STATUS_LABELS.items() if term in label]
        conditions = [
            Invoice.number.contains(term),
            Invoice.customer_name.ilike(f"%{term}%"),
            cast(Invoice.value, String).contains(term),
            Invoice.access_key.contains(term),
        ]
        if statuses:
            conditions.append(Invoice.status.in_(statuses))
        q = q.filter(or_(*conditions))
    return q.order_by(Invoice.created_at.desc(), Invoice.id.desc()).all()


def delete_invoice(db: Session, invoice_id: int) -> None:
    invoice = get_invoice(db, invoice_id)
    number = invoice.number
    # items and proof go with it (delete-orphan cascade)
    db.delete(invoice)
    db.commit()
    logger.info(f"NF {number} excluída (id={invoice_id})")


def bulk_delete(db: Session, invoice_ids: Iterable[int]) -> int:
    deleted = 0
    for invoice in db.query(Invoice).filter(Invoice.id.in_(list(invoice_ids))).all():
        db.delete(invoice)
        deleted += 1
    db.commit()
    return deleted


def _ensure_editable(invoice: Invoice, lock_failed: bool) -> None:
    if invoice.status == DeliveryStatus.DELIVERED:
        raise InvoiceLockedError(f"NF {invoice.number} já foi entregue e não pode ser alterada.")
    if lock_failed and invoice.status == DeliveryStatus.FAILED:
        raise InvoiceLockedError(f"NF {invoice.number} foi devolvida e não pode ser alterada.")


def _check_refs(db: Session, driver_id: Optional[int], vehicle_id: Optional[int]) -> None:
    if driver_id is not None and not db.query(Driver.id).filter(Driver.id == driver_id).first():
        raise NotFoundError("Motorista não encontrado")
    if vehicle_id is not None and not db.query(Vehicle.id).filter(Vehicle.id == vehicle_id).first():
        raise NotFoundError("Veículo não encontrado")


def _apply_logistics(db: Session, invoice: Invoice, driver_id: Optional[int],
                     vehicle_id: Optional[int]) -> None:
    driver_changed = driver_id != invoice.driver_id
    redispatch = (driver_changed and driver_id is not None
                  and invoice.status == DeliveryStatus.FAILED)

    invoice.driver_id = driver_id
    invoice.vehicle_id = vehicle_id

    if redispatch:
        # A new attempt starts from scratch; the failed proof cannot coexist with PENDING
        if invoice.proof is not None:
            invoice.proof = None
        invoice.status = DeliveryStatus.PENDING
        logger.info(f"NF {invoice.number} devolvida retornou para pendente")
    elif driver_changed and invoice.status == DeliveryStatus.IN_PROGRESS:
        invoice.status = DeliveryStatus.PENDING

    if driver_id is not None and driver_changed:
        notification_service.publish(db, str(driver_id), "Nova Carga",
                                     f"NF {invoice.number} adicionada.",
                                     NotificationType.INFO, commit=False)


def assign_logistics(db: Session, invoice_id: int, driver_id: Optional[int],
                     vehicle_id: Optional[int],
                     lock_failed: bool = LOCK_FAILED_INVOICES) -> Invoice:
    """
    Set the driver and vehicle of one invoice.

    DELIVERED invoices are always locked (FAILED ones too when lock_failed).
    Setting a different driver puts the invoice back to PENDING and notifies
    that driver; a FAILED invoice handed to a different driver is
    re-dispatched. Vehicle-only changes never touch the status.
    """
    invoice = get_invoice(db, invoice_id)
    _ensure_editable(invoice, lock_failed)
    _check_refs(db, driver_id, vehicle_id)
    _apply_logistics(db, invoice, driver_id, vehicle_id)
    db.commit()
    db.refresh(invoice)
    return invoice


def bulk_assign(db: Session, invoice_ids: Iterable[int],
                driver_id: Optional[int] = None, vehicle_id: Optional[int] = None,
                lock_failed: bool = LOCK_FAILED_INVOICES) -> Dict[str, List[int]]:
    """Apply a driver and/or vehicle to many invoices, keeping the field not given."""
    _check_refs(db, driver_id, vehicle_id)
    updated: List[int] = []
    skipped: List[int] = []
    for invoice in db.query(Invoice).filter(Invoice.id.in_(list(invoice_ids))).all():
        try:
            _ensure_editable(invoice, lock_failed)
        except InvoiceLockedError:
            skipped.append(invoice.id)
            continue
        _apply_logistics(
            db, invoice,
            driver_id if driver_id is not None else invoice.driver_id,
            vehicle_id if vehicle_id is not None else invoice.vehicle_id,
        )
        updated.append(invoice.id)
    db.commit()
    logger.info(f"Atribuição em massa: {len(updated)} atualizadas, {len(skipped)} bloqueadas")
    return {"updated": updated, "skipped": skipped}


def start_route(db: Session, driver_id: int) -> int:
    """Move every PENDING invoice of the driver to IN_PROGRESS in one UPDATE."""
    driver = db.query(Driver).filter(Driver.id == driver_id).first()
    if not driver:
        raise NotFoundError("Motorista não encontrado")
    count = (db.query(Invoice)
             .filter(Invoice.driver_id == driver_id, Invoice.status == DeliveryStatus.PENDING)
             .update({Invoice.status: DeliveryStatus.IN_PROGRESS}, synchronize_session=False))
    if count:
        notification_service.publish(db, ADMIN_RECIPIENT, "Início de Rota",
                                     f"{driver.name or 'Motorista'} iniciou a rota com {count} entregas.",
                                     NotificationType.INFO, commit=False)
    db.commit()
    db.expire_all()
    logger.info(f"Motorista {driver_id} iniciou rota com {count} entregas")
    return count
