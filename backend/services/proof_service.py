"""
Delivery proof capture: validation of the success/failure flows, return-loss
calculation and the IN_PROGRESS → DELIVERED | FAILED transition.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from models.models import (Invoice, InvoiceItem, DeliveryProof, DeliveryStatus, ReturnType,
                           NotificationType, ADMIN_RECIPIENT)
from services import notification_service
from services.errors import ValidationError, NotFoundError, InvalidTransitionError
from services.invoice_service import get_invoice

logger = logging.getLogger(__name__)

TOTAL_RETURN_TEXT = "Devolução total da mercadoria."


def render_item_line(item: InvoiceItem) -> str:
    qty = f"{item.quantity or 0:g}"
    return f"[{item.code or '-'}] {item.name or ''} ({qty} {item.unit or ''}) - {item.value or 0:.2f}"


def select_items(invoice: Invoice, positions: Iterable[int]) -> List[InvoiceItem]:
    by_position = {item.position: item for item in invoice.items}
    selected = []
    for pos in dict.fromkeys(positions):
        if pos not in by_position:
            raise ValidationError(f"Item {pos} não pertence à NF {invoice.number}")
        selected.append(by_position[pos])
    return selected


def compute_loss(invoice: Invoice, return_type: Optional[ReturnType],
                 selected: Iterable[InvoiceItem] = ()) -> float:
    """Advisory loss of a failed delivery; not checked against the invoice total."""
    if return_type == ReturnType.TOTAL:
        return float(invoice.value or 0)
    if return_type == ReturnType.PARTIAL:
        return round(sum(item.value or 0 for item in selected), 2)
    return 0.0


def build_proof(invoice: Invoice, delivered: bool, *,
                receiver_name: Optional[str] = None,
                receiver_doc: Optional[str] = None,
                signature_data: Optional[str] = None,
                photo_url: Optional[str] = None,
                photo_stub_url: Optional[str] = None,
                failure_reason: Optional[str] = None,
                return_type: Optional[ReturnType | str] = None,
                return_items: Optional[str] = None,
                selected_items: Optional[Iterable[int]] = None,
                geo_lat: Optional[float] = None,
                geo_long: Optional[float] = None,
                notes: Optional[str] = None,
                delivered_at: Optional[datetime] = None) -> DeliveryProof:
    """Validate one capture flow and return the (unsaved) proof."""
    proof = DeliveryProof(
        invoice_id=invoice.id,
        receiver_doc=receiver_doc,
        photo_url=photo_url,
        photo_stub_url=photo_stub_url,
        geo_lat=geo_lat,
        geo_long=geo_long,
        notes=notes,
        delivered_at=delivered_at or datetime.now(timezone.utc),
    )

    if delivered:
        # a failure reason always means FAILED; never drop it silently
        if failure_reason and failure_reason.strip():
            raise ValidationError("Entrega com motivo de devolução: registre como devolução.")
        if not receiver_name or not receiver_name.strip():
            raise ValidationError("Nome do recebedor é obrigatório.")
        if not signature_data and not photo_url:
            raise ValidationError("É necessário pelo menos uma Assinatura ou Foto para comprovar a entrega.")
        proof.receiver_name = receiver_name.strip()
        proof.signature_data = signature_data
        proof.loss_amount = 0.0
        return proof

    if not failure_reason or not failure_reason.strip():
        raise ValidationError("Informe o motivo da devolução.")
    if not return_type:
        raise ValidationError("Informe o tipo de devolução (TOTAL ou PARCIAL).")
    try:
        return_type = ReturnType(return_type)
    except ValueError:
        raise ValidationError(f"Tipo de devolução inválido: {return_type}")

    proof.receiver_name = receiver_name
    proof.signature_data = signature_data
    proof.failure_reason = failure_reason.strip()
    proof.return_type = return_type

    if return_type == ReturnType.TOTAL:
        proof.return_items = TOTAL_RETURN_TEXT
        proof.loss_amount = compute_loss(invoice, return_type)
    elif invoice.items:
        selected = select_items(invoice, selected_items or [])
        if not selected:
            raise ValidationError("Selecione ao menos um item devolvido.")
        proof.return_items = "\n".join(render_item_line(i) for i in selected)
        proof.loss_amount = compute_loss(invoice, return_type, selected)
    else:
        if not return_items or not return_items.strip():
            raise ValidationError("Descreva as mercadorias devolvidas.")
        proof.return_items = return_items.strip()
        proof.loss_amount = 0.0
    return proof


def submit_proof(db: Session, invoice_id: int, delivered: bool, **fields) -> DeliveryProof:
    """
    Record the single proof of an IN_PROGRESS invoice and close it as
    DELIVERED or FAILED. Proof and status change are committed together.
    """
    invoice = get_invoice(db, invoice_id)
    if invoice.proof is not None:
        raise InvalidTransitionError(f"NF {invoice.number} já possui comprovante registrado.")
    if invoice.status != DeliveryStatus.IN_PROGRESS:
        raise InvalidTransitionError(
            f"NF {invoice.number} não está em rota; inicie a rota antes de registrar a baixa.")

    proof = build_proof(invoice, delivered, **fields)
    invoice.proof = proof
    invoice.status = DeliveryStatus.DELIVERED if delivered else DeliveryStatus.FAILED

    if delivered:
        notification_service.publish(db, ADMIN_RECIPIENT, "Entrega Realizada",
                                     f"NF {invoice.number} entregue para {proof.receiver_name}.",
                                     NotificationType.SUCCESS, commit=False)
    else:
        notification_service.publish(db, ADMIN_RECIPIENT, "Entrega Devolvida",
                                     f"NF {invoice.number}: {proof.failure_reason}",
                                     NotificationType.WARNING, commit=False)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise InvalidTransitionError(f"NF {invoice.number} já possui comprovante registrado.")
    db.refresh(proof)
    logger.info(f"Comprovante salvo: NF {invoice.number} → {invoice.status.value}")
    return proof


def get_proof(db: Session, invoice_id: int) -> DeliveryProof:
    proof = db.query(DeliveryProof).filter(DeliveryProof.invoice_id == invoice_id).first()
    if not proof:
        raise NotFoundError("Comprovante ainda não sincronizado ou não encontrado.")
    return proof
