import io
import csv
import logging
from fastapi import APIRouter, Depends, HTTPException, UploadFile, File
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
from typing import List, Optional
from db import get_db
from models.models import DeliveryStatus
from schemas.schemas import (InvoiceOut, LogisticsUpdate, BulkAssign, BulkAssignResult, BulkDelete,
                             AccessKeyImport, ImportSummary, ProofCreate, ProofOut, InvoiceLinks)
from services import import_service, invoice_service, proof_service, evidence_service
from services.barcode_service import scan_access_key
from services.links_service import invoice_links, google_maps_pin
from routers.auth import Principal, get_current_user, require_admin, ensure_driver_access

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/invoices", tags=["invoices"])

_XML_TYPES = {"application/xml", "text/xml"}


def _is_xml(file: UploadFile) -> bool:
    return (file.content_type or "").lower() in _XML_TYPES or (file.filename or "").lower().endswith(".xml")


def _proof_out(proof) -> ProofOut:
    out = ProofOut.model_validate(proof)
    if proof.geo_lat is not None and proof.geo_long is not None:
        out.map_url = google_maps_pin(proof.geo_lat, proof.geo_long)
    return out


def _get_visible(db: Session, invoice_id: int, current_user: Principal):
    invoice = invoice_service.get_invoice(db, invoice_id)
    ensure_driver_access(current_user, invoice.driver_id)
    return invoice


# ── Import ────────────────────────────────────────────────────────────────────

@router.post("/upload", response_model=InvoiceOut)
async def upload_xml(file: UploadFile = File(...),
                     db: Session = Depends(get_db),
                     _: Principal = Depends(require_admin)):
    if not _is_xml(file):
        raise HTTPException(status_code=400, detail="Formato não suportado. Envie o XML da NF-e")
    content = await file.read()
    return import_service.import_document(db, file.filename or "upload.xml", content)


@router.post("/import", response_model=ImportSummary)
async def import_xml_batch(files: List[UploadFile] = File(...),
                           db: Session = Depends(get_db),
                           _: Principal = Depends(require_admin)):
    documents = []
    for f in files:
        documents.append((f.filename or "sem_nome.xml", await f.read()))
    return import_service.import_batch(db, documents)


@router.post("/lookup", response_model=InvoiceOut)
async def import_by_key(data: AccessKeyImport,
                        db: Session = Depends(get_db),
                        _: Principal = Depends(require_admin)):
    return await import_service.import_by_access_key(db, data.access_key)


@router.post("/scan", response_model=InvoiceOut)
async def import_by_danfe_photo(file: UploadFile = File(...),
                                db: Session = Depends(get_db),
                                _: Principal = Depends(require_admin)):
    """Read the access key from a DANFE barcode / NFC-e QR photo and import it."""
    key = scan_access_key(await file.read())
    if not key:
        raise HTTPException(status_code=400, detail="Nenhuma chave de acesso encontrada na imagem")
    return await import_service.import_by_access_key(db, key)


# ── Export ────────────────────────────────────────────────────────────────────

@router.get("/export/csv")
async def export_csv(status: Optional[DeliveryStatus] = None,
                     driver_id: Optional[int] = None,
                     db: Session = Depends(get_db),
                     _: Principal = Depends(require_admin)):
    invoices = invoice_service.list_invoices(db, driver_id=driver_id, status=status)
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(["ID", "NF", "Série", "Chave de Acesso", "Cliente", "Documento",
                     "Endereço", "CEP", "Valor", "Status", "Motorista", "Veículo",
                     "Prejuízo", "Data Importação"])
    for inv in invoices:
        writer.writerow([inv.id, inv.number, inv.series, inv.access_key, inv.customer_name,
                         inv.customer_doc, inv.customer_address, inv.customer_zip, inv.value,
                         inv.status.value,
                         inv.driver.name if inv.driver else "",
                         inv.vehicle.plate if inv.vehicle else "",
                         inv.proof.loss_amount if inv.proof else "",
                         inv.created_at])
    output.seek(0)
    return StreamingResponse(
        io.BytesIO(output.getvalue().encode("utf-8-sig")),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=entregas.csv"},
    )


# ── Listing / CRUD ────────────────────────────────────────────────────────────

@router.get("/", response_model=List[InvoiceOut])
async def list_invoices(search: Optional[str] = None,
                        status: Optional[DeliveryStatus] = None,
                        driver_id: Optional[int] = None,
                        db: Session = Depends(get_db),
                        current_user: Principal = Depends(get_current_user)):
    if not current_user.is_admin:
        driver_id = current_user.driver_id
    return invoice_service.list_invoices(db, search=search, driver_id=driver_id, status=status)


@router.post("/bulk-assign", response_model=BulkAssignResult)
async def bulk_assign(data: BulkAssign, db: Session = Depends(get_db),
                      _: Principal = Depends(require_admin)):
    if data.driver_id is None and data.vehicle_id is None:
        raise HTTPException(status_code=400, detail="Selecione um motorista ou veículo para atribuir.")
    return invoice_service.bulk_assign(db, data.invoice_ids, data.driver_id, data.vehicle_id)


@router.post("/bulk-delete")
async def bulk_delete(data: BulkDelete, db: Session = Depends(get_db),
                      _: Principal = Depends(require_admin)):
    return {"deleted": invoice_service.bulk_delete(db, data.invoice_ids)}


@router.get("/{invoice_id}", response_model=InvoiceOut)
async def get_invoice(invoice_id: int, db: Session = Depends(get_db),
                      current_user: Principal = Depends(get_current_user)):
    return _get_visible(db, invoice_id, current_user)


@router.put("/{invoice_id}/logistics", response_model=InvoiceOut)
async def update_logistics(invoice_id: int, data: LogisticsUpdate,
                           db: Session = Depends(get_db),
                           _: Principal = Depends(require_admin)):
    return invoice_service.assign_logistics(db, invoice_id, data.driver_id, data.vehicle_id)


@router.delete("/{invoice_id}")
async def delete_invoice(invoice_id: int, db: Session = Depends(get_db),
                         _: Principal = Depends(require_admin)):
    invoice_service.delete_invoice(db, invoice_id)
    return {"ok": True}


@router.get("/{invoice_id}/links", response_model=InvoiceLinks)
async def get_links(invoice_id: int, db: Session = Depends(get_db),
                    current_user: Principal = Depends(get_current_user)):
    return invoice_links(_get_visible(db, invoice_id, current_user))


# ── Proof ─────────────────────────────────────────────────────────────────────

@router.post("/{invoice_id}/proof", response_model=ProofOut)
async def submit_proof(invoice_id: int, data: ProofCreate,
                       db: Session = Depends(get_db),
                       current_user: Principal = Depends(get_current_user)):
    _get_visible(db, invoice_id, current_user)
    fields = data.model_dump(exclude={"delivered"})
    fields["signature_data"] = evidence_service.normalize_signature(data.signature_data)
    fields["photo_url"] = evidence_service.normalize_photo(data.photo_url, "Foto do local")
    fields["photo_stub_url"] = evidence_service.normalize_photo(data.photo_stub_url, "Foto do canhoto")
    proof = proof_service.submit_proof(db, invoice_id, data.delivered, **fields)
    return _proof_out(proof)


@router.get("/{invoice_id}/proof", response_model=ProofOut)
async def get_proof(invoice_id: int, db: Session = Depends(get_db),
                    current_user: Principal = Depends(get_current_user)):
    _get_visible(db, invoice_id, current_user)
    return _proof_out(proof_service.get_proof(db, invoice_id))
