import httpx
import logging
from typing import Dict, Iterable, List, Optional, Tuple
from services.errors import (ValidationError, DuplicateError, CredentialError, NotFoundError,
                             InvalidTransitionError, InvoiceLockedError, RemoteOperationError)

logger = logging.getLogger(__name__)

_STATUS_ERRORS = {
    400: ValidationError,
    401: CredentialError,
    404: NotFoundError,
    409: InvalidTransitionError,
}

_NAMED_ERRORS = {cls.__name__: cls for cls in (
    ValidationError, DuplicateError, CredentialError, NotFoundError,
    InvalidTransitionError, InvoiceLockedError, RemoteOperationError,
)}


class EntregaCertaClient:
    """Thin async client over the /api endpoints used by both consoles."""

    def __init__(self, base_url: str, token: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 timeout: float = 15.0):
        self._http = httpx.AsyncClient(base_url=base_url.rstrip("/") + "/api",
                                       transport=transport, timeout=timeout)
        self.token = token

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs):
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            resp = await self._http.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} falhou: {e}")
            raise RemoteOperationError("Falha de comunicação com o servidor.")
        try:
            body = resp.json()
        except ValueError:
            body = None
        if resp.status_code >= 400:
            body = body if isinstance(body, dict) else {}
            detail = body.get("detail", resp.text)
            if not isinstance(detail, str):
                detail = str(detail)
            # domain errors name their class; 409 alone does not tell a duplicate from a lock
            error_cls = (_NAMED_ERRORS.get(body.get("error"))
                         or _STATUS_ERRORS.get(resp.status_code, RemoteOperationError))
            raise error_cls(detail)
        if body is None:
            logger.error(f"{method} {path}: resposta sem JSON ({resp.status_code})")
            raise RemoteOperationError("Resposta inválida do servidor.")
        return body

    # ── Auth ──────────────────────────────────────────────────────────────────

    async def login_admin(self, password: str) -> Dict:
        data = await self._request("POST", "/auth/admin", json={"password": password})
        self.token = data["access_token"]
        return data

    async def login_driver(self, driver_id: int, password: str) -> Dict:
        data = await self._request("POST", "/auth/driver",
                                   json={"driver_id": driver_id, "password": password})
        self.token = data["access_token"]
        return data

    # ── Invoices ──────────────────────────────────────────────────────────────

    async def list_invoices(self, **filters) -> List[Dict]:
        params = {k: v for k, v in filters.items() if v is not None}
        return await self._request("GET", "/invoices/", params=params)

    async def import_batch(self, documents: Iterable[Tuple[str, bytes]]) -> Dict:
        files = [("files", (name, content, "application/xml")) for name, content in documents]
        return await self._request("POST", "/invoices/import", files=files)

    async def import_by_key(self, access_key: str) -> Dict:
        return await self._request("POST", "/invoices/lookup", json={"access_key": access_key})

    async def assign_logistics(self, invoice_id: int, driver_id: Optional[int],
                               vehicle_id: Optional[int]) -> Dict:
        return await self._request("PUT", f"/invoices/{invoice_id}/logistics",
                                   json={"driver_id": driver_id, "vehicle_id": vehicle_id})

    async def submit_proof(self, invoice_id: int, payload: Dict) -> Dict:
        return await self._request("POST", f"/invoices/{invoice_id}/proof", json=payload)

    async def get_proof(self, invoice_id: int) -> Dict:
        return await self._request("GET", f"/invoices/{invoice_id}/proof")

    # ── Drivers / mailbox ─────────────────────────────────────────────────────

    async def start_route(self, driver_id: int) -> int:
        data = await self._request("POST", f"/drivers/{driver_id}/start-route")
        return data["started"]

    async def update_location(self, driver_id: int, lat: float, lng: float) -> Dict:
        return await self._request("PUT", f"/drivers/{driver_id}/location",
                                   json={"lat": lat, "lng": lng})

    async def consume_notifications(self) -> List[Dict]:
        return await self._request("POST", "/notifications/consume")
