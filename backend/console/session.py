import copy
import inspect
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, Union
from console.api_client import EntregaCertaClient
from console.polling import PollingTask
from services.errors import EntregaError, ValidationError
from config import ADMIN_POLL_INTERVAL, DRIVER_POLL_INTERVAL, LOCATION_REPORT_INTERVAL

logger = logging.getLogger(__name__)

Position = Tuple[float, float]
PositionSource = Callable[[], Union[Optional[Position], Awaitable[Optional[Position]]]]

ROLE_ADMIN = "admin"
ROLE_DRIVER = "driver"


class ProofCapture:
    """
    Evidence being collected for one invoice.

    The first GPS fix seen after the capture opened is frozen and is the one
    submitted, even if the device keeps reporting newer positions.
    """

    def __init__(self, invoice_id: int, initial: Optional[Position] = None):
        self.invoice_id = invoice_id
        self._frozen: Optional[Position] = None
        if initial is not None:
            self.observe(*initial)

    @property
    def coordinates(self) -> Optional[Position]:
        return self._frozen

    def observe(self, lat: float, lng: float) -> None:
        if self._frozen is None:
            self._frozen = (lat, lng)

    def payload(self, delivered: bool, **fields) -> Dict:
        if self._frozen is None:
            raise ValidationError("Aguardando sinal de GPS para registrar o comprovante.")
        data = {"delivered": delivered, "geo_lat": self._frozen[0], "geo_long": self._frozen[1]}
        data.update({k: v for k, v in fields.items() if v is not None})
        return data


class InvoiceBoard:
    """Local copy of the invoice list. Assignments are applied before the
    server answers and reverted when it rejects them."""

    def __init__(self, client: EntregaCertaClient):
        self._client = client
        self.invoices: Dict[int, Dict] = {}

    async def refresh(self, **filters) -> List[Dict]:
        rows = await self._client.list_invoices(**filters)
        self.invoices = {row["id"]: row for row in rows}
        return rows

    async def assign(self, invoice_id: int, driver_id: Optional[int],
                     vehicle_id: Optional[int]) -> Dict:
        previous = copy.deepcopy(self.invoices.get(invoice_id))
        if previous is not None:
            self.invoices[invoice_id] = {**previous, "driver_id": driver_id, "vehicle_id": vehicle_id}
        try:
            updated = await self._client.assign_logistics(invoice_id, driver_id, vehicle_id)
        except EntregaError:
            if previous is not None:
                self.invoices[invoice_id] = previous
            raise
        self.invoices[invoice_id] = updated
        return updated


class ConsoleSession:
    """
    One signed-in console (admin or driver).

    Owns the notification poller and, for drivers, the location reporter.
    Both are cancelled on close(); no background work outlives the session.
    """

    def __init__(self, client: EntregaCertaClient, role: str, driver_id: Optional[int] = None,
                 position_source: Optional[PositionSource] = None,
                 on_notification: Optional[Callable[[Dict], None]] = None,
                 poll_interval: Optional[float] = None,
                 location_interval: float = LOCATION_REPORT_INTERVAL):
        if role == ROLE_DRIVER and driver_id is None:
            raise ValidationError("Sessão de motorista exige o identificador do motorista.")
        self.client = client
        self.role = role
        self.driver_id = driver_id
        self.board = InvoiceBoard(client)
        self.received: List[Dict] = []
        self.last_position: Optional[Position] = None
        self._position_source = position_source
        self._on_notification = on_notification
        self._captures: Dict[int, ProofCapture] = {}

        if poll_interval is None:
            poll_interval = ADMIN_POLL_INTERVAL if role == ROLE_ADMIN else DRIVER_POLL_INTERVAL
        self._tasks: List[PollingTask] = [
            PollingTask(f"notificacoes-{role}", poll_interval, self._poll_notifications)
        ]
        if role == ROLE_DRIVER and position_source is not None:
            self._tasks.append(PollingTask(f"localizacao-{driver_id}", location_interval,
                                           self._report_location))

    @property
    def active(self) -> bool:
        return any(t.running for t in self._tasks)

    async def open(self) -> "ConsoleSession":
        for task in self._tasks:
            task.start()
        return self

    async def close(self) -> None:
        for task in self._tasks:
            await task.stop()
        self._captures.clear()

    async def __aenter__(self):
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def _poll_notifications(self) -> None:
        for note in await self.client.consume_notifications():
            self.received.append(note)
            logger.info(f"[{note['type']}] {note['title']}: {note['message']}")
            if self._on_notification:
                self._on_notification(note)

    async def _read_position(self) -> Optional[Position]:
        position = self._position_source()
        if inspect.isawaitable(position):
            position = await position
        return position

    async def _report_location(self) -> None:
        position = await self._read_position()
        if position is None:
            return
        self.last_position = position
        for capture in self._captures.values():
            capture.observe(*position)
        await self.client.update_location(self.driver_id, *position)

    # ── Proof capture ─────────────────────────────────────────────────────────

    async def begin_capture(self, invoice_id: int) -> ProofCapture:
        """Open the capture screen; the next fix (read now when a source exists) is frozen."""
        capture = ProofCapture(invoice_id)
        self._captures[invoice_id] = capture
        if self._position_source is not None:
            position = await self._read_position()
            if position is not None:
                self.last_position = position
                capture.observe(*position)
        return capture

    def cancel_capture(self, invoice_id: int) -> None:
        self._captures.pop(invoice_id, None)

    async def submit_capture(self, invoice_id: int, delivered: bool, **fields) -> Dict:
        capture = self._captures.get(invoice_id)
        if capture is None:
            raise ValidationError("Nenhuma captura aberta para esta nota.")
        proof = await self.client.submit_proof(invoice_id, capture.payload(delivered, **fields))
        self._captures.pop(invoice_id, None)
        return proof
