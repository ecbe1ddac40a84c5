import json
import asyncio
import httpx
import pytest
from console.api_client import EntregaCertaClient
from console.polling import PollingTask
from console.session import ConsoleSession, ProofCapture
from services.errors import (DuplicateError, InvalidTransitionError, InvoiceLockedError,
                             RemoteOperationError, ValidationError)


class FakeApi:
    """In-memory stand-in for the HTTP API, driven through httpx.MockTransport."""

    def __init__(self):
        self.mailbox = []
        self.locations = []
        self.proofs = {}
        self.reject_assign = False
        self.invoices = {1: {"id": 1, "number": "1001", "driver_id": None, "vehicle_id": None,
                             "status": "PENDING"}}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/api")
        body = json.loads(request.content) if request.content else {}
        if path == "/auth/driver":
            return httpx.Response(200, json={"access_token": "tok", "token_type": "bearer",
                                             "role": "driver", "subject": str(body["driver_id"])})
        assert request.headers.get("Authorization") == "Bearer tok"
        if path == "/notifications/consume":
            delivered, self.mailbox = self.mailbox, []
            return httpx.Response(200, json=delivered)
        if path.endswith("/location"):
            self.locations.append((body["lat"], body["lng"]))
            return httpx.Response(200, json={"id": 7, "name": "João"})
        if path == "/invoices/":
            return httpx.Response(200, json=list(self.invoices.values()))
        if path.endswith("/logistics"):
            if self.reject_assign:
                return httpx.Response(409, json={"detail": "NF 1001 já foi entregue e não pode ser alterada.",
                                                 "error": "InvoiceLockedError"})
            invoice = {**self.invoices[1], **body}
            self.invoices[1] = invoice
            return httpx.Response(200, json=invoice)
        if path.endswith("/proof"):
            self.proofs[1] = body
            return httpx.Response(200, json={"invoice_id": 1, **body})
        return httpx.Response(404, json={"detail": "Not Found"})


def _note(title):
    return {"id": 1, "recipient_id": "7", "title": title, "message": "NF 1001 adicionada.",
            "type": "INFO", "read": True, "timestamp": None}


async def _wait_for(condition, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def _client(api):
    return EntregaCertaClient("http://testserver", transport=httpx.MockTransport(api))


def test_polling_task_runs_until_stopped():
    calls = []

    async def run():
        async def action():
            calls.append(1)

        task = PollingTask("teste", 0.01, action)
        task.start()
        await _wait_for(lambda: len(calls) >= 3)
        await task.stop()
        stopped_at = len(calls)
        await asyncio.sleep(0.05)
        return task, stopped_at

    task, stopped_at = asyncio.run(run())
    assert not task.running
    assert len(calls) == stopped_at


def test_polling_task_survives_failed_cycle():
    errors = []
    calls = []

    async def run():
        async def action():
            calls.append(1)
            if len(calls) == 1:
                raise RemoteOperationError("Falha de comunicação com o servidor.")

        task = PollingTask("teste", 0.01, action, on_error=errors.append)
        task.start()
        await _wait_for(lambda: len(calls) >= 2)
        await task.stop()

    asyncio.run(run())
    assert len(errors) == 1


def test_polling_task_survives_unexpected_error():
    errors = []
    calls = []

    async def run():
        async def action():
            calls.append(1)
            if len(calls) == 1:
                raise ValueError("resposta não-JSON")

        task = PollingTask("teste", 0.01, action, on_error=errors.append)
        task.start()
        await _wait_for(lambda: len(calls) >= 3)
        running = task.running
        await task.stop()
        return running

    assert asyncio.run(run()) is True
    assert [type(e) for e in errors] == [ValueError]


def test_session_closes_cleanly_when_gps_fails():
    api = FakeApi()

    def broken_gps():
        raise OSError("GPS indisponível")

    async def run():
        client = _client(api)
        await client.login_driver(7, "")
        session = ConsoleSession(client, "driver", driver_id=7, position_source=broken_gps,
                                 poll_interval=0.01, location_interval=0.01)
        await session.open()
        await asyncio.sleep(0.05)
        still_polling = session.active
        await session.close()
        await client.aclose()
        return session, still_polling

    session, still_polling = asyncio.run(run())
    assert still_polling
    assert not session.active
    assert api.locations == []


def test_capture_freezes_first_fix():
    capture = ProofCapture(1)
    with pytest.raises(ValidationError):
        capture.payload(True)

    capture.observe(-22.9, -47.06)
    capture.observe(-23.5, -46.6)

    payload = capture.payload(True, receiver_name="Ana", signature_data=None)
    assert payload == {"delivered": True, "geo_lat": -22.9, "geo_long": -47.06, "receiver_name": "Ana"}


def test_driver_session_polls_reports_and_tears_down():
    api = FakeApi()
    api.mailbox.append(_note("Nova Carga"))
    fixes = [(-22.9, -47.06)]

    async def run():
        client = _client(api)
        await client.login_driver(7, "")
        session = ConsoleSession(client, "driver", driver_id=7, position_source=lambda: fixes[0],
                                 poll_interval=0.01, location_interval=0.01)
        async with session:
            assert session.active
            await _wait_for(lambda: session.received and api.locations)

            capture = await session.begin_capture(1)
            fixes[0] = (-23.5, -46.6)
            await _wait_for(lambda: session.last_position == (-23.5, -46.6))
            assert capture.coordinates == (-22.9, -47.06)

            await session.submit_capture(1, True, receiver_name="Ana", signature_data="data:x")
        reports = len(api.locations)
        await asyncio.sleep(0.05)
        await client.aclose()
        return session, reports

    session, reports = asyncio.run(run())
    assert [n["title"] for n in session.received] == ["Nova Carga"]
    assert api.proofs[1]["geo_lat"] == -22.9
    assert api.proofs[1]["geo_long"] == -47.06
    assert not session.active
    assert len(api.locations) == reports


def test_driver_session_requires_driver_id():
    with pytest.raises(ValidationError):
        ConsoleSession(_client(FakeApi()), "driver")


def test_board_applies_assignment_optimistically():
    api = FakeApi()

    async def run():
        client = _client(api)
        await client.login_driver(7, "")
        session = ConsoleSession(client, "admin")
        await session.board.refresh()
        updated = await session.board.assign(1, 7, 3)
        await client.aclose()
        return session.board, updated

    board, updated = asyncio.run(run())
    assert updated["driver_id"] == 7
    assert board.invoices[1]["vehicle_id"] == 3


def test_board_rolls_back_rejected_assignment():
    api = FakeApi()
    api.reject_assign = True

    async def run():
        client = _client(api)
        await client.login_driver(7, "")
        board = ConsoleSession(client, "admin").board
        await board.refresh()
        with pytest.raises(InvoiceLockedError, match="não pode ser alterada"):
            await board.assign(1, 7, None)
        await client.aclose()
        return board

    board = asyncio.run(run())
    assert board.invoices[1]["driver_id"] is None


def test_transport_failure_becomes_remote_error():
    def handler(request):
        raise httpx.ConnectError("offline", request=request)

    async def run():
        client = EntregaCertaClient("http://testserver", token="tok",
                                    transport=httpx.MockTransport(handler))
        try:
            await client.consume_notifications()
        finally:
            await client.aclose()

    with pytest.raises(RemoteOperationError):
        asyncio.run(run())


def _raising_client(status, body):
    def handler(request):
        return httpx.Response(status, json=body)
    return EntregaCertaClient("http://testserver", token="tok", transport=httpx.MockTransport(handler))


def test_conflicts_keep_their_error_class():
    async def run(status, body):
        client = _raising_client(status, body)
        try:
            await client.import_by_key("3" * 44)
        finally:
            await client.aclose()

    with pytest.raises(DuplicateError, match="já importada"):
        asyncio.run(run(409, {"detail": "NF 1001 já importada.", "error": "DuplicateError"}))
    with pytest.raises(InvalidTransitionError):
        asyncio.run(run(409, {"detail": "Conflito."}))


def test_non_json_success_becomes_remote_error():
    def handler(request):
        return httpx.Response(200, text="<html>gateway</html>")

    async def run():
        client = EntregaCertaClient("http://testserver", token="tok",
                                    transport=httpx.MockTransport(handler))
        try:
            await client.consume_notifications()
        finally:
            await client.aclose()

    with pytest.raises(RemoteOperationError):
        asyncio.run(run())


def test_submit_capture_survives_close_while_sending():
    holder = {}

    async def handler(request):
        await holder["session"].close()
        return httpx.Response(200, json={"invoice_id": 1, "delivered": True})

    async def run():
        client = EntregaCertaClient("http://testserver", token="tok",
                                    transport=httpx.MockTransport(handler))
        session = ConsoleSession(client, "driver", driver_id=7,
                                 position_source=lambda: (-22.9, -47.06))
        holder["session"] = session
        await session.begin_capture(1)
        proof = await session.submit_capture(1, True, receiver_name="Ana", signature_data="data:x")
        await client.aclose()
        return proof

    assert asyncio.run(run())["invoice_id"] == 1
