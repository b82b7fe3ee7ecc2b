import asyncio

import httpx

from panelfeedback.core.ledger import RequestLedger
from panelfeedback.core.registry import PortRegistry
from panelfeedback.service.app import create_app
from panelfeedback.service.server import CoordinationServer


def test_bind_advertises_os_chosen_port(settings) -> None:
    server = CoordinationServer(settings, app=create_app(settings, ledger=RequestLedger()))
    sock = server.bind()
    try:
        assert server.port and server.port > 0
        assert PortRegistry(settings.port_file, settings.default_port).read() == server.port
    finally:
        sock.close()


def test_serve_then_shutdown_removes_registry(settings) -> None:
    server = CoordinationServer(settings, app=create_app(settings, ledger=RequestLedger()))
    registry = PortRegistry(settings.port_file, settings.default_port)

    async def scenario() -> dict:
        task = asyncio.create_task(server.serve())
        for _ in range(200):
            if server._server is not None and server._server.started:
                break
            await asyncio.sleep(0.02)
        port = registry.read()
        assert port == server.port
        async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{port}") as client:
            health = (await client.get("/health")).json()
        server.stop()
        await asyncio.wait_for(task, timeout=10)
        return health

    health = asyncio.run(scenario())
    assert health["status"] == "ok"
    assert registry.read() is None
