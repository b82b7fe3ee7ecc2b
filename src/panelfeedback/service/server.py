from __future__ import annotations

import asyncio
import logging
import socket
from typing import Optional

import uvicorn
from fastapi import FastAPI

from panelfeedback.core.config import Settings
from panelfeedback.core.registry import PortRegistry
from panelfeedback.service.app import create_app

logger = logging.getLogger("panelfeedback.server")


class CoordinationServer:
    """Runs the Coordination Service on an OS-chosen loopback port.

    On bind the port is advertised through the port registry; on shutdown
    the registry file is removed. A second instance is not detected: the
    last one to bind owns the registry.
    """

    def __init__(
        self,
        settings: Settings,
        app: Optional[FastAPI] = None,
        port: int = 0,
    ) -> None:
        self.settings = settings
        self.app = app or create_app(settings)
        self.requested_port = port
        self.registry = PortRegistry(settings.port_file, settings.default_port)
        self.port: Optional[int] = None
        self._server: Optional[uvicorn.Server] = None

    def bind(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.settings.host, self.requested_port))
        except OSError:
            sock.close()
            raise
        self.port = sock.getsockname()[1]
        logger.info("Coordination service bound to %s:%s", self.settings.host, self.port)
        self.registry.write(self.port)
        return sock

    async def serve(self) -> None:
        sock = self.bind()
        config = uvicorn.Config(
            self.app,
            log_level=self.settings.log_level.lower(),
            lifespan="on",
        )
        self._server = uvicorn.Server(config)
        try:
            await self._server.serve(sockets=[sock])
        finally:
            self.registry.delete()
            sock.close()
            logger.info("Coordination service on port %s stopped", self.port)

    def run(self) -> None:
        try:
            asyncio.run(self.serve())
        except KeyboardInterrupt:
            pass

    def stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
