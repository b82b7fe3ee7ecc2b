from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import timedelta
import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from panelfeedback import __version__
from panelfeedback.core.config import Settings
from panelfeedback.core.ledger import RequestLedger
from panelfeedback.service.collaborator import Collaborator, PanelCollaborator
from panelfeedback.service.coordinator import Coordinator

logger = logging.getLogger("panelfeedback.service")

# ---------- request models ----------

class ToolArguments(BaseModel):
    message: str = ""
    predefined_options: Optional[list[str]] = None

    model_config = {"extra": "allow"}

class SubmitParams(BaseModel):
    name: str = "panel_feedback"
    arguments: ToolArguments = Field(default_factory=ToolArguments)

class SubmitRequest(BaseModel):
    requestId: str = Field(min_length=1)
    params: SubmitParams = Field(default_factory=SubmitParams)

class PollRequest(BaseModel):
    requestId: str

class RespondRequest(BaseModel):
    text: str = ""
    images: list[str] = Field(default_factory=list)

class DismissRequest(BaseModel):
    reason: str = ""


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Parse error") from exc


def _validation_message(exc: ValidationError) -> str:
    first = exc.errors()[0]
    where = ".".join(str(p) for p in first.get("loc", ()))
    return f"{where}: {first.get('msg')}" if where else str(first.get("msg"))


def create_app(
    settings: Optional[Settings] = None,
    *,
    ledger: Optional[RequestLedger] = None,
    collaborator: Optional[Collaborator] = None,
) -> FastAPI:
    """Build the Coordination Service.

    With no arguments the ledger is persisted under the configured home
    directory and a :class:`PanelCollaborator` answers requests.
    """
    settings = settings or Settings.from_env()
    if ledger is None:
        ledger = RequestLedger(store_path=settings.ledger_file)
    if collaborator is None:
        collaborator = PanelCollaborator()
    coordinator = Coordinator(
        ledger=ledger,
        collaborator=collaborator,
        audit_dir=settings.home_dir,
        retention=timedelta(days=settings.retention_days),
    )

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        coordinator.restore()
        yield
        await coordinator.aclose()

    app = FastAPI(title="Panel Feedback", version=__version__, lifespan=lifespan)
    app.state.coordinator = coordinator
    app.state.collaborator = collaborator
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    # ---- coordination protocol ----

    @app.post("/submit")
    async def submit(request: Request) -> JSONResponse:
        body = await _read_json(request)
        try:
            req = SubmitRequest.model_validate(body)
        except ValidationError as exc:
            return JSONResponse(status_code=400, content={"error": _validation_message(exc)})
        params = {"name": req.params.name, "arguments": req.params.arguments.model_dump(exclude_none=True)}
        result = coordinator.submit(req.requestId, params)
        return JSONResponse(status_code=400 if "error" in result else 200, content=result)

    @app.post("/poll")
    async def poll(request: Request) -> dict[str, Any]:
        body = await _read_json(request)
        try:
            req = PollRequest.model_validate(body)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=_validation_message(exc)) from exc
        return coordinator.poll(req.requestId)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "version": __version__, **coordinator.stats()}

    @app.post("/control/clear")
    async def control_clear() -> dict[str, Any]:
        return {"status": "cleared", "cleared": coordinator.clear()}

    # ---- panel (only for the in-process panel collaborator) ----

    if isinstance(collaborator, PanelCollaborator):
        panel = collaborator

        @app.get("/panel/current")
        async def panel_current() -> dict[str, Any]:
            return {"current": panel.current()}

        @app.post("/panel/respond")
        async def panel_respond(req: RespondRequest) -> dict[str, Any]:
            if not panel.submit(req.text, req.images or None):
                raise HTTPException(status_code=409, detail="No request is waiting for feedback")
            return {"status": "ok"}

        @app.post("/panel/end")
        async def panel_end() -> dict[str, Any]:
            if not panel.end_conversation():
                raise HTTPException(status_code=409, detail="No request is waiting for feedback")
            return {"status": "ok"}

        @app.post("/panel/dismiss")
        async def panel_dismiss(req: DismissRequest) -> dict[str, Any]:
            if not panel.dismiss(req.reason):
                raise HTTPException(status_code=409, detail="No request is waiting for feedback")
            return {"status": "ok"}

    return app
