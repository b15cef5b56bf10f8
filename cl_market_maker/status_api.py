# cl_market_maker/status_api.py

from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI
from pydantic import BaseModel

from cl_market_maker.controller import Controller
from cl_market_maker.ws_client import WS_STATE


class HealthResponse(BaseModel):
    ok: bool
    ws_connected: bool
    controller_state: str
    last_message_ts: Optional[str] = None


class StateResponse(BaseModel):
    state: str
    cycles_ok: int
    cycles_failed: int
    last_cycle: Optional[Dict[str, Any]] = None
    ws: Dict[str, Any]


def create_app(controller: Controller) -> FastAPI:
    app = FastAPI(title="cl-market-maker")

    @app.get("/health", response_model=HealthResponse)
    def get_health():
        return HealthResponse(
            ok=bool(WS_STATE.get("connected")),
            ws_connected=bool(WS_STATE.get("connected")),
            controller_state=controller.state.value,
            last_message_ts=WS_STATE.get("last_message_ts"),
        )

    @app.get("/state", response_model=StateResponse)
    def get_state():
        return StateResponse(**controller.snapshot(), ws=dict(WS_STATE))

    return app


async def serve(controller: Controller, host: str, port: int) -> None:
    # single worker inside the bot's event loop; state lives in-process
    config = uvicorn.Config(create_app(controller), host=host, port=port, log_level="warning")
    server = uvicorn.Server(config)
    await server.serve()
