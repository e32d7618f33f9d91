"""FastAPI application exposing the itinerary map runtime."""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import FastAPI, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse

import config
from itinerary.route_parser import parse_places, parse_route_sequence
from reconciler.cancel import LookupCancelled
from rendering.backends import BackendLoadError, BackendLoadTimeout
from workflows.runtime import MapRuntime
from workflows.schemas import (
    DestinationLookupRequest,
    DestinationLookupResponse,
    ParseRequest,
    ParseResponse,
    RenderRequest,
)

config.configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Itinerary Map API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

runtime = MapRuntime()


@app.get("/health")
async def health() -> Dict[str, Any]:
    return {
        "status": "ok",
        "provider": runtime.provider,
        "missing_keys": config.validate_api_keys(runtime.provider),
    }


@app.post("/sessions/{session_id}/render")
async def render(session_id: str, payload: RenderRequest) -> Dict[str, Any]:
    try:
        response = await runtime.render(session_id, payload)
    except (BackendLoadError, BackendLoadTimeout) as exc:
        logger.error(f"Map backend unavailable for {session_id}: {exc}")
        raise HTTPException(status_code=503, detail=str(exc))
    return jsonable_encoder(response.model_dump(exclude_none=True))


@app.get("/sessions/{session_id}/snapshot")
async def get_snapshot(session_id: str) -> Dict[str, Any]:
    snapshot = runtime.get_snapshot(session_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Snapshot not found")
    return snapshot.to_dict()


@app.delete("/sessions/{session_id}/snapshot")
async def delete_snapshot(session_id: str) -> Dict[str, str]:
    runtime.clear_snapshot(session_id)
    return {"status": "deleted"}


@app.get("/sessions/{session_id}/map", response_class=HTMLResponse)
async def session_map(session_id: str) -> HTMLResponse:
    html = await runtime.map_html(session_id)
    if html is None:
        raise HTTPException(status_code=404, detail="No map rendered for this session")
    return HTMLResponse(content=html)


@app.post("/destinations/lookup", response_model=DestinationLookupResponse)
async def lookup_destination(payload: DestinationLookupRequest) -> DestinationLookupResponse:
    try:
        return await runtime.lookup_destination(payload.destination)
    except LookupCancelled:
        raise HTTPException(status_code=409, detail="Superseded by a newer lookup")


@app.post("/itinerary/parse", response_model=ParseResponse)
async def parse_itinerary(payload: ParseRequest) -> ParseResponse:
    return ParseResponse(
        places=parse_places(payload.text, payload.destination),
        route_sequence=parse_route_sequence(payload.text),
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=config.API_HOST, port=config.API_PORT)
