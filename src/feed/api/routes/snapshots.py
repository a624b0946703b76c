"""JSON endpoints exposing subject snapshots, known pools and cache state."""

from __future__ import annotations

from dataclasses import fields, is_dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

log = structlog.get_logger(__name__)

router = APIRouter()


def _to_jsonable(obj: Any) -> Any:
    """Recursively convert Decimals, enums and dataclasses for JSON serialization."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: _to_jsonable(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, dict):
        return {k: _to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_jsonable(item) for item in obj]
    return obj


def _not_found(subject: str) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={"error": f"Subject {subject} is not tracked"},
    )


@router.get("/snapshots")
async def list_snapshots(request: Request) -> JSONResponse:
    """Snapshots of every tracked subject."""
    service = request.app.state.service
    return JSONResponse(content=_to_jsonable(service.get_snapshots()))


@router.get("/snapshots/{subject}")
async def get_snapshot(subject: str, request: Request) -> JSONResponse:
    service = request.app.state.service
    snapshot = service.get_snapshot(subject)
    if snapshot is None:
        return _not_found(subject)
    return JSONResponse(content=_to_jsonable(snapshot))


@router.post("/snapshots/{subject}/refresh")
async def refresh_snapshot(subject: str, request: Request) -> JSONResponse:
    """Manual refresh trigger. Returns the snapshot the refresh produced."""
    service = request.app.state.service
    if not service.is_tracked(subject):
        return _not_found(subject)

    log.info("manual_refresh_requested", subject=subject)
    snapshot = await service.refresh(subject)
    return JSONResponse(content=_to_jsonable(snapshot))


@router.get("/pools")
async def list_pools(request: Request) -> JSONResponse:
    service = request.app.state.service
    return JSONResponse(content=_to_jsonable(service.get_pools()))


@router.get("/cache")
async def cache_stats(request: Request) -> JSONResponse:
    cache = request.app.state.cache
    if cache is None:
        return JSONResponse(content={"enabled": False, "keys": [], "count": 0})
    return JSONResponse(content={"enabled": True, **cache.stats()})
