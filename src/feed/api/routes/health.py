"""Liveness endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter()


@router.get("/health")
async def health(request: Request) -> JSONResponse:
    service = request.app.state.service
    subjects = service.get_subjects() if service is not None else []
    return JSONResponse(content={"status": "ok", "subjects": len(subjects)})
