from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from loguru import logger

from fog.api.deps import get_assignment_service, request_ip
from fog.schemas.experiment_schema import AssignmentResponse
from fog.services import AssignmentService

router = APIRouter()


@router.get("", response_model=AssignmentResponse, summary="访客分配")
async def init_assignments(
    request: Request,
    visitor_id: Optional[str] = Query(default=None, alias="visitorId"),
    service: AssignmentService = Depends(get_assignment_service),
) -> AssignmentResponse:
    try:
        resolved = await service.resolve_visitor_id(
            visitor_id,
            ip=request_ip(request),
            user_agent=request.headers.get("User-Agent", ""),
            hostname=request.url.hostname or "",
        )
        return await service.assign(resolved)
    except Exception as exc:
        logger.error(f"访客分配失败: {exc}")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
