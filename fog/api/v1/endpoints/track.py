"""
事件上报 API 端点

variantIndex 由服务端按实验记录重新计算；爬虫事件不进入统计，但仍返回 204。
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from loguru import logger

from fog.abtest.errors import AggregationError, ExperimentNotFoundError
from fog.api.deps import get_track_service, request_ip
from fog.schemas.track_schema import TrackRequest
from fog.services import TrackService

router = APIRouter()


@router.post("", status_code=204, response_class=Response, summary="事件上报")
async def track_event(
    payload: TrackRequest,
    request: Request,
    service: TrackService = Depends(get_track_service),
) -> Response:
    try:
        await service.track(
            payload,
            ip=request_ip(request),
            user_agent=request.headers.get("User-Agent", ""),
            hostname=request.url.hostname or "",
        )
    except ExperimentNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Experiment not found") from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except AggregationError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except Exception as exc:
        logger.error(f"事件上报失败: event={payload.event.value}, err={exc}")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return Response(status_code=204)
