"""
实验结果 API 端点

每次读取都会重新聚合、估计概率，并对 active 的实验/开关执行 auto-stop / auto-ramp。
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, HTTPException
from loguru import logger

from fog.api.deps import get_results_service
from fog.abtest.errors import AggregationError
from fog.schemas.results_schema import ResultsResponse
from fog.services import ResultsService

router = APIRouter()


@router.get("/{experiment_id}", response_model=ResultsResponse, summary="读取实验结果")
async def read_results(
    experiment_id: str,
    service: ResultsService = Depends(get_results_service),
) -> ResultsResponse:
    try:
        return await service.read_results(experiment_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except AggregationError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except asyncio.TimeoutError as exc:
        logger.error(f"结果评估超时: id={experiment_id}")
        raise HTTPException(status_code=504, detail="evaluation timed out") from exc
    except Exception as exc:
        logger.error(f"读取实验结果失败: id={experiment_id}, err={exc}")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
