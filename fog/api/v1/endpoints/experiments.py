"""
实验管理 API 端点

创建 / 列表 / 详情 / 合并更新 / 删除。variants 创建后不可修改。
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from loguru import logger

from fog.api.deps import get_experiment_service
from fog.abtest.errors import ExperimentNotFoundError
from fog.schemas.experiment_schema import (
    CreateExperimentRequest,
    DeleteExperimentResponse,
    Experiment,
    UpdateExperimentRequest,
)
from fog.services import ExperimentService

router = APIRouter()


@router.get("", response_model=list[Experiment], summary="实验列表")
async def list_experiments(
    service: ExperimentService = Depends(get_experiment_service),
) -> list[Experiment]:
    try:
        return await service.list_experiments()
    except Exception as exc:
        logger.error(f"获取实验列表失败: {exc}")
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@router.post("", response_model=Experiment, status_code=201, summary="创建实验")
async def create_experiment(
    request: CreateExperimentRequest,
    service: ExperimentService = Depends(get_experiment_service),
) -> Experiment:
    try:
        return await service.create(request)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logger.error(f"创建实验失败: {exc}")
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@router.get("/{experiment_id}", response_model=Experiment, summary="实验详情")
async def get_experiment(
    experiment_id: str,
    service: ExperimentService = Depends(get_experiment_service),
) -> Experiment:
    try:
        return await service.get(experiment_id)
    except ExperimentNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Not found") from exc
    except Exception as exc:
        logger.error(f"获取实验失败: id={experiment_id}, err={exc}")
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@router.api_route(
    "/{experiment_id}",
    methods=["PATCH", "PUT"],
    response_model=Experiment,
    summary="合并更新实验",
)
async def update_experiment(
    experiment_id: str,
    request: UpdateExperimentRequest,
    service: ExperimentService = Depends(get_experiment_service),
) -> Experiment:
    try:
        return await service.update(experiment_id, request)
    except ExperimentNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Not found") from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        logger.error(f"更新实验失败: id={experiment_id}, err={exc}")
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@router.delete("/{experiment_id}", response_model=DeleteExperimentResponse, summary="删除实验")
async def delete_experiment(
    experiment_id: str,
    service: ExperimentService = Depends(get_experiment_service),
) -> DeleteExperimentResponse:
    try:
        deleted = await service.delete(experiment_id)
        return DeleteExperimentResponse(deleted=deleted)
    except Exception as exc:
        logger.error(f"删除实验失败: id={experiment_id}, err={exc}")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
