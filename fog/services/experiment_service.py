from __future__ import annotations

import uuid
from typing import Callable, Optional

from loguru import logger

from fog.abtest.enums import ExperimentType
from fog.abtest.errors import ExperimentNotFoundError, InvalidExperimentError
from fog.abtest.repository import ExperimentRepository
from fog.core.clock import Clock, to_iso, utc_now
from fog.schemas.experiment_schema import (
    CreateExperimentRequest,
    Experiment,
    UpdateExperimentRequest,
)


class ExperimentService:
    """实验记录的管理端操作（创建 / 查询 / 合并更新 / 删除）"""

    def __init__(
        self,
        repo: ExperimentRepository,
        *,
        clock: Clock | None = None,
        id_factory: Callable[[], str] | None = None,
    ):
        self._repo = repo
        self._clock = clock or utc_now
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

    async def create(self, req: CreateExperimentRequest) -> Experiment:
        _validate_variants(req.variants, req.type)
        _validate_traffic(req.traffic_percent)

        now = to_iso(self._clock())
        experiment = Experiment(
            id=self._id_factory(),
            name=req.name,
            variants=list(req.variants),
            traffic_percent=req.traffic_percent,
            status=req.status,
            type=req.type,
            created_at=now,
            updated_at=now,
            min_samples_per_variant=req.min_samples_per_variant,
            auto_stop=req.auto_stop,
        )
        await self._repo.save(experiment)
        await self._repo.add_to_index(experiment.id)
        logger.info(f"实验已创建: id={experiment.id}, type={experiment.type.value}")
        return experiment

    async def list_experiments(self) -> list[Experiment]:
        return await self._repo.list_all()

    async def get(self, experiment_id: str) -> Experiment:
        experiment = await self._repo.get(experiment_id)
        if experiment is None:
            raise ExperimentNotFoundError(experiment_id)
        return experiment

    async def update(self, experiment_id: str, req: UpdateExperimentRequest) -> Experiment:
        existing = await self.get(experiment_id)

        changes = req.model_dump(exclude_unset=True)
        # variant 的数量与顺序决定分桶结果，采集数据后修改会让历史分配失效
        if "variants" in changes:
            raise InvalidExperimentError("variants cannot be changed after experiment creation")
        if "type" in changes and changes["type"] != existing.type:
            raise InvalidExperimentError("type cannot be changed after experiment creation")
        if "traffic_percent" in changes:
            _validate_traffic(changes["traffic_percent"])

        changes["updated_at"] = to_iso(self._clock())
        merged = existing.model_dump()
        merged.update(changes)
        merged["id"] = existing.id
        merged["created_at"] = existing.created_at
        updated = Experiment.model_validate(merged)

        await self._repo.save(updated)
        logger.info(f"实验已更新: id={experiment_id}, fields={sorted(changes)}")
        return updated

    async def delete(self, experiment_id: str) -> str:
        await self._repo.delete(experiment_id)
        await self._repo.remove_from_index(experiment_id)
        logger.info(f"实验已删除: id={experiment_id}")
        return experiment_id


def _validate_variants(variants: list[str], experiment_type: ExperimentType) -> None:
    if len(variants) < 2:
        raise InvalidExperimentError("variants must have at least 2 entries")
    if experiment_type == ExperimentType.flag and len(variants) != 2:
        raise InvalidExperimentError("flags must have exactly 2 variants (off, on)")


def _validate_traffic(traffic_percent: Optional[float]) -> None:
    if traffic_percent is None or not 0 <= traffic_percent <= 100:
        raise InvalidExperimentError("trafficPercent must be a number between 0 and 100")
