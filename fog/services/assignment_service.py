from __future__ import annotations

from typing import Optional

from fog.abtest.enums import BucketMode, ExperimentStatus
from fog.abtest.hashing import NOT_IN_EXPERIMENT, bucket
from fog.abtest.identity import SaltProvider, derive_visitor_id
from fog.abtest.repository import ExperimentRepository
from fog.schemas.experiment_schema import AssignmentResponse


class AssignmentService:
    def __init__(self, repo: ExperimentRepository, salt_provider: SaltProvider):
        self._repo = repo
        self._salt_provider = salt_provider

    async def resolve_visitor_id(
        self,
        visitor_id: Optional[str],
        *,
        ip: str = "",
        user_agent: str = "",
        hostname: str = "",
    ) -> str:
        if visitor_id:
            return visitor_id
        salt = await self._salt_provider.get_salt()
        return derive_visitor_id(ip, user_agent, hostname, salt)

    async def assign(self, visitor_id: str) -> AssignmentResponse:
        """为访客计算所有 active 实验/开关的分配结果（未入组的实验不返回）"""
        assignments: dict[str, int] = {}
        for experiment in await self._repo.list_all():
            if experiment.status != ExperimentStatus.active:
                continue
            variant = bucket(
                visitor_id,
                experiment.id,
                len(experiment.variants),
                experiment.traffic_percent,
                BucketMode.for_type(experiment.type),
            )
            if variant != NOT_IN_EXPERIMENT:
                assignments[experiment.id] = variant
        return AssignmentResponse(visitor_id=visitor_id, assignments=assignments)
