from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from fog.abtest.analytics import EventSink, TrackedEvent
from fog.abtest.bot_detect import is_bot
from fog.abtest.enums import BucketMode, TrackEventType
from fog.abtest.errors import ExperimentNotFoundError, InvalidEventError
from fog.abtest.hashing import NOT_IN_EXPERIMENT, bucket
from fog.abtest.identity import SaltProvider, derive_visitor_id
from fog.abtest.repository import ExperimentRepository
from fog.schemas.track_schema import TrackRequest


@dataclass(frozen=True)
class TrackOutcome:
    recorded: bool
    visitor_id: str
    variant_index: Optional[int] = None
    skipped_reason: Optional[str] = None


class TrackService:
    """事件上报：校验 -> 服务端重新分桶 -> 过滤爬虫 -> 写入事件数据集"""

    def __init__(self, repo: ExperimentRepository, sink: EventSink, salt_provider: SaltProvider):
        self._repo = repo
        self._sink = sink
        self._salt_provider = salt_provider

    async def track(
        self,
        req: TrackRequest,
        *,
        ip: str = "",
        user_agent: str = "",
        hostname: str = "",
    ) -> TrackOutcome:
        if req.event == TrackEventType.pageview:
            # pageview 不经过 /init，访客标识在服务端生成
            salt = await self._salt_provider.get_salt()
            visitor_id = derive_visitor_id(ip, user_agent, hostname, salt)
            experiment_id = req.experiment_id or ""
            variant_index = 0
        else:
            if not req.visitor_id or not req.experiment_id:
                raise InvalidEventError(
                    "visitorId and experimentId required for impression/conversion events"
                )
            experiment = await self._repo.get(req.experiment_id)
            if experiment is None:
                raise ExperimentNotFoundError(req.experiment_id)
            visitor_id = req.visitor_id
            experiment_id = experiment.id
            variant_index = bucket(
                visitor_id,
                experiment.id,
                len(experiment.variants),
                experiment.traffic_percent,
                BucketMode.for_type(experiment.type),
            )
            if variant_index == NOT_IN_EXPERIMENT:
                logger.debug(f"事件忽略：访客不在实验流量内 id={experiment.id}")
                return TrackOutcome(False, visitor_id, variant_index, "not_in_experiment")

        if is_bot(user_agent):
            return TrackOutcome(False, visitor_id, variant_index, "bot")

        await self._sink.write_event(
            TrackedEvent(
                experiment_id=experiment_id,
                variant_index=variant_index,
                event=req.event.value,
                visitor_id=visitor_id,
                event_name=req.event_name or "",
                value=1.0 if req.value is None else float(req.value),
            )
        )
        return TrackOutcome(True, visitor_id, variant_index)
