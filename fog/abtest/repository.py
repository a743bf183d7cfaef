from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger
from pydantic import ValidationError

from fog.abtest.enums import ExperimentStatus
from fog.core.redis_client import RedisClient
from fog.schemas.experiment_schema import Experiment


@dataclass(frozen=True)
class FogKeys:
    experiment_prefix: str = "experiment:"
    experiment_index: str = "experiments:index"
    ramp_counter_prefix: str = "autostop:"
    salt_prefix: str = "salt:"

    @classmethod
    def with_prefix(cls, prefix: str) -> "FogKeys":
        """
        生成带前缀的 Key 集合（用于多环境/多项目共用 Redis 时隔离数据）
        """
        p = prefix or ""
        return cls(
            experiment_prefix=f"{p}experiment:",
            experiment_index=f"{p}experiments:index",
            ramp_counter_prefix=f"{p}autostop:",
            salt_prefix=f"{p}salt:",
        )

    def experiment(self, experiment_id: str) -> str:
        return f"{self.experiment_prefix}{experiment_id}"

    def ramp_counter(self, experiment_id: str) -> str:
        return f"{self.ramp_counter_prefix}{experiment_id}"

    def salt(self, day: str) -> str:
        return f"{self.salt_prefix}{day}"


class ExperimentRepository:
    """
    实验记录仓储（KV：experiment:<id> -> JSON）

    既是读侧的事实来源，也是 auto-stop / auto-ramp 的写入目标。
    条件写入统一走 update_if_active，后续需要乐观并发时只改这里。
    """

    def __init__(self, redis_client: RedisClient, keys: FogKeys | None = None):
        self._redis_client = redis_client
        self._keys = keys or FogKeys()

    @property
    def keys(self) -> FogKeys:
        return self._keys

    async def get(self, experiment_id: str) -> Optional[Experiment]:
        """读取记录；不存在或无法解析时返回 None"""
        raw = await self._redis_client.client.get(self._keys.experiment(experiment_id))
        if raw is None:
            return None
        return _parse_experiment(experiment_id, raw)

    async def save(self, experiment: Experiment) -> None:
        await self._redis_client.client.set(
            self._keys.experiment(experiment.id), experiment.to_json()
        )

    async def delete(self, experiment_id: str) -> bool:
        removed = await self._redis_client.client.delete(self._keys.experiment(experiment_id))
        return bool(removed)

    async def update_if_active(
        self,
        experiment_id: str,
        mutate: Callable[[Experiment], Experiment],
    ) -> Optional[Experiment]:
        """
        仅当存储中的记录仍为 active 时写入 mutate 后的新记录

        非原子（read-then-write）：并发时允许丢失更新，但不会覆盖已结束的实验。
        """
        current = await self.get(experiment_id)
        if current is None:
            logger.warning(f"条件写入跳过：实验不存在 id={experiment_id}")
            return None
        if current.status != ExperimentStatus.active:
            logger.warning(
                f"条件写入跳过：实验已非 active id={experiment_id}, status={current.status.value}"
            )
            return None
        updated = mutate(current)
        await self.save(updated)
        return updated

    # ========================================
    # 实验索引（experiments:index -> JSON id 列表）
    # ========================================
    async def list_ids(self) -> list[str]:
        raw = await self._redis_client.client.get(self._keys.experiment_index)
        if not raw:
            return []
        try:
            ids = json.loads(raw)
        except ValueError:
            logger.warning(f"实验索引格式错误: {raw!r}")
            return []
        return [str(i) for i in ids if i]

    async def add_to_index(self, experiment_id: str) -> None:
        ids = await self.list_ids()
        if experiment_id in ids:
            return
        ids.append(experiment_id)
        await self._redis_client.client.set(self._keys.experiment_index, json.dumps(ids))

    async def remove_from_index(self, experiment_id: str) -> None:
        ids = [i for i in await self.list_ids() if i != experiment_id]
        await self._redis_client.client.set(self._keys.experiment_index, json.dumps(ids))

    async def list_all(self) -> list[Experiment]:
        ids = await self.list_ids()
        if not ids:
            return []
        raws = await self._redis_client.client.mget([self._keys.experiment(i) for i in ids])
        result: list[Experiment] = []
        for experiment_id, raw in zip(ids, raws):
            if raw is None:
                continue
            experiment = _parse_experiment(experiment_id, raw)
            if experiment is not None:
                result.append(experiment)
        return result


class RampCounterRepository:
    """auto-ramp 连续命中计数器（KV：autostop:<id> -> 十进制整数字符串）"""

    def __init__(self, redis_client: RedisClient, keys: FogKeys | None = None):
        self._redis_client = redis_client
        self._keys = keys or FogKeys()

    async def get(self, experiment_id: str) -> int:
        raw = await self._redis_client.client.get(self._keys.ramp_counter(experiment_id))
        return _to_int_or_zero(raw)

    async def put(self, experiment_id: str, value: int) -> None:
        await self._redis_client.client.set(
            self._keys.ramp_counter(experiment_id), str(int(value))
        )

    async def reset(self, experiment_id: str) -> None:
        await self.put(experiment_id, 0)


def _parse_experiment(experiment_id: str, raw: str) -> Optional[Experiment]:
    try:
        return Experiment.model_validate_json(raw)
    except ValidationError as exc:
        logger.warning(f"实验记录格式错误，按不存在处理: id={experiment_id}, err={exc}")
        return None


def _to_int_or_zero(value) -> int:
    if value is None:
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
