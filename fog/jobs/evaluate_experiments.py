"""
实验评估巡检任务（建议由 CronJob 定时触发）

对所有 active 的实验/开关执行一次“读取结果”，让 auto-stop / auto-ramp
在没有人打开看板时也能推进。

示例（每 15 分钟一次）：
  */15 * * * *  cd <project> && python -m fog.jobs.evaluate_experiments
"""

from __future__ import annotations

import asyncio

from loguru import logger
from redis.exceptions import RedisError

from fog.abtest.enums import ExperimentStatus
from fog.abtest.errors import AggregationError
from fog.abtest.repository import ExperimentRepository, FogKeys, RampCounterRepository
from fog.api.deps import build_results_service, get_aggregation_source
from fog.core.config import settings
from fog.core.redis_client import redis_client
from fog.services import ResultsService


async def evaluate_all(service: ResultsService, repo: ExperimentRepository) -> dict[str, str]:
    """返回 experimentId -> decision kind；单个实验失败不影响其它实验"""
    outcomes: dict[str, str] = {}
    for experiment in await repo.list_all():
        if experiment.status != ExperimentStatus.active:
            continue
        try:
            report = await service.read_results(experiment.id)
        except (AggregationError, RedisError, ValueError, asyncio.TimeoutError) as exc:
            logger.error(f"实验评估失败: id={experiment.id}, err={exc!r}")
            outcomes[experiment.id] = "error"
            continue
        outcomes[experiment.id] = report.decision.kind.value
    return outcomes


async def run_once() -> None:
    await redis_client.connect()
    try:
        keys = FogKeys.with_prefix(settings.FOG_KEY_PREFIX)
        repo = ExperimentRepository(redis_client, keys=keys)
        counters = RampCounterRepository(redis_client, keys=keys)
        service = build_results_service(get_aggregation_source(), repo, counters)
        outcomes = await evaluate_all(service, repo)
        logger.info(f"实验评估巡检完成: evaluated={len(outcomes)}, outcomes={outcomes}")
    finally:
        await redis_client.close()


def main() -> None:
    asyncio.run(run_once())


if __name__ == "__main__":
    main()
