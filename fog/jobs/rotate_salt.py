"""
每日 salt 轮换任务（建议每天触发一次）

预生成明天的 salt（避免当天首个请求临时生成），删除昨天的 salt。

示例：
  0 23 * * *  cd <project> && python -m fog.jobs.rotate_salt
"""

from __future__ import annotations

import asyncio

from loguru import logger

from fog.abtest.identity import DailySaltCache, SaltProvider
from fog.abtest.repository import FogKeys
from fog.core.config import settings
from fog.core.redis_client import redis_client


async def run_once() -> None:
    await redis_client.connect()
    try:
        provider = SaltProvider(
            redis_client,
            DailySaltCache(),
            FogKeys.with_prefix(settings.FOG_KEY_PREFIX),
        )
        await provider.rotate()
        logger.info("salt 轮换完成")
    finally:
        await redis_client.close()


def main() -> None:
    asyncio.run(run_once())


if __name__ == "__main__":
    main()
