from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from loguru import logger

from fog.abtest.repository import FogKeys
from fog.core.clock import Clock, utc_now
from fog.core.redis_client import RedisClient


@dataclass
class CachedSalt:
    day: str
    salt: str


class DailySaltCache:
    """按日期做 key 的进程内缓存。

    由调用方显式创建并注入（而不是模块级全局变量），生命周期跟随持有者：
    - 日期变化后旧值自动失效（key 不匹配）；
    - 也提供 invalidate() 供轮换任务主动清空。

    多个 worker 各自持有一份缓存，最坏情况下当天第一次访问会各读一次 Redis。
    """

    def __init__(self):
        self._cached: CachedSalt | None = None

    def get(self, day: str) -> Optional[str]:
        if self._cached is not None and self._cached.day == day:
            return self._cached.salt
        return None

    def put(self, day: str, salt: str) -> None:
        self._cached = CachedSalt(day=day, salt=salt)

    def invalidate(self) -> None:
        self._cached = None


def generate_salt() -> str:
    return secrets.token_hex(32)


def day_key(clock: Clock) -> str:
    return clock().date().isoformat()


class SaltProvider:
    def __init__(
        self,
        redis_client: RedisClient,
        cache: DailySaltCache,
        keys: FogKeys | None = None,
        *,
        clock: Clock | None = None,
    ):
        self._redis_client = redis_client
        self._cache = cache
        self._keys = keys or FogKeys()
        self._clock = clock or utc_now

    async def get_salt(self) -> str:
        today = day_key(self._clock)
        cached = self._cache.get(today)
        if cached is not None:
            return cached

        key = self._keys.salt(today)
        salt = await self._redis_client.client.get(key)
        if not salt:
            salt = generate_salt()
            await self._redis_client.client.set(key, salt)
            logger.info(f"生成当日 salt: day={today}")

        self._cache.put(today, salt)
        return salt

    async def rotate(self) -> None:
        """预生成明天的 salt，删除昨天的 salt"""
        now = self._clock()
        tomorrow = (now + timedelta(days=1)).date().isoformat()
        yesterday = (now - timedelta(days=1)).date().isoformat()

        tomorrow_key = self._keys.salt(tomorrow)
        if not await self._redis_client.client.get(tomorrow_key):
            await self._redis_client.client.set(tomorrow_key, generate_salt())
        await self._redis_client.client.delete(self._keys.salt(yesterday))
        self._cache.invalidate()


def derive_visitor_id(ip: str, user_agent: str, hostname: str, salt: str) -> str:
    """
    无 cookie 的访客标识：HMAC-SHA256(salt, ip/24 + ua + hostname) 的前 16 位 hex

    IP 截断到 /24（去掉最后一段）后再参与哈希。salt 每日轮换，因此标识只在当天稳定。
    """
    truncated_ip = ".".join((ip or "0.0.0.0").split(".")[:3])
    message = f"{truncated_ip}{user_agent or ''}{hostname or ''}".encode("utf-8")
    digest = hmac.new(salt.encode("utf-8"), message, hashlib.sha256).hexdigest()
    return digest[:16]
