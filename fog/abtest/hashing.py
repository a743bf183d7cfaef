"""访客分桶（确定性哈希）。

哈希：32 位 FNV-1a，作用于 visitor_key + experiment_key 拼接后的字符串。
归一化：(h % 10000) / 10000，分辨率固定为 1/10000（0.01%）。
因此 trafficPercent 的有效粒度是 0.01%，分桶边界落在 1/10000 的整数倍上。

两种模式：
- flag：n < traffic/100 即为 on(1)，否则 off(0)。同一访客的 n 不变，
  提高 traffic 只会让访客从 off 变 on（ramp-stable），auto-ramp 依赖这一点。
- experiment：n >= traffic/100 则不入组(-1)；否则先按 traffic 重新缩放到 [0,1)
  再乘以 variant 数取整。缩放分母依赖 traffic，所以中途改 traffic 会翻桶，
  只适用于固定流量的 A/B 实验。
"""

from __future__ import annotations

import math
from functools import lru_cache
from typing import Iterator, Union

from fog.abtest.enums import BucketMode

FNV_OFFSET_BASIS = 0x811C9DC5
FNV_PRIME = 0x01000193
HASH_RESOLUTION = 10_000
NOT_IN_EXPERIMENT = -1


def _utf16_units(text: str) -> Iterator[int]:
    # 与浏览器端 SDK 保持一致：按 UTF-16 code unit 逐个参与哈希
    for ch in text:
        code = ord(ch)
        if code > 0xFFFF:
            code -= 0x10000
            yield 0xD800 + (code >> 10)
            yield 0xDC00 + (code & 0x3FF)
        else:
            yield code


def fnv1a_32(text: str) -> int:
    h = FNV_OFFSET_BASIS
    for unit in _utf16_units(text):
        h ^= unit
        h = (h * FNV_PRIME) & 0xFFFFFFFF
    return h


def fnv1a(text: str) -> float:
    """返回 [0, 1) 内的哈希值，分辨率 1/10000"""
    return (fnv1a_32(text) % HASH_RESOLUTION) / HASH_RESOLUTION


@lru_cache(maxsize=65536)
def _bucket(
    visitor_key: str,
    experiment_key: str,
    variant_count: int,
    traffic_percent: float,
    mode: BucketMode,
) -> int:
    n = fnv1a(visitor_key + experiment_key)
    allocation = traffic_percent / 100

    if mode == BucketMode.flag:
        return 1 if n < allocation else 0

    if n >= allocation:
        return NOT_IN_EXPERIMENT
    scaled = n / allocation
    index = math.floor(scaled * variant_count)
    return max(0, min(index, variant_count - 1))


def bucket(
    visitor_key: str,
    experiment_key: str,
    variant_count: int,
    traffic_percent: float,
    mode: Union[BucketMode, str] = BucketMode.experiment,
) -> int:
    """
    计算访客的分桶结果

    Returns:
        experiment 模式：-1（不在实验中）或 0..variant_count-1
        flag 模式：0（off）或 1（on）
    """
    return _bucket(
        visitor_key,
        experiment_key,
        int(variant_count),
        float(traffic_percent),
        BucketMode(mode),
    )
