"""
事件数据集的读写协作方

写入侧：/track 收到的事件经服务端分桶后写成 data point（EventSink）。
读取侧：评估流程只消费预聚合的数字（AggregationSource）：
- 事件计数行：{variant: "<index>", eventType: "impression"|"conversion", count}
- 收入行：{variant: "<index>", totalRevenue}
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Protocol

import httpx
from loguru import logger

from fog.abtest.errors import AggregationError
from fog.abtest.stats import VariantData

# 聚合 SQL 不支持参数化查询：只放行 UUID 字符集
SAFE_ID_RE = re.compile(r"^[a-f0-9-]+$")


def is_safe_experiment_id(experiment_id: str) -> bool:
    return bool(experiment_id) and SAFE_ID_RE.match(experiment_id) is not None


@dataclass
class VariantStats:
    index: int
    impressions: int = 0
    conversions: int = 0
    total_revenue: float = 0.0

    def as_variant_data(self) -> VariantData:
        return VariantData(conversions=self.conversions, total=self.impressions)


class AggregationSource(Protocol):
    async def count_events(self, experiment_id: str) -> list[dict[str, Any]]:
        ...

    async def sum_revenue(self, experiment_id: str) -> list[dict[str, Any]]:
        ...


class AnalyticsEngineClient:
    """基于 HTTP SQL 接口的聚合查询实现"""

    def __init__(
        self,
        endpoint: str,
        api_token: str = "",
        *,
        dataset: str = "fog_events",
        timeout: float = 10.0,
    ):
        self.endpoint = endpoint
        self._api_token = api_token
        self.dataset = dataset
        self.timeout = timeout

    async def count_events(self, experiment_id: str) -> list[dict[str, Any]]:
        _ensure_safe(experiment_id)
        sql = (
            f"SELECT blob2 AS variant, blob3 AS eventType, count() AS count "
            f"FROM {self.dataset} WHERE blob1 = '{experiment_id}' GROUP BY variant, eventType"
        )
        return await self._query(sql)

    async def sum_revenue(self, experiment_id: str) -> list[dict[str, Any]]:
        _ensure_safe(experiment_id)
        sql = (
            f"SELECT blob2 AS variant, SUM(double1) AS totalRevenue "
            f"FROM {self.dataset} WHERE blob1 = '{experiment_id}' AND double1 > 0 GROUP BY variant"
        )
        return await self._query(sql)

    async def _query(self, sql: str) -> list[dict[str, Any]]:
        response = await _post(
            self.endpoint,
            api_token=self._api_token,
            timeout=self.timeout,
            content=sql,
            content_type="text/plain",
        )
        try:
            payload = response.json()
        except ValueError as e:
            logger.error(f"[AnalyticsEngineClient] 响应不是合法 JSON: {e}")
            raise AggregationError(f"Analytics Engine error: {e}") from e
        return list(payload.get("data") or [])


@dataclass(frozen=True)
class TrackedEvent:
    """一条写入事件数据集的记录；variant_index 总是由服务端分桶得出"""

    experiment_id: str
    variant_index: int
    event: str
    visitor_id: str
    event_name: str = ""
    value: float = 1.0

    def as_data_point(self) -> dict[str, Any]:
        # blob1..4 / double1 / index1 与聚合 SQL 中的列一一对应
        return {
            "blobs": [self.experiment_id, str(self.variant_index), self.event, self.event_name],
            "doubles": [self.value],
            "indexes": [self.visitor_id],
        }


class EventSink(Protocol):
    async def write_event(self, event: TrackedEvent) -> None:
        ...


class AnalyticsEventWriter:
    """把事件以 data point 的形式写入事件数据集（HTTP 写入接口）"""

    def __init__(
        self,
        endpoint: str,
        api_token: str = "",
        *,
        dataset: str = "fog_events",
        timeout: float = 10.0,
    ):
        self.endpoint = endpoint
        self._api_token = api_token
        self.dataset = dataset
        self.timeout = timeout

    async def write_event(self, event: TrackedEvent) -> None:
        await _post(
            self.endpoint,
            api_token=self._api_token,
            timeout=self.timeout,
            json={"dataset": self.dataset, **event.as_data_point()},
        )


async def _post(
    url: str,
    *,
    api_token: str,
    timeout: float,
    content: str | None = None,
    content_type: str | None = None,
    json: Any = None,
) -> httpx.Response:
    headers: dict[str, str] = {}
    if content_type:
        headers["Content-Type"] = content_type
    if api_token:
        headers["Authorization"] = f"Bearer {api_token}"
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(url, content=content, json=json, headers=headers)
            response.raise_for_status()
            return response
    except httpx.HTTPStatusError as e:
        logger.error(f"[Analytics] 请求失败: url={url}, status={e.response.status_code}")
        raise AggregationError(f"Analytics Engine error: {e.response.status_code}") from e
    except httpx.HTTPError as e:
        logger.error(f"[Analytics] 请求失败: url={url}, err={e}")
        raise AggregationError(f"Analytics Engine error: {e}") from e


def _ensure_safe(experiment_id: str) -> None:
    if not is_safe_experiment_id(experiment_id):
        raise ValueError(f"Invalid experiment ID: {experiment_id!r}")


def aggregate_variant_stats(
    event_rows: Iterable[Mapping[str, Any]],
    revenue_rows: Iterable[Mapping[str, Any]],
) -> list[VariantStats]:
    """
    把聚合行合并为按 variant index 升序排列的统计列表（纯函数，便于单测）

    只出现在收入行里的 variant 也会保留（impressions=0）。
    """
    stats: dict[int, VariantStats] = {}

    def _slot(variant: Any) -> VariantStats | None:
        index = _to_index(variant)
        if index is None:
            return None
        if index not in stats:
            stats[index] = VariantStats(index=index)
        return stats[index]

    for row in event_rows:
        slot = _slot(row.get("variant"))
        if slot is None:
            continue
        count = int(_to_number(row.get("count")))
        event_type = row.get("eventType")
        if event_type == "impression":
            slot.impressions += count
        elif event_type == "conversion":
            slot.conversions += count

    for row in revenue_rows:
        slot = _slot(row.get("variant"))
        if slot is None:
            continue
        slot.total_revenue += _to_number(row.get("totalRevenue", row.get("total_revenue")))

    return [stats[i] for i in sorted(stats)]


def _to_index(value: Any) -> int | None:
    try:
        index = int(str(value))
    except (TypeError, ValueError):
        return None
    return index if index >= 0 else None


def _to_number(value: Any) -> float:
    if value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    # "NaN" / "inf" 之类的值按 0 处理
    return number if math.isfinite(number) else 0.0
