from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from fog.abtest.enums import ExperimentStatus


class DecisionKind(str, Enum):
    record_not_found = "record_not_found"  # 有聚合数据，但 KV 中没有（或无法解析）实验记录
    not_applicable = "not_applicable"  # 非 active / autoStop 关闭 等
    no_decision = "no_decision"
    winner_declared = "winner_declared"
    ramp_pending = "ramp_pending"  # flag 本次评估后尚未放量
    ramped = "ramped"


class VariantResult(BaseModel):
    index: int
    name: str
    impressions: int
    conversions: int
    conversion_rate: float = Field(..., alias="conversionRate")
    probability: Optional[float] = None
    total_revenue: float = Field(..., alias="totalRevenue")
    revenue_per_visitor: float = Field(..., alias="revenuePerVisitor")

    model_config = ConfigDict(populate_by_name=True)


class Decision(BaseModel):
    kind: DecisionKind
    winner: Optional[str] = None
    probability: Optional[float] = None
    consecutive: Optional[int] = None
    previous_percent: Optional[float] = Field(default=None, alias="previousPercent")
    traffic_percent: Optional[float] = Field(default=None, alias="trafficPercent")

    model_config = ConfigDict(populate_by_name=True)


class ResultsResponse(BaseModel):
    experiment_id: str = Field(..., alias="experimentId")
    variants: List[VariantResult] = Field(default_factory=list)
    status: Optional[ExperimentStatus] = None
    winner: Optional[str] = None
    completed_at: Optional[str] = Field(default=None, alias="completedAt")
    decision: Decision

    model_config = ConfigDict(populate_by_name=True)
