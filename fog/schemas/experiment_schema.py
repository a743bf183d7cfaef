from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from fog.abtest.enums import ExperimentStatus, ExperimentType


class Experiment(BaseModel):
    """实验/开关记录（KV 中以 JSON 存储，字段使用 camelCase）"""

    id: str
    name: str = ""
    # 顺序即 variant index，创建后不可修改（分桶依赖数量与位置）
    variants: List[str]
    traffic_percent: float = Field(100, ge=0, le=100, alias="trafficPercent")
    status: ExperimentStatus = ExperimentStatus.active
    type: ExperimentType = ExperimentType.experiment
    created_at: str = Field("", alias="createdAt")
    updated_at: str = Field("", alias="updatedAt")
    winner: Optional[str] = None
    completed_at: Optional[str] = Field(default=None, alias="completedAt")
    min_samples_per_variant: int = Field(100, ge=0, alias="minSamplesPerVariant")
    auto_stop: bool = Field(True, alias="autoStop")

    model_config = ConfigDict(populate_by_name=True)

    def variant_name(self, index: int) -> str:
        if 0 <= index < len(self.variants):
            return self.variants[index]
        return f"variant {index}"

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class CreateExperimentRequest(BaseModel):
    name: str = Field(..., min_length=1)
    variants: List[str] = Field(default_factory=lambda: ["control", "treatment"])
    traffic_percent: float = Field(100, alias="trafficPercent")
    status: ExperimentStatus = ExperimentStatus.active
    type: ExperimentType = ExperimentType.experiment
    min_samples_per_variant: int = Field(100, ge=0, alias="minSamplesPerVariant")
    auto_stop: bool = Field(True, alias="autoStop")

    model_config = ConfigDict(populate_by_name=True)


class UpdateExperimentRequest(BaseModel):
    """PATCH / PUT：只合并显式传入的字段"""

    name: Optional[str] = None
    variants: Optional[List[str]] = None
    traffic_percent: Optional[float] = Field(default=None, alias="trafficPercent")
    status: Optional[ExperimentStatus] = None
    type: Optional[ExperimentType] = None
    winner: Optional[str] = None
    completed_at: Optional[str] = Field(default=None, alias="completedAt")
    min_samples_per_variant: Optional[int] = Field(default=None, ge=0, alias="minSamplesPerVariant")
    auto_stop: Optional[bool] = Field(default=None, alias="autoStop")

    model_config = ConfigDict(populate_by_name=True)


class DeleteExperimentResponse(BaseModel):
    deleted: str


class AssignmentResponse(BaseModel):
    visitor_id: str = Field(..., alias="visitorId")
    # experimentId -> variantIndex（未入组的实验不出现）
    assignments: dict[str, int] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)
