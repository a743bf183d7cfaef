from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from fog.abtest.enums import TrackEventType


class TrackRequest(BaseModel):
    """
    事件上报

    impression / conversion 需要 visitorId 与 experimentId；pageview 两者都可省略。
    客户端传来的 variantIndex 只被接收、从不使用：服务端按记录重新分桶。
    """

    event: TrackEventType
    visitor_id: Optional[str] = Field(default=None, alias="visitorId")
    experiment_id: Optional[str] = Field(default=None, alias="experimentId")
    variant_index: Optional[int] = Field(default=None, alias="variantIndex")
    event_name: Optional[str] = Field(default=None, alias="eventName")
    value: Optional[float] = None

    model_config = ConfigDict(populate_by_name=True)
