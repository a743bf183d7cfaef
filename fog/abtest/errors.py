from __future__ import annotations


class FogError(Exception):
    """实验核心的异常基类"""


class ExperimentNotFoundError(FogError):
    """实验记录不存在"""

    def __init__(self, experiment_id: str):
        super().__init__(f"experiment not found: {experiment_id}")
        self.experiment_id = experiment_id


class InvalidExperimentError(FogError, ValueError):
    """管理端写入的实验字段不合法"""


class AggregationError(FogError):
    """聚合查询服务调用失败"""


class InvalidEventError(FogError, ValueError):
    """上报事件缺少必要字段"""
