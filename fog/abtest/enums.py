from __future__ import annotations

from enum import Enum


class ExperimentStatus(str, Enum):
    active = "active"
    paused = "paused"
    completed = "completed"


class ExperimentType(str, Enum):
    experiment = "experiment"  # fixed-allocation A/B test
    flag = "flag"  # progressive rollout, 2 variants: off / on


class BucketMode(str, Enum):
    experiment = "experiment"
    flag = "flag"

    @classmethod
    def for_type(cls, experiment_type: ExperimentType) -> "BucketMode":
        if experiment_type == ExperimentType.flag:
            return cls.flag
        return cls.experiment


class TrackEventType(str, Enum):
    impression = "impression"
    conversion = "conversion"
    pageview = "pageview"  # 与具体实验无关，variant 固定为 0
