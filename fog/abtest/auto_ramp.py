"""
Auto-ramp：开关（flag）在持续有利的证据下逐级放量

flag 固定两个 variant：index 0 = off，index 1 = on，P = P(on 优于 off)。
- P > 阈值：连续命中计数 +1（非原子 read-then-write）；
  计数 >= 要求次数时，放量到 schedule 中第一个严格大于当前 traffic 的档位，并清零计数。
  已在 100% 时不再动作。
- P <= 阈值，或本次没有 on 的观测数据：计数无条件清零。
flag 分桶是 ramp-stable 的，所以放量只会让访客 off -> on。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from loguru import logger

from fog.abtest.enums import ExperimentStatus, ExperimentType
from fog.abtest.repository import ExperimentRepository, RampCounterRepository
from fog.core.clock import Clock, to_iso, utc_now
from fog.schemas.experiment_schema import Experiment

RAMP_SCHEDULE = (10, 25, 50, 75, 100)
RAMP_THRESHOLD = 0.95
RAMP_CONSECUTIVE_REQUIRED = 3


@dataclass(frozen=True)
class AutoRampOutcome:
    evaluated: bool
    consecutive: int = 0
    ramped: bool = False
    previous_percent: Optional[float] = None
    traffic_percent: Optional[float] = None
    probability: Optional[float] = None
    experiment: Optional[Experiment] = None


NOT_EVALUATED = AutoRampOutcome(evaluated=False)


def applies_to(experiment: Experiment) -> bool:
    return experiment.type == ExperimentType.flag and experiment.status == ExperimentStatus.active


def next_ramp_step(current_percent: float, schedule: Sequence[int] = RAMP_SCHEDULE) -> Optional[int]:
    for step in schedule:
        if step > current_percent:
            return step
    return None


class AutoRampEvaluator:
    def __init__(
        self,
        repo: ExperimentRepository,
        counters: RampCounterRepository,
        *,
        threshold: float = RAMP_THRESHOLD,
        consecutive_required: int = RAMP_CONSECUTIVE_REQUIRED,
        schedule: Sequence[int] = RAMP_SCHEDULE,
        clock: Clock | None = None,
    ):
        self._repo = repo
        self._counters = counters
        self._threshold = float(threshold)
        self._consecutive_required = int(consecutive_required)
        self._schedule = tuple(sorted(schedule))
        self._clock = clock or utc_now

    async def evaluate(
        self,
        experiment: Experiment,
        probabilities: Sequence[Optional[float]],
    ) -> AutoRampOutcome:
        if not applies_to(experiment):
            return NOT_EVALUATED
        if len(probabilities) < 2:
            # 本次没有 on 的观测数据：视同未达标，连续记录清零
            await self._counters.reset(experiment.id)
            return AutoRampOutcome(
                evaluated=True,
                consecutive=0,
                traffic_percent=experiment.traffic_percent,
                experiment=experiment,
            )
        prob = probabilities[1]
        if prob is None:
            return NOT_EVALUATED

        if prob <= self._threshold:
            await self._counters.reset(experiment.id)
            return AutoRampOutcome(
                evaluated=True,
                consecutive=0,
                traffic_percent=experiment.traffic_percent,
                probability=prob,
                experiment=experiment,
            )

        consecutive = await self._counters.get(experiment.id) + 1
        await self._counters.put(experiment.id, consecutive)

        if consecutive < self._consecutive_required:
            return AutoRampOutcome(
                evaluated=True,
                consecutive=consecutive,
                traffic_percent=experiment.traffic_percent,
                probability=prob,
                experiment=experiment,
            )

        previous = experiment.traffic_percent
        step = next_ramp_step(previous, self._schedule)
        if step is None:
            # 已全量：保留计数，不再动作
            return AutoRampOutcome(
                evaluated=True,
                consecutive=consecutive,
                traffic_percent=previous,
                probability=prob,
                experiment=experiment,
            )

        now = to_iso(self._clock())

        def _ramp(current: Experiment) -> Experiment:
            return current.model_copy(update={"traffic_percent": float(step), "updated_at": now})

        updated = await self._repo.update_if_active(experiment.id, _ramp)
        if updated is None:
            return AutoRampOutcome(
                evaluated=True,
                consecutive=consecutive,
                traffic_percent=previous,
                probability=prob,
                experiment=experiment,
            )

        await self._counters.reset(experiment.id)
        logger.info(
            f"[AutoRamp] 放量: id={experiment.id}, {previous:g}% -> {step}%, p={prob:.4f}"
        )
        return AutoRampOutcome(
            evaluated=True,
            consecutive=0,
            ramped=True,
            previous_percent=previous,
            traffic_percent=float(step),
            probability=prob,
            experiment=updated,
        )
