"""
Auto-stop：实验证据足够明确时自动结束并写入胜出者

适用条件：type=experiment 且 autoStop 开启且 status=active。
前置门槛：所有 variant 的曝光数 >= minSamplesPerVariant。
判定：按 index 升序遍历非 control variant，第一个满足
  P > upper（该 variant 胜出）或 P < lower（control 胜出）的即为结论。
未得出结论时不写任何状态，下次评估从头重新计算。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from loguru import logger

from fog.abtest.analytics import VariantStats
from fog.abtest.enums import ExperimentStatus, ExperimentType
from fog.abtest.repository import ExperimentRepository
from fog.core.clock import Clock, to_iso, utc_now
from fog.schemas.experiment_schema import Experiment

AUTO_STOP_UPPER = 0.99
AUTO_STOP_LOWER = 0.01


@dataclass(frozen=True)
class AutoStopOutcome:
    decided: bool
    winner: Optional[str] = None
    winner_index: Optional[int] = None
    probability: Optional[float] = None
    experiment: Optional[Experiment] = None


NO_DECISION = AutoStopOutcome(decided=False)


def applies_to(experiment: Experiment) -> bool:
    return (
        experiment.type == ExperimentType.experiment
        and experiment.auto_stop
        and experiment.status == ExperimentStatus.active
    )


def has_min_samples(experiment: Experiment, stats: Sequence[VariantStats]) -> bool:
    """观测到的 variant 与记录中声明的 variant 都要达到最小样本量"""
    if not stats:
        return False
    min_samples = experiment.min_samples_per_variant
    observed = {s.index: s.impressions for s in stats}
    if any(impressions < min_samples for impressions in observed.values()):
        return False
    return all(observed.get(i, 0) >= min_samples for i in range(len(experiment.variants)))


def pick_winner(
    stats: Sequence[VariantStats],
    probabilities: Sequence[Optional[float]],
    *,
    upper: float = AUTO_STOP_UPPER,
    lower: float = AUTO_STOP_LOWER,
) -> Optional[tuple[int, float]]:
    """
    返回 (胜出 variant 的 index, 触发判定的概率)；无结论返回 None

    多个 variant 同时达标时取 index 最小的那个（first match），不做强弱比较。
    """
    for i in range(1, len(stats)):
        prob = probabilities[i] if i < len(probabilities) else None
        if prob is None:
            continue
        if prob > upper:
            return stats[i].index, prob
        if prob < lower:
            return stats[0].index, prob
    return None


class AutoStopEvaluator:
    def __init__(
        self,
        repo: ExperimentRepository,
        *,
        upper: float = AUTO_STOP_UPPER,
        lower: float = AUTO_STOP_LOWER,
        clock: Clock | None = None,
    ):
        self._repo = repo
        self._upper = float(upper)
        self._lower = float(lower)
        self._clock = clock or utc_now

    async def evaluate(
        self,
        experiment: Experiment,
        stats: Sequence[VariantStats],
        probabilities: Sequence[Optional[float]],
    ) -> AutoStopOutcome:
        if not applies_to(experiment):
            return NO_DECISION
        if not has_min_samples(experiment, stats):
            return NO_DECISION

        picked = pick_winner(stats, probabilities, upper=self._upper, lower=self._lower)
        if picked is None:
            return NO_DECISION

        winner_index, prob = picked
        winner = experiment.variant_name(winner_index)
        now = to_iso(self._clock())

        def _complete(current: Experiment) -> Experiment:
            return current.model_copy(
                update={
                    "status": ExperimentStatus.completed,
                    "winner": winner,
                    "completed_at": now,
                    "updated_at": now,
                }
            )

        updated = await self._repo.update_if_active(experiment.id, _complete)
        if updated is None:
            return NO_DECISION

        logger.info(
            f"[AutoStop] 实验结束: id={experiment.id}, winner={winner}, p={prob:.4f}"
        )
        return AutoStopOutcome(
            decided=True,
            winner=winner,
            winner_index=winner_index,
            probability=prob,
            experiment=updated,
        )
