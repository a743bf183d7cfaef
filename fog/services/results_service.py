from __future__ import annotations

import asyncio
import random
from typing import Optional, Sequence

from loguru import logger
from redis.exceptions import RedisError

from fog.abtest.analytics import (
    AggregationSource,
    VariantStats,
    aggregate_variant_stats,
    is_safe_experiment_id,
)
from fog.abtest.auto_ramp import AutoRampEvaluator
from fog.abtest.auto_stop import AutoStopEvaluator
from fog.abtest.enums import ExperimentStatus, ExperimentType
from fog.abtest.repository import ExperimentRepository
from fog.abtest.stats import DEFAULT_SAMPLES, multi_variant_probabilities
from fog.schemas.experiment_schema import Experiment
from fog.schemas.results_schema import Decision, DecisionKind, ResultsResponse, VariantResult


class ResultsService:
    """“读取结果”一次调用的完整流水线。

    聚合计数 -> 概率估计 -> 按记录类型分派到 auto-stop / auto-ramp -> 汇总报告。
    每次都从聚合数据重新计算，不缓存上一次的统计结果。
    """

    def __init__(
        self,
        aggregation: AggregationSource,
        repo: ExperimentRepository,
        auto_stop: AutoStopEvaluator,
        auto_ramp: AutoRampEvaluator,
        *,
        samples: int = DEFAULT_SAMPLES,
        timeout_seconds: Optional[float] = None,
        rng: Optional[random.Random] = None,
    ):
        self._aggregation = aggregation
        self._repo = repo
        self._auto_stop = auto_stop
        self._auto_ramp = auto_ramp
        self._samples = int(samples)
        self._timeout_seconds = timeout_seconds
        self._rng = rng

    async def read_results(self, experiment_id: str) -> ResultsResponse:
        if not is_safe_experiment_id(experiment_id):
            raise ValueError("Invalid experiment ID")

        event_rows, revenue_rows = await asyncio.gather(
            self._aggregation.count_events(experiment_id),
            self._aggregation.sum_revenue(experiment_id),
        )
        stats = aggregate_variant_stats(event_rows, revenue_rows)
        experiment = await self._repo.get(experiment_id)
        probabilities = await self._estimate(stats)

        decision, final = await self._decide(experiment, stats, probabilities)
        return ResultsResponse(
            experiment_id=experiment_id,
            variants=_variant_results(experiment, stats, probabilities),
            status=final.status if final else None,
            winner=final.winner if final else None,
            completed_at=final.completed_at if final else None,
            decision=decision,
        )

    async def _estimate(self, stats: Sequence[VariantStats]) -> list[Optional[float]]:
        # Monte Carlo 是纯 CPU 计算：放到线程里跑，外层可以超时放弃等待
        data = [s.as_variant_data() for s in stats]
        task = asyncio.to_thread(
            multi_variant_probabilities, data, samples=self._samples, rng=self._rng
        )
        if self._timeout_seconds:
            return await asyncio.wait_for(task, timeout=self._timeout_seconds)
        return await task

    async def _decide(
        self,
        experiment: Optional[Experiment],
        stats: Sequence[VariantStats],
        probabilities: Sequence[Optional[float]],
    ) -> tuple[Decision, Optional[Experiment]]:
        if experiment is None:
            return Decision(kind=DecisionKind.record_not_found), None
        if experiment.status != ExperimentStatus.active:
            return Decision(kind=DecisionKind.not_applicable), experiment

        try:
            if experiment.type == ExperimentType.flag:
                return await self._decide_ramp(experiment, probabilities)
            if not experiment.auto_stop:
                return Decision(kind=DecisionKind.not_applicable), experiment
            return await self._decide_stop(experiment, stats, probabilities)
        except RedisError as exc:
            # 写入失败即视为本次未做出决策，下一轮评估会重新计算
            logger.error(f"评估结果写入失败: id={experiment.id}, err={exc}")
            return Decision(kind=DecisionKind.no_decision), experiment

    async def _decide_stop(
        self,
        experiment: Experiment,
        stats: Sequence[VariantStats],
        probabilities: Sequence[Optional[float]],
    ) -> tuple[Decision, Experiment]:
        outcome = await self._auto_stop.evaluate(experiment, stats, probabilities)
        if not outcome.decided:
            return Decision(kind=DecisionKind.no_decision), experiment
        return (
            Decision(
                kind=DecisionKind.winner_declared,
                winner=outcome.winner,
                probability=outcome.probability,
            ),
            outcome.experiment or experiment,
        )

    async def _decide_ramp(
        self,
        experiment: Experiment,
        probabilities: Sequence[Optional[float]],
    ) -> tuple[Decision, Experiment]:
        outcome = await self._auto_ramp.evaluate(experiment, probabilities)
        if not outcome.evaluated:
            return Decision(kind=DecisionKind.no_decision), experiment
        kind = DecisionKind.ramped if outcome.ramped else DecisionKind.ramp_pending
        return (
            Decision(
                kind=kind,
                probability=outcome.probability,
                consecutive=outcome.consecutive,
                previous_percent=outcome.previous_percent,
                traffic_percent=outcome.traffic_percent,
            ),
            outcome.experiment or experiment,
        )


def _variant_results(
    experiment: Optional[Experiment],
    stats: Sequence[VariantStats],
    probabilities: Sequence[Optional[float]],
) -> list[VariantResult]:
    out: list[VariantResult] = []
    for i, s in enumerate(stats):
        name = experiment.variant_name(s.index) if experiment else f"variant {s.index}"
        out.append(
            VariantResult(
                index=s.index,
                name=name,
                impressions=s.impressions,
                conversions=s.conversions,
                conversion_rate=s.conversions / s.impressions if s.impressions > 0 else 0.0,
                probability=probabilities[i] if i < len(probabilities) else None,
                total_revenue=s.total_revenue,
                revenue_per_visitor=s.total_revenue / s.impressions if s.impressions > 0 else 0.0,
            )
        )
    return out
