from __future__ import annotations

import asyncio
import random
import threading
import unittest
from datetime import datetime, timezone
from typing import Any

from fog.abtest.analytics import aggregate_variant_stats
from fog.abtest.auto_ramp import AutoRampEvaluator
from fog.abtest.auto_stop import AutoStopEvaluator
from fog.abtest.enums import ExperimentStatus, ExperimentType
from fog.abtest.errors import AggregationError
from fog.abtest.repository import ExperimentRepository, RampCounterRepository
from fog.jobs.evaluate_experiments import evaluate_all
from fog.schemas.experiment_schema import Experiment
from fog.schemas.results_schema import DecisionKind
from fog.services import ResultsService
from tests.fake_redis import FakeRedis, FakeRedisClient

FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _rows(*variants: tuple[int, int]) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for index, (impressions, conversions) in enumerate(variants):
        rows.append({"variant": str(index), "eventType": "impression", "count": impressions})
        rows.append({"variant": str(index), "eventType": "conversion", "count": conversions})
    return rows


class _GatedRandom(random.Random):
    """每次取随机数前先等待 gate，用来模拟一次耗时很长的 Monte Carlo 估计"""

    def __init__(self, gate: threading.Event):
        super().__init__(7)
        self._gate = gate

    def random(self) -> float:
        self._gate.wait()
        return super().random()


class _StubAggregation:
    """按实验 id 返回固定聚合行；failing 中的 id 抛 AggregationError"""

    def __init__(self):
        self.events: dict[str, list[dict[str, Any]]] = {}
        self.revenue: dict[str, list[dict[str, Any]]] = {}
        self.failing: set[str] = set()

    async def count_events(self, experiment_id: str) -> list[dict[str, Any]]:
        if experiment_id in self.failing:
            raise AggregationError("Analytics Engine error: 500")
        return self.events.get(experiment_id, [])

    async def sum_revenue(self, experiment_id: str) -> list[dict[str, Any]]:
        return self.revenue.get(experiment_id, [])


class AggregateVariantStatsTestCase(unittest.TestCase):
    def test_merges_counts_and_revenue_sorted_by_index(self) -> None:
        events = [
            {"variant": "1", "eventType": "impression", "count": 200},
            {"variant": "0", "eventType": "impression", "count": 100},
            {"variant": "0", "eventType": "conversion", "count": 10},
            {"variant": "1", "eventType": "conversion", "count": "30"},
        ]
        revenue = [{"variant": "1", "totalRevenue": 99.5}]

        stats = aggregate_variant_stats(events, revenue)

        self.assertEqual([s.index for s in stats], [0, 1])
        self.assertEqual((stats[0].impressions, stats[0].conversions), (100, 10))
        self.assertEqual((stats[1].impressions, stats[1].conversions), (200, 30))
        self.assertEqual(stats[0].total_revenue, 0.0)
        self.assertEqual(stats[1].total_revenue, 99.5)

    def test_revenue_only_variant_is_kept(self) -> None:
        stats = aggregate_variant_stats([], [{"variant": "2", "total_revenue": "12"}])
        self.assertEqual(len(stats), 1)
        self.assertEqual(stats[0].index, 2)
        self.assertEqual(stats[0].impressions, 0)
        self.assertEqual(stats[0].total_revenue, 12.0)

    def test_unparseable_rows_are_skipped(self) -> None:
        events = [
            {"variant": "x", "eventType": "impression", "count": 5},
            {"variant": "-1", "eventType": "impression", "count": 5},
            {"variant": "0", "eventType": "click", "count": 5},
        ]
        stats = aggregate_variant_stats(events, [])
        self.assertEqual(len(stats), 1)
        self.assertEqual(stats[0].impressions, 0)

    def test_non_finite_numbers_count_as_zero(self) -> None:
        events = [
            {"variant": "0", "eventType": "impression", "count": "NaN"},
            {"variant": "0", "eventType": "conversion", "count": "inf"},
            {"variant": "1", "eventType": "impression", "count": 40},
        ]
        revenue = [{"variant": "1", "totalRevenue": "-Infinity"}]

        stats = aggregate_variant_stats(events, revenue)

        self.assertEqual((stats[0].impressions, stats[0].conversions), (0, 0))
        self.assertEqual(stats[1].impressions, 40)
        self.assertEqual(stats[1].total_revenue, 0.0)


class ResultsServiceTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._redis = FakeRedis()
        client = FakeRedisClient(self._redis)
        self._repo = ExperimentRepository(client)  # type: ignore[arg-type]
        self._counters = RampCounterRepository(client)  # type: ignore[arg-type]
        self._aggregation = _StubAggregation()
        self._service = ResultsService(
            self._aggregation,
            self._repo,
            AutoStopEvaluator(self._repo, clock=lambda: FIXED_NOW),
            AutoRampEvaluator(self._repo, self._counters, clock=lambda: FIXED_NOW),
            samples=2000,
            rng=random.Random(42),
        )

    def _save(self, **overrides) -> Experiment:
        data = {
            "id": "abc-001",
            "name": "Pricing page",
            "variants": ["control", "treatment"],
            "traffic_percent": 100,
            "status": ExperimentStatus.active,
        }
        data.update(overrides)
        experiment = Experiment(**data)
        asyncio.run(self._repo.save(experiment))
        asyncio.run(self._repo.add_to_index(experiment.id))
        return experiment

    def _read(self, experiment_id: str = "abc-001"):
        return asyncio.run(self._service.read_results(experiment_id))

    def test_invalid_experiment_id_rejected(self) -> None:
        for bad in ("", "ABC", "abc'; DROP TABLE x; --", "exp_1"):
            with self.assertRaises(ValueError):
                self._read(bad)

    def test_report_rows(self) -> None:
        self._save(auto_stop=False)
        self._aggregation.events["abc-001"] = _rows((200, 20), (0, 0))
        self._aggregation.revenue["abc-001"] = [{"variant": "0", "totalRevenue": 50}]

        report = self._read()

        self.assertEqual(report.decision.kind, DecisionKind.not_applicable)
        self.assertEqual(len(report.variants), 2)
        control, treatment = report.variants
        self.assertEqual(control.name, "control")
        self.assertAlmostEqual(control.conversion_rate, 0.1)
        self.assertAlmostEqual(control.revenue_per_visitor, 0.25)
        self.assertIsNone(control.probability)
        self.assertEqual(treatment.conversion_rate, 0.0)
        self.assertEqual(treatment.revenue_per_visitor, 0.0)
        self.assertIsNotNone(treatment.probability)

    def test_clear_winner_is_declared_and_persisted(self) -> None:
        self._save()
        self._aggregation.events["abc-001"] = _rows((1000, 10), (1000, 900))

        report = self._read()

        self.assertEqual(report.decision.kind, DecisionKind.winner_declared)
        self.assertEqual(report.decision.winner, "treatment")
        self.assertEqual(report.status, ExperimentStatus.completed)
        self.assertEqual(report.completed_at, "2026-03-01T12:00:00.000Z")

        # 已 completed：再次读取不会重新决策
        again = self._read()
        self.assertEqual(again.decision.kind, DecisionKind.not_applicable)
        self.assertEqual(again.winner, "treatment")

    def test_too_few_samples_no_decision(self) -> None:
        self._save()
        self._aggregation.events["abc-001"] = _rows((50, 1), (50, 45))

        report = self._read()

        self.assertEqual(report.decision.kind, DecisionKind.no_decision)
        self.assertEqual(report.status, ExperimentStatus.active)

    def test_missing_record(self) -> None:
        self._aggregation.events["abc-404"] = _rows((10, 1), (10, 2))

        report = self._read("abc-404")

        self.assertEqual(report.decision.kind, DecisionKind.record_not_found)
        self.assertIsNone(report.status)
        self.assertEqual([v.name for v in report.variants], ["variant 0", "variant 1"])

    def test_storage_write_failure_is_no_decision(self) -> None:
        self._save()
        self._aggregation.events["abc-001"] = _rows((1000, 10), (1000, 900))
        self._redis.fail_writes = True

        report = self._read()

        self.assertEqual(report.decision.kind, DecisionKind.no_decision)
        self._redis.fail_writes = False
        stored = asyncio.run(self._repo.get("abc-001"))
        assert stored is not None
        self.assertEqual(stored.status, ExperimentStatus.active)

    def test_aggregation_failure_propagates(self) -> None:
        self._save()
        self._aggregation.failing.add("abc-001")
        with self.assertRaises(AggregationError):
            self._read()

    def test_flag_ramps_after_three_favourable_reads(self) -> None:
        self._save(
            id="f1a9",
            variants=["off", "on"],
            type=ExperimentType.flag,
            traffic_percent=10,
        )
        self._aggregation.events["f1a9"] = _rows((1000, 100), (1000, 300))

        kinds = [self._read("f1a9").decision.kind for _ in range(3)]

        self.assertEqual(
            kinds,
            [DecisionKind.ramp_pending, DecisionKind.ramp_pending, DecisionKind.ramped],
        )
        stored = asyncio.run(self._repo.get("f1a9"))
        assert stored is not None
        self.assertEqual(stored.traffic_percent, 25)
        self.assertEqual(stored.status, ExperimentStatus.active)

    def test_flag_without_data_resets_streak(self) -> None:
        self._save(id="f1a0", variants=["off", "on"], type=ExperimentType.flag)
        asyncio.run(self._redis.set("autostop:f1a0", "2"))

        report = self._read("f1a0")

        self.assertEqual(report.decision.kind, DecisionKind.ramp_pending)
        self.assertEqual(report.decision.consecutive, 0)
        self.assertEqual(report.variants, [])
        self.assertEqual(asyncio.run(self._redis.get("autostop:f1a0")), "0")

    def test_evaluate_all_skips_inactive_and_isolates_failures(self) -> None:
        self._save(id="aaa-1")
        self._save(id="bbb-2", status=ExperimentStatus.paused)
        self._save(id="ccc-3")
        self._aggregation.events["aaa-1"] = _rows((1000, 10), (1000, 900))
        self._aggregation.failing.add("ccc-3")

        outcomes = asyncio.run(evaluate_all(self._service, self._repo))

        self.assertEqual(outcomes, {"aaa-1": "winner_declared", "ccc-3": "error"})

    def test_evaluate_all_continues_after_record_read_failure(self) -> None:
        self._save(id="aaa-1")
        self._save(id="bbb-2")
        self._aggregation.events["bbb-2"] = _rows((1000, 10), (1000, 900))
        self._redis.fail_get_keys.add("experiment:aaa-1")

        outcomes = asyncio.run(evaluate_all(self._service, self._repo))

        self.assertEqual(outcomes, {"aaa-1": "error", "bbb-2": "winner_declared"})

    def test_slow_estimate_times_out(self) -> None:
        self._save()
        self._aggregation.events["abc-001"] = _rows((1000, 10), (1000, 900))
        gate = threading.Event()
        service = ResultsService(
            self._aggregation,
            self._repo,
            AutoStopEvaluator(self._repo, clock=lambda: FIXED_NOW),
            AutoRampEvaluator(self._repo, self._counters, clock=lambda: FIXED_NOW),
            samples=50,
            timeout_seconds=0.05,
            rng=_GatedRandom(gate),
        )

        async def _read():
            try:
                return await service.read_results("abc-001")
            finally:
                # 放行后台线程，让 asyncio.run 退出时能回收线程池
                gate.set()

        with self.assertRaises(asyncio.TimeoutError):
            asyncio.run(_read())

        stored = asyncio.run(self._repo.get("abc-001"))
        assert stored is not None
        self.assertEqual(stored.status, ExperimentStatus.active)


if __name__ == "__main__":
    unittest.main()
