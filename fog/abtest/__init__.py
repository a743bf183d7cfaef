"""
实验核心模块

访客分桶、Beta-Binomial 概率估计，以及基于它的 auto-stop / auto-ramp 决策。
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fog.abtest.auto_ramp import AutoRampEvaluator
    from fog.abtest.auto_stop import AutoStopEvaluator
    from fog.abtest.hashing import bucket
    from fog.abtest.repository import ExperimentRepository, RampCounterRepository
    from fog.abtest.stats import bayesian_probability, multi_variant_probabilities

__all__ = [
    "AutoRampEvaluator",
    "AutoStopEvaluator",
    "ExperimentRepository",
    "RampCounterRepository",
    "bayesian_probability",
    "bucket",
    "multi_variant_probabilities",
]
