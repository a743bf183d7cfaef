import math
import random
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence, Union

DEFAULT_SAMPLES = 10_000


@dataclass(frozen=True)
class VariantData:
    conversions: float
    total: float


def _clamp01(x: float) -> float:
    # NaN 也会落到 0（max(0, nan) -> 0）
    if x != x:
        return 0.0
    return max(0.0, min(1.0, x))


def sample_beta(alpha: float, beta: float, rng: Optional[random.Random] = None) -> float:
    """Beta(alpha, beta) 的正态近似抽样（Box-Muller）。

    样本量较大、后验接近单峰时足够准确；靠近 0/1 的尾部误差由 clamp 吸收。
    """
    r = rng or random
    s = alpha + beta
    mu = alpha / s
    variance = (alpha * beta) / (s * s * (s + 1))
    # random() ∈ [0, 1)，取 1 - u 保证 log 的参数 > 0
    u1 = 1.0 - r.random()
    u2 = r.random()
    z = math.sqrt(-2.0 * math.log(u1)) * math.cos(2.0 * math.pi * u2)
    return _clamp01(mu + math.sqrt(max(variance, 0.0)) * z)


def bayesian_probability(
    control_conversions: float,
    control_total: float,
    treatment_conversions: float,
    treatment_total: float,
    *,
    samples: int = DEFAULT_SAMPLES,
    rng: Optional[random.Random] = None,
) -> float:
    """P(treatment 优于 control)，Beta-Binomial Monte Carlo。

    先验 Beta(1,1)（均匀，无先验信息）。非法输入先 clamp 到合法区间：
    conversions ∈ [0, total]，total >= 0，保证 Beta 参数为正。
    """
    ct = max(0.0, float(control_total))
    cc = max(0.0, min(float(control_conversions), ct))
    tt = max(0.0, float(treatment_total))
    tc = max(0.0, min(float(treatment_conversions), tt))

    if samples <= 0:
        return 0.5

    wins = 0
    for _ in range(samples):
        a = sample_beta(cc + 1, ct - cc + 1, rng)
        b = sample_beta(tc + 1, tt - tc + 1, rng)
        if b > a:
            wins += 1
    return wins / samples


def _as_variant_data(v: Union[VariantData, Mapping[str, Any]]) -> VariantData:
    if isinstance(v, VariantData):
        return v
    return VariantData(conversions=float(v["conversions"]), total=float(v["total"]))


def multi_variant_probabilities(
    variants: Sequence[Union[VariantData, Mapping[str, Any]]],
    *,
    samples: int = DEFAULT_SAMPLES,
    rng: Optional[random.Random] = None,
) -> List[Optional[float]]:
    """每个非 control variant 与 control（index 0）两两比较。

    返回与输入逐位对齐的列表：index 0 固定为 None，
    index i 为 P(variant i 优于 control)。非 control 之间不互相比较。
    """
    if not variants:
        return []
    data = [_as_variant_data(v) for v in variants]
    control = data[0]
    out: List[Optional[float]] = [None]
    for v in data[1:]:
        out.append(
            bayesian_probability(
                control.conversions,
                control.total,
                v.conversions,
                v.total,
                samples=samples,
                rng=rng,
            )
        )
    return out
