"""质量等级到感知差异阈值的映射表。"""

from __future__ import annotations

from image_optimizer.core.exceptions import InvalidConfigurationError

# 下标为质量 0..100，值为目标差异度（DSSIM），随质量单调递减。
QUALITY_TARGETS: tuple[float, ...] = (
    0.250000, 0.238999, 0.228483, 0.218429, 0.208818, 0.199629,
    0.190845, 0.182447, 0.174419, 0.166744, 0.159407, 0.152393,
    0.145687, 0.139276, 0.133148, 0.127289, 0.121688, 0.116333,
    0.111215, 0.106321, 0.101642, 0.097170, 0.092894, 0.088807,
    0.084899, 0.081163, 0.077592, 0.074178, 0.070914, 0.067793,
    0.064810, 0.061958, 0.059232, 0.056626, 0.054134, 0.051752,
    0.049475, 0.047298, 0.045216, 0.043227, 0.041325, 0.039506,
    0.037768, 0.036106, 0.034517, 0.032998, 0.031546, 0.030158,
    0.028831, 0.027563, 0.026350, 0.025190, 0.024082, 0.023022,
    0.022009, 0.021041, 0.020115, 0.019230, 0.018384, 0.017575,
    0.016801, 0.016062, 0.015355, 0.014680, 0.014034, 0.013416,
    0.012826, 0.012261, 0.011722, 0.011206, 0.010713, 0.010242,
    0.009791, 0.009360, 0.008948, 0.008555, 0.008178, 0.007818,
    0.007474, 0.007145, 0.006831, 0.006530, 0.006243, 0.005968,
    0.005706, 0.005455, 0.005215, 0.004985, 0.004766, 0.004556,
    0.004356, 0.004164, 0.003981, 0.003806, 0.003638, 0.003478,
    0.003325, 0.003179, 0.003039, 0.002905, 0.002777,
)

DEFAULT_QUALITY = 85


def target_for_quality(quality: int) -> float:
    """返回质量等级对应的目标差异度。"""

    if not 0 <= quality < len(QUALITY_TARGETS):
        raise InvalidConfigurationError(f"质量必须位于 0~100 之间: {quality}")
    return QUALITY_TARGETS[quality]
