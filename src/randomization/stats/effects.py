"""
Treatment effect estimate for continuous outcomes.

Difference in means (A minus B) with a normal-approximation confidence
interval, overall and per stratum.
"""

from typing import Any, Dict, List

import numpy as np
from scipy import stats

from ..errors import InsufficientDataError
from ..schema import PatientRecord, StratumEffect, TreatmentEffect
from .summary import summarize_scope


def mean_difference(
    mean_a: float,
    std_a: float,
    n_a: int,
    mean_b: float,
    std_b: float,
    n_b: int,
    ci_level: float = 0.95,
):
    """
    Difference in means with a normal CI.

    Returns:
        Tuple of (effect, standard_error, ci_low, ci_high)
    """
    effect = mean_a - mean_b
    se = float(np.sqrt(std_a**2 / n_a + std_b**2 / n_b))
    z_crit = stats.norm.ppf((1 + ci_level) / 2)
    return effect, se, float(effect - z_crit * se), float(effect + z_crit * se)


def treatment_effect(records: List[PatientRecord], ci_level: float = 0.95) -> TreatmentEffect:
    """
    Estimate the treatment effect from outcome-bearing records.

    Args:
        records: Patient records (records without outcomes are ignored)
        ci_level: Confidence level

    Returns:
        TreatmentEffect with per-stratum breakdown

    Raises:
        InsufficientDataError: fewer than 2 outcomes, or an arm without outcomes
    """
    observed = [r for r in records if r.has_outcome]
    if len(observed) < 2:
        raise InsufficientDataError(
            "Insufficient data for analysis (need at least 2 patients with outcomes)"
        )

    state = summarize_scope(observed)
    if not state.estimable:
        raise InsufficientDataError("Need patients with outcomes in both treatment groups")

    a, b = state.stats_a, state.stats_b
    effect, se, ci_low, ci_high = mean_difference(a.mean, a.std, a.n, b.mean, b.std, b.n, ci_level)

    by_stratum: Dict[Any, List[PatientRecord]] = {}
    for rec in observed:
        by_stratum.setdefault(rec.stratum, []).append(rec)

    strata = []
    for stratum, recs in by_stratum.items():
        s = summarize_scope(recs)
        if not s.estimable:
            continue
        strata.append(StratumEffect(
            stratum=stratum,
            treatment_effect=s.stats_a.mean - s.stats_b.mean,
            n_treated=s.stats_a.n,
            n_control=s.stats_b.n,
            mean_treated=s.stats_a.mean,
            mean_control=s.stats_b.mean,
        ))

    return TreatmentEffect(
        treatment_effect=effect,
        standard_error=se,
        ci_low=ci_low,
        ci_high=ci_high,
        mean_treated=a.mean,
        mean_control=b.mean,
        n_treated=a.n,
        n_control=b.n,
        strata=strata,
    )
