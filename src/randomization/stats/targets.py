"""
Target allocation estimators.

Each strategy maps per-arm outcome summaries to rho, the long-run
proportion of patients that should receive arm A:

- Neyman: minimizes the variance of the mean-difference estimator
- RSIHR: minimizes expected failures (larger outcomes are worse)
- BandBis: normal-CDF rule driven by the observed mean difference
- ZhangRosenberger: RSIHR when it favours the better arm, else 0.5
- New: Neyman subject to the safety ceiling rho*muA + (1-rho)*muB <= TB
- Bayesian: posterior probability that A has the lower mean under an
  exponential outcome model, tempered by the fraction of the planned
  enrollment already observed

`scope_target` picks the estimator for a scope summary; the Bayesian rule
needs arm totals and the planned sample size rather than means and SDs.
"""

import math
from typing import Optional, Union

import numpy as np
from scipy import stats

from ..errors import ConfigurationError, InternalInvariantError
from ..schema import PROBABILITY_CEILING, PROBABILITY_FLOOR, StratumState, TargetStrategy

SD_FLOOR = 1e-5
SD_SUBSTITUTE = 0.1
MEAN_FLOOR = 1e-5
PRIOR_SHAPE = 1.0
PRIOR_RATE = 1.0
BAYES_TEMPER = 0.8


def _rsihr(mean_a: float, sd_a: float, mean_b: float, sd_b: float) -> float:
    num = sd_a * math.sqrt(mean_b)
    return num / (num + sd_b * math.sqrt(mean_a))


def target_allocation(
    mean_a: float,
    sd_a: float,
    mean_b: float,
    sd_b: float,
    strategy: Union[TargetStrategy, str] = TargetStrategy.NEYMAN,
    tb: float = 4.0,
) -> float:
    """
    Estimate the target allocation on arm A.

    Args:
        mean_a: Mean outcome observed on arm A
        sd_a: Standard deviation of outcomes on arm A
        mean_b: Mean outcome observed on arm B
        sd_b: Standard deviation of outcomes on arm B
        strategy: TargetStrategy or its name
        tb: Threshold used by BandBis (scale) and New (safety ceiling)

    Returns:
        rho clamped to [0.1, 0.9]

    Raises:
        ConfigurationError: if the strategy is not recognised, or is Bayesian
            (see `bayesian_target`)
    """
    strategy = _strategy(strategy)
    if strategy == TargetStrategy.BAYESIAN:
        raise ConfigurationError("The Bayesian target needs arm totals; use bayesian_target")

    if sd_a < SD_FLOOR:
        sd_a = SD_SUBSTITUTE
    if sd_b < SD_FLOOR:
        sd_b = SD_SUBSTITUTE

    if strategy == TargetStrategy.NEYMAN:
        rho = sd_a / (sd_a + sd_b)

    elif strategy == TargetStrategy.RSIHR:
        rho = _rsihr(max(mean_a, MEAN_FLOOR), sd_a, max(mean_b, MEAN_FLOOR), sd_b)

    elif strategy == TargetStrategy.BANDBIS:
        rho = float(stats.norm.cdf((mean_a - mean_b) / tb))

    elif strategy == TargetStrategy.ZHANG_ROSENBERGER:
        # Means are floored so the ratio stays defined for non-positive outcomes.
        mu_a = max(mean_a, MEAN_FLOOR)
        mu_b = max(mean_b, MEAN_FLOOR)
        r_star = sd_a * math.sqrt(mu_b) / (sd_b * math.sqrt(mu_a))
        switch = (mean_a < mean_b and r_star > 1) or (mean_a > mean_b and r_star < 1)
        rho = _rsihr(mu_a, sd_a, mu_b, sd_b) if switch else 0.5

    else:  # TargetStrategy.NEW
        rho_neyman = sd_a / (sd_a + sd_b)
        if rho_neyman * mean_a + (1 - rho_neyman) * mean_b <= tb:
            rho = rho_neyman
        elif mean_a != mean_b:
            rho_tb = (tb - mean_b) / (mean_a - mean_b)
            rho = rho_tb if rho_tb > 0 else rho_neyman
        else:
            rho = rho_neyman

    if not math.isfinite(rho):
        raise InternalInvariantError(
            f"Non-finite target allocation for strategy {strategy.value}: "
            f"mean_a={mean_a}, sd_a={sd_a}, mean_b={mean_b}, sd_b={sd_b}"
        )
    return float(np.clip(rho, PROBABILITY_FLOOR, PROBABILITY_CEILING))


def _strategy(strategy: Union[TargetStrategy, str]) -> TargetStrategy:
    try:
        return TargetStrategy(strategy)
    except ValueError:
        raise ConfigurationError(f"Unknown target strategy {strategy!r}")


def posterior_superiority(
    n_a: int,
    sum_a: float,
    n_b: int,
    sum_b: float,
    prior_shape: float = PRIOR_SHAPE,
    prior_rate: float = PRIOR_RATE,
) -> float:
    """
    P(mean_A < mean_B) for exponential outcomes with Gamma priors on the rates.

    Each arm's rate has posterior Gamma(n + shape, sum + rate). With
    X ~ Gamma(a_A, 1) and Y ~ Gamma(a_B, 1), rate_A > rate_B exactly when
    X / (X + Y) > r_A / (r_A + r_B), and X / (X + Y) ~ Beta(a_A, a_B).
    Posterior rates are floored at MEAN_FLOOR for non-positive totals.
    """
    a_a = n_a + prior_shape
    a_b = n_b + prior_shape
    r_a = max(sum_a + prior_rate, MEAN_FLOOR)
    r_b = max(sum_b + prior_rate, MEAN_FLOOR)
    return float(stats.beta.sf(r_a / (r_a + r_b), a_a, a_b))


def bayesian_target(
    n_a: int,
    sum_a: float,
    n_b: int,
    sum_b: float,
    planned_n: int,
) -> float:
    """
    Bayesian target allocation on arm A.

    The posterior superiority p is tempered with the exponent
    c = (n_a + n_b) / (2 * planned_n * 0.8), so early estimates stay near
    0.5 and sharpen as enrollment approaches the planned size.

    Returns:
        p^c / (p^c + (1 - p)^c) clamped to [0.1, 0.9]
    """
    p = posterior_superiority(n_a, sum_a, n_b, sum_b)
    c = (n_a + n_b) / (2 * planned_n * BAYES_TEMPER)
    num = p ** c
    denom = num + (1 - p) ** c
    rho = num / denom if denom > 0 else float("nan")
    if not math.isfinite(rho):
        raise InternalInvariantError(
            f"Non-finite Bayesian target: n_a={n_a}, sum_a={sum_a}, n_b={n_b}, sum_b={sum_b}"
        )
    return float(np.clip(rho, PROBABILITY_FLOOR, PROBABILITY_CEILING))


def scope_target(
    state: StratumState,
    strategy: Union[TargetStrategy, str],
    tb: float,
    planned_n: Optional[int] = None,
) -> float:
    """Target allocation for an estimable scope (both arms have outcomes)."""
    a, b = state.stats_a, state.stats_b
    if _strategy(strategy) == TargetStrategy.BAYESIAN:
        if planned_n is None:
            raise ConfigurationError("The Bayesian target requires planned_n")
        return bayesian_target(a.n, a.mean * a.n, b.n, b.mean * b.n, planned_n)
    return target_allocation(a.mean, a.std, b.mean, b.std, strategy, tb)
