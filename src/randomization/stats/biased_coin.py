"""
Doubly-adaptive biased coin.

Turns the current proportion on arm A and a target rho into the probability
of assigning the next patient to arm A. The exponent gamma controls how hard
the coin pushes back toward the target: gamma = 0 is a fixed coin at rho,
larger values correct imbalance faster.

Both terms of the allocation function are formed in log space, so large
gamma saturates toward 0 or 1 instead of overflowing.
"""

import numpy as np
from scipy.special import expit

from ..errors import InternalInvariantError

BOUNDARY_EPS = 1e-6


def _log_term(weight: float, num: float, den: float, gamma: float) -> float:
    """log(weight * (num / den) ** gamma)"""
    with np.errstate(divide="ignore", invalid="ignore"):
        log_ratio = 0.0 if gamma == 0 else gamma * (np.log(num) - np.log(den))
        return float(np.log(weight) + log_ratio)


def _share(log_t1: float, log_t2: float, **inputs) -> float:
    """t1 / (t1 + t2) from the logs of both terms."""
    with np.errstate(invalid="ignore"):
        p = float(expit(log_t1 - log_t2))
    if not np.isfinite(p):
        detail = ", ".join(f"{k}={v}" for k, v in inputs.items())
        raise InternalInvariantError(f"Biased coin produced a non-finite probability ({detail})")
    return p


def biased_coin_probability(x: float, y: float, gamma: float = 2.0) -> float:
    """
    Hu-Zhang allocation function g(x, y).

    Args:
        x: Current proportion of the scope on arm A
        y: Target allocation rho
        gamma: Non-negative exponent

    Returns:
        Probability of assigning arm A
    """
    if abs(x) < BOUNDARY_EPS:
        return 1.0
    if abs(x - 1) < BOUNDARY_EPS:
        return 0.0

    log_t1 = _log_term(y, y, x, gamma)
    log_t2 = _log_term(1 - y, 1 - y, 1 - x, gamma)
    return _share(log_t1, log_t2, x=x, y=y, gamma=gamma)


def covariate_adjusted_probability(
    x: float,
    rho: float,
    pi_j: float,
    gamma: float = 2.0,
) -> float:
    """
    CADBCD assignment probability for a patient in stratum j.

    The global imbalance between x and the weighted target rho tilts the
    stratum's own target pi_j.

    Args:
        x: Global proportion on arm A so far
        rho: Enrollment-weighted average of the per-stratum targets
        pi_j: Target allocation of the arriving patient's stratum
        gamma: Non-negative exponent

    Returns:
        Probability of assigning arm A (unclamped)
    """
    if abs(x) < BOUNDARY_EPS:
        return 1.0
    if abs(x - 1) < BOUNDARY_EPS:
        return 0.0

    log_t1 = _log_term(pi_j, rho, x, gamma)
    log_t2 = _log_term(1 - pi_j, 1 - rho, 1 - x, gamma)
    return _share(log_t1, log_t2, x=x, rho=rho, pi_j=pi_j, gamma=gamma)
