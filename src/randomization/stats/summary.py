"""
Per-arm outcome summaries for a ledger scope.

A scope is any subset of patient records (the whole trial or one stratum).
Summaries are recomputed from the records on every call; nothing is cached.
"""

from typing import Iterable, Optional, Sequence

import numpy as np

from ..schema import Arm, ArmStats, PatientRecord, StratumState


def build_arm_stats(arm: Arm, values: Sequence[float]) -> Optional[ArmStats]:
    """
    Build ArmStats from outcome values.

    Uses the sample standard deviation (ddof=1); a single observation has
    std 0. Returns None when there are no values.
    """
    n = len(values)
    if n == 0:
        return None
    arr = np.asarray(values, dtype=float)
    mean = float(np.mean(arr))
    std = float(np.std(arr, ddof=1)) if n > 1 else 0.0
    return ArmStats(arm=arm, n=n, mean=mean, std=std)


def summarize_scope(records: Iterable[PatientRecord]) -> StratumState:
    """
    Derive the state of a scope from its patient records.

    Args:
        records: Patient records belonging to the scope

    Returns:
        StratumState with arm counts over all enrolled patients and outcome
        statistics over the outcome-bearing ones
    """
    n_a = n_b = 0
    outcomes_a, outcomes_b = [], []
    for rec in records:
        if rec.arm == Arm.A:
            n_a += 1
            if rec.has_outcome:
                outcomes_a.append(rec.outcome)
        else:
            n_b += 1
            if rec.has_outcome:
                outcomes_b.append(rec.outcome)

    return StratumState(
        n_enrolled=n_a + n_b,
        n_a=n_a,
        n_b=n_b,
        n_outcomes=len(outcomes_a) + len(outcomes_b),
        stats_a=build_arm_stats(Arm.A, outcomes_a),
        stats_b=build_arm_stats(Arm.B, outcomes_b),
    )
