"""
Trial replay against a fully known outcome table.

Each row of the table holds a patient's stratum and the outcome they would
have under either arm. Rows are enrolled in order through a fresh
TrialSession and the outcome of the assigned arm is reported back after a
configurable lag, so batch runs exercise exactly the same code path as live
enrollment.
"""

import logging
from collections import deque
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .schema import AllocationMethod, Arm, TrialConfig
from .session import TrialSession

logger = logging.getLogger(__name__)

SIMULATOR_SEED = 42

# stratum -> ((mean_a, sd_a), (mean_b, sd_b))
ArmParams = Mapping[Any, Tuple[Tuple[float, float], Tuple[float, float]]]


def simulate_outcome_table(
    n: int,
    arm_params: ArmParams,
    stratum_probs: Optional[Sequence[float]] = None,
    random_seed: int = SIMULATOR_SEED,
) -> pd.DataFrame:
    """
    Generate potential outcomes from per-stratum normal distributions.

    Args:
        n: Number of patients
        arm_params: Mapping stratum -> ((mean_a, sd_a), (mean_b, sd_b))
        stratum_probs: Probability of each stratum (uniform when omitted)
        random_seed: Seed for the generator

    Returns:
        DataFrame with patient_id, stratum, outcome_a, outcome_b
    """
    rng = np.random.default_rng(random_seed)
    strata = list(arm_params)
    idx = rng.choice(len(strata), size=n, p=stratum_probs)

    outcome_a = np.empty(n)
    outcome_b = np.empty(n)
    for k, s in enumerate(strata):
        mask = idx == k
        (mu_a, sd_a), (mu_b, sd_b) = arm_params[s]
        outcome_a[mask] = rng.normal(mu_a, sd_a, mask.sum())
        outcome_b[mask] = rng.normal(mu_b, sd_b, mask.sum())

    return pd.DataFrame({
        "patient_id": np.arange(1, n + 1),
        "stratum": [strata[k] for k in idx],
        "outcome_a": outcome_a,
        "outcome_b": outcome_b,
    })


def replay_outcome_table(
    table: pd.DataFrame,
    config: TrialConfig,
    reporting_lag: int = 0,
    id_col: str = "patient_id",
    stratum_col: str = "stratum",
) -> Tuple[Dict[str, Any], TrialSession]:
    """
    Replay enrollment and outcome reporting for every row of ``table``.

    Args:
        table: Rows with patient id, stratum, outcome_a and outcome_b
        config: Trial configuration (its seed drives the allocation stream)
        reporting_lag: Number of later enrollments before an outcome is
            reported; 0 reports it immediately
        id_col: Column with patient id
        stratum_col: Column with stratum

    Returns:
        Tuple of (summary dict, session holding the completed ledger)
    """
    if reporting_lag < 0:
        raise ValueError("reporting_lag must be >= 0")

    session = TrialSession(config)
    pending = deque()
    rows = table[[id_col, stratum_col, "outcome_a", "outcome_b"]].itertuples(index=False, name=None)

    for pid, stratum, y_a, y_b in rows:
        result = session.enroll(int(pid), stratum)
        pending.append((result.patient_id, y_a if result.arm == Arm.A else y_b))
        while len(pending) > reporting_lag:
            session.record_outcome(*pending.popleft())

    while pending:
        session.record_outcome(*pending.popleft())

    records = session.patients()
    n_treatment = sum(1 for r in records if r.arm == Arm.A)
    adaptive = [r for r in records if r.allocation_method == AllocationMethod.ADAPTIVE]
    methods: Dict[str, int] = {}
    for r in records:
        methods[r.allocation_method.value] = methods.get(r.allocation_method.value, 0) + 1

    summary = {
        "study_name": config.study_name,
        "randomization_method": config.randomization_method.value,
        "target": config.target.value,
        "n_assigned": len(records),
        "n_treatment": n_treatment,
        "n_control": len(records) - n_treatment,
        "proportion_treatment": n_treatment / len(records) if records else 0.0,
        "adaptive_proportion_treatment": (
            sum(1 for r in adaptive if r.arm == Arm.A) / len(adaptive) if adaptive else None
        ),
        "allocation_methods": methods,
        "reporting_lag": reporting_lag,
        "random_seed": config.seed,
    }
    logger.info(f"Replay complete: {summary}")
    return summary, session
