"""
Allocation summaries over the trial ledger.

Counts and proportions per arm, overall and per stratum, built with pandas
from a ledger snapshot.
"""

from typing import Any, Dict, Iterable, Sequence

import pandas as pd

from .errors import InsufficientDataError
from .schema import Arm, PatientRecord


def records_frame(records: Iterable[PatientRecord]) -> pd.DataFrame:
    """Minimal analysis table: stratum, arm, outcome."""
    rows = [
        {"stratum": r.stratum, "arm": r.arm.value, "outcome": r.outcome}
        for r in records
    ]
    return pd.DataFrame(rows, columns=["stratum", "arm", "outcome"])


def _arm_counts(df: pd.DataFrame) -> Dict[str, int]:
    counts = df["arm"].value_counts()
    return {
        "treatment_a": int(counts.get(Arm.A.value, 0)),
        "control_b": int(counts.get(Arm.B.value, 0)),
    }


def status_counts(records: Sequence[PatientRecord], strata: Sequence[Any]) -> Dict[str, Any]:
    """
    Enrollment counts for the status endpoint.

    Every configured stratum is listed, including strata with no patients.
    """
    df = records_frame(records)
    arms = _arm_counts(df)
    by_stratum = {}
    for s in strata:
        sub = df[df["stratum"] == s]
        by_stratum[str(s)] = {"total": len(sub), **_arm_counts(sub)}

    return {
        "patients_enrolled": len(df),
        "patients_with_outcomes": int(df["outcome"].notna().sum()),
        "treatment_allocated": arms["treatment_a"],
        "control_allocated": arms["control_b"],
        "strata_distribution": by_stratum,
    }


def allocation_stats(records: Sequence[PatientRecord]) -> Dict[str, Any]:
    """
    Realized allocation overall and per enrolled stratum.

    Raises:
        InsufficientDataError: when no patient is enrolled
    """
    df = records_frame(records)
    if df.empty:
        raise InsufficientDataError("No patients enrolled")

    def _summary(sub: pd.DataFrame) -> Dict[str, Any]:
        total = len(sub)
        counts = _arm_counts(sub)
        return {
            "total_patients": total,
            **counts,
            "proportion_treatment": round(counts["treatment_a"] / total, 4),
            "proportion_control": round(counts["control_b"] / total, 4),
        }

    by_stratum = {
        f"stratum_{s}": _summary(sub)
        for s, sub in df.groupby("stratum", sort=False)
    }
    return {"success": True, "overall": _summary(df), "by_stratum": by_stratum}
