"""
In-memory trial ledger.

Ordered record of enrolled patients keyed by patient id. It is the single
source of truth for allocation decisions: coordinators only ever see a
snapshot of it. Records are appended whole or not at all; the only mutation
after insertion is setting a patient's outcome.
"""

import copy
import logging
import math
from numbers import Integral, Real
from typing import Any, Dict, Iterable, List, Tuple

import pandas as pd

from .errors import DuplicateIdError, InternalInvariantError, UnknownIdError, ValidationError
from .schema import (
    PROBABILITY_CEILING,
    PROBABILITY_FLOOR,
    AllocationMethod,
    Decision,
    PatientRecord,
)

logger = logging.getLogger(__name__)

LEDGER_COLUMNS = [
    "patient_id",
    "stratum",
    "arm",
    "treatment_label",
    "outcome",
    "enrollment_sequence",
    "allocation_probability",
    "allocation_method",
    "target_allocation",
    "enrolled_at",
]


def validate_patient_id(patient_id: Any, positive: bool = True) -> int:
    if (
        isinstance(patient_id, bool)
        or not isinstance(patient_id, Integral)
        or (positive and patient_id <= 0)
    ):
        raise ValidationError(
            f"Invalid patient_id {patient_id!r}. Must be {'a positive' if positive else 'an'} integer.",
            code="InvalidPatientId",
        )
    return int(patient_id)


def validate_outcome(outcome: Any) -> float:
    if isinstance(outcome, bool) or not isinstance(outcome, Real) or not math.isfinite(outcome):
        raise ValidationError(
            f"Invalid outcome value {outcome!r}. Must be a finite number.",
            code="InvalidOutcome",
        )
    return float(outcome)


class TrialLedger:
    """Ordered, id-keyed collection of PatientRecord."""

    def __init__(self, strata: Iterable[Any]):
        self.strata = tuple(strata)
        self._records: List[PatientRecord] = []
        self._by_id: Dict[int, PatientRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def get(self, patient_id: int) -> PatientRecord:
        try:
            return self._by_id[patient_id]
        except KeyError:
            raise UnknownIdError(f"Patient {patient_id} not found")

    def records(self) -> Tuple[PatientRecord, ...]:
        """Enrollment-ordered view of the records (shared, not copied)."""
        return tuple(self._records)

    def check_enrollable(self, patient_id: Any, stratum: Any) -> Tuple[int, Any]:
        """
        Validate a new enrollment without touching the ledger.

        Checks run in a fixed order: id shape, stratum, duplicate id.

        Returns:
            Tuple of (patient id, configured stratum value)
        """
        pid = validate_patient_id(patient_id)
        if isinstance(stratum, bool) or stratum not in self.strata:
            valid = ", ".join(str(s) for s in self.strata)
            raise ValidationError(
                f"Invalid stratum {stratum!r}. Must be one of: {valid}.",
                code="InvalidStratum",
            )
        if pid in self._by_id:
            raise DuplicateIdError(f"Patient {pid} already enrolled")
        return pid, self.strata[self.strata.index(stratum)]

    def append(self, patient_id: int, stratum: Any, decision: Decision) -> PatientRecord:
        """Append a new record built from an allocation decision."""
        pid, stratum = self.check_enrollable(patient_id, stratum)
        if decision.method == AllocationMethod.ADAPTIVE and not (
            PROBABILITY_FLOOR <= decision.probability <= PROBABILITY_CEILING
        ):
            raise InternalInvariantError(
                f"Adaptive probability {decision.probability} outside "
                f"[{PROBABILITY_FLOOR}, {PROBABILITY_CEILING}]"
            )
        record = PatientRecord(
            patient_id=pid,
            stratum=stratum,
            arm=decision.arm,
            enrollment_sequence=len(self),
            allocation_probability=decision.probability,
            allocation_method=decision.method,
            target_allocation=decision.target_allocation,
        )
        self._records.append(record)
        self._by_id[pid] = record
        return record

    def set_outcome(self, patient_id: Any, outcome: Any) -> Tuple[PatientRecord, bool]:
        """
        Set or overwrite a patient's outcome.

        Returns:
            Tuple of (record, overwritten)
        """
        pid = validate_patient_id(patient_id, positive=False)
        value = validate_outcome(outcome)
        record = self.get(pid)
        overwritten = record.has_outcome
        if overwritten:
            logger.warning(
                f"Overwriting outcome for patient {pid}: {record.outcome} -> {value}"
            )
        record.outcome = value
        return record, overwritten

    def snapshot(self) -> List[PatientRecord]:
        """Deep copy of every record, safe to hand outside the session."""
        return [copy.deepcopy(r) for r in self._records]

    def to_frame(self) -> pd.DataFrame:
        """Ledger as a DataFrame, one row per patient in enrollment order."""
        rows = [r.to_dict() for r in self._records]
        return pd.DataFrame(rows, columns=LEDGER_COLUMNS)
