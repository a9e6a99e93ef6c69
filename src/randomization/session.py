"""
Online enrollment service for one trial.

A TrialSession owns the trial's configuration, ledger, coordinator and
random stream. Every public operation runs inside the session's lock, so an
allocation always sees a consistent ledger and reconfiguration is never
observed half-applied. Separate trials use separate sessions and share no
mutable state.
"""

import logging
import threading
from dataclasses import replace
from typing import Any, Dict, List, Optional

import numpy as np

from .analyze import allocation_stats, status_counts
from .coordinators import Coordinator, build_coordinator
from .ledger import TrialLedger
from .schema import (
    AllocationMethod,
    EnrollmentResult,
    OutcomeResult,
    PatientRecord,
    TrialConfig,
    TrialExport,
    TreatmentEffect,
)
from .stats import treatment_effect

logger = logging.getLogger(__name__)


class TrialSession:
    """Sequential, thread-safe allocation engine for a single trial."""

    def __init__(self, config: Optional[TrialConfig] = None):
        self._lock = threading.Lock()
        self._install(replace(config or TrialConfig()).validate())

    @property
    def config(self) -> TrialConfig:
        """Copy of the active configuration."""
        return replace(self._config)

    def _install(self, config: TrialConfig) -> None:
        # Build everything first so a failure leaves the previous state intact.
        ledger = TrialLedger(config.strata)
        coordinator = build_coordinator(config)
        rng = np.random.default_rng(config.seed)
        self._config: TrialConfig = config
        self._ledger: TrialLedger = ledger
        self._coordinator: Coordinator = coordinator
        self._rng: np.random.Generator = rng
        logger.info(
            f"Trial '{config.study_name}' initialized: method={config.randomization_method.value}, "
            f"target={config.target.value}, n0={config.n0}, gamma={config.gamma}, TB={config.tb}"
        )

    def reconfigure(self, config: TrialConfig) -> TrialConfig:
        """
        Replace the configuration and clear the ledger atomically.

        The session keeps its own copy of ``config``; the copy is validated
        before anything is touched.
        """
        config = replace(config).validate()
        with self._lock:
            self._install(config)
            return replace(config)

    def enroll(self, patient_id: Any, stratum: Any) -> EnrollmentResult:
        """
        Assign an arm to a newly enrolled patient.

        Args:
            patient_id: Positive integer, unique within the trial
            stratum: One of the configured strata

        Returns:
            EnrollmentResult with arm, probability, method tag and sequence number

        Raises:
            ValidationError: InvalidPatientId or InvalidStratum
            DuplicateIdError: patient already enrolled
        """
        with self._lock:
            pid, stratum = self._ledger.check_enrollable(patient_id, stratum)
            decision = self._coordinator.decide(self._ledger.records(), stratum, self._rng)
            record = self._ledger.append(pid, stratum, decision)

        if decision.method in (
            AllocationMethod.INSUFFICIENT_OUTCOMES,
            AllocationMethod.INSUFFICIENT_DATA,
        ):
            logger.warning(
                f"Patient {pid} (stratum {stratum}) assigned by balanced fallback: "
                f"{decision.method.value}"
            )
        logger.debug(
            f"Patient {pid} -> arm {record.arm.value} "
            f"(p={decision.probability:.4f}, {decision.method.value})"
        )
        return EnrollmentResult(
            patient_id=pid,
            stratum=stratum,
            arm=record.arm,
            probability=record.allocation_probability,
            method=record.allocation_method,
            sequence_number=record.enrollment_sequence,
            patients_enrolled=record.enrollment_sequence + 1,
            target_allocation=record.target_allocation,
        )

    def record_outcome(self, patient_id: Any, outcome: Any) -> OutcomeResult:
        """
        Record (or overwrite) a patient's outcome.

        Past allocations are not revisited; the value is first used by the
        next enrollment.

        Raises:
            ValidationError: InvalidPatientId or InvalidOutcome
            UnknownIdError: patient not enrolled
        """
        with self._lock:
            record, overwritten = self._ledger.set_outcome(patient_id, outcome)
        return OutcomeResult(
            patient_id=record.patient_id,
            outcome=record.outcome,
            overwritten=overwritten,
        )

    def status(self) -> Dict[str, Any]:
        """Configuration, enrollment counts per arm and per stratum, scope phases."""
        with self._lock:
            records = self._ledger.records()
            result = status_counts(records, self._config.strata)
            result["config"] = self._config.to_dict()
            result["phases"] = self._coordinator.phases(records)
        return result

    def patients(self) -> List[PatientRecord]:
        with self._lock:
            return self._ledger.snapshot()

    def export(self) -> TrialExport:
        """Consistent point-in-time copy of config and ledger."""
        with self._lock:
            return TrialExport(
                config=replace(self._config),
                patients=self._ledger.snapshot(),
            )

    def to_frame(self):
        """Ledger snapshot as a pandas DataFrame."""
        with self._lock:
            return self._ledger.to_frame()

    def allocation_stats(self) -> Dict[str, Any]:
        with self._lock:
            return allocation_stats(self._ledger.records())

    def treatment_effect(self) -> TreatmentEffect:
        with self._lock:
            return treatment_effect(list(self._ledger.records()))
