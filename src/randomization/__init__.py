"""Covariate-adjusted response-adaptive randomization for two-arm trials."""

from .schema import (
    Arm,
    TargetStrategy,
    RandomizationMethod,
    AllocationMethod,
    TrialConfig,
    PatientRecord,
    EnrollmentResult,
    OutcomeResult,
    TrialExport,
    TreatmentEffect,
)
from .errors import (
    RandomizationError,
    ValidationError,
    StateError,
    DuplicateIdError,
    UnknownIdError,
    InsufficientDataError,
    ConfigurationError,
    InternalInvariantError,
)
from .ledger import TrialLedger
from .sequencer import BurnInSequencer, StratumSequencer, Phase
from .coordinators import (
    CompleteRandomizer,
    GlobalSequencer,
    StratifiedCoordinator,
    GlobalCoordinator,
    build_coordinator,
)
from .session import TrialSession
from .simulate import simulate_outcome_table, replay_outcome_table

__all__ = [
    "Arm",
    "TargetStrategy",
    "RandomizationMethod",
    "AllocationMethod",
    "TrialConfig",
    "PatientRecord",
    "EnrollmentResult",
    "OutcomeResult",
    "TrialExport",
    "TreatmentEffect",
    "RandomizationError",
    "ValidationError",
    "StateError",
    "DuplicateIdError",
    "UnknownIdError",
    "InsufficientDataError",
    "ConfigurationError",
    "InternalInvariantError",
    "TrialLedger",
    "BurnInSequencer",
    "StratumSequencer",
    "Phase",
    "CompleteRandomizer",
    "GlobalSequencer",
    "StratifiedCoordinator",
    "GlobalCoordinator",
    "build_coordinator",
    "TrialSession",
    "simulate_outcome_table",
    "replay_outcome_table",
]
