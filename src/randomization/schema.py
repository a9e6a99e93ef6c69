"""
Trial data models for adaptive randomization.

Dataclass schemas for trial configuration, patient records, per-arm
summaries, allocation decisions and the results returned to callers.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from numbers import Integral
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import ConfigurationError

PROBABILITY_FLOOR = 0.1
PROBABILITY_CEILING = 0.9


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Arm(str, Enum):
    """Treatment arm."""
    A = "A"  # treatment
    B = "B"  # control

    @property
    def label(self) -> str:
        return "Treatment A" if self is Arm.A else "Control B"


class TargetStrategy(str, Enum):
    """Criterion used to estimate the target allocation on arm A."""
    NEYMAN = "Neyman"
    RSIHR = "RSIHR"
    BANDBIS = "BandBis"
    ZHANG_ROSENBERGER = "ZhangRosenberger"
    NEW = "New"  # Neyman constrained by a safety ceiling TB
    BAYESIAN = "Bayesian"  # posterior probability that A has the lower mean


class RandomizationMethod(str, Enum):
    """How the ledger is scoped for allocation decisions."""
    CR = "CR"  # complete randomization
    CARA = "CARA"  # independent DBCD per stratum
    CADBCD = "CADBCD"  # covariate-adjusted global DBCD
    RAR = "RAR"  # global DBCD, strata ignored


class AllocationMethod(str, Enum):
    """Audit tag stored with every assignment."""
    BURN_IN = "burn-in"
    ADAPTIVE = "adaptive"
    INSUFFICIENT_OUTCOMES = "insufficient-outcomes"
    INSUFFICIENT_DATA = "insufficient-data"
    COMPLETE = "complete"


def _coerce_enum(enum_cls, value, what: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        valid = ", ".join(m.value for m in enum_cls)
        raise ConfigurationError(f"Unknown {what} {value!r}. Expected one of: {valid}")


def _is_integer(value) -> bool:
    return isinstance(value, Integral) and not isinstance(value, bool)


def _parse_integer(value, name: str) -> int:
    """Whole number from a request value; fractional values are rejected, not truncated."""
    if _is_integer(value):
        return int(value)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ConfigurationError(f"{name} must be an integer, got {value!r}")


@dataclass
class TrialConfig:
    """Configuration for an adaptively randomized two-arm trial."""
    study_name: str = "CARA-Trial-Demo"
    n0: int = 10  # burn-in size per arm
    gamma: float = 2.0  # biased-coin exponent
    target: TargetStrategy = TargetStrategy.NEYMAN
    tb: float = 1.0  # threshold for BandBis / New
    randomization_method: RandomizationMethod = RandomizationMethod.CARA
    strata: Tuple[Any, ...] = (1, 2, 3)
    seed: Optional[int] = None
    complete_delta: float = 0.5  # CR coin after burn-in
    planned_n: Optional[int] = None  # planned total enrollment, Bayesian target only

    def __post_init__(self):
        self.target = _coerce_enum(TargetStrategy, self.target, "target strategy")
        self.randomization_method = _coerce_enum(
            RandomizationMethod, self.randomization_method, "randomization method"
        )
        if isinstance(self.strata, (str, bytes)) or not isinstance(self.strata, Iterable):
            raise ConfigurationError(f"strata must be a list of values, got {self.strata!r}")
        self.strata = tuple(self.strata)

    def validate(self) -> "TrialConfig":
        """Raise ConfigurationError unless every field is usable."""
        if not _is_integer(self.n0) or self.n0 < 1:
            raise ConfigurationError(f"n0 must be a positive integer, got {self.n0!r}")
        if not _is_real(self.gamma) or not math.isfinite(self.gamma) or self.gamma < 0:
            raise ConfigurationError(f"gamma must be a finite number >= 0, got {self.gamma!r}")
        if not _is_real(self.tb) or not math.isfinite(self.tb):
            raise ConfigurationError(f"TB must be a finite number, got {self.tb!r}")
        if self.target == TargetStrategy.BANDBIS and self.tb == 0:
            raise ConfigurationError("TB must be non-zero for the BandBis strategy")
        if not self.strata:
            raise ConfigurationError("At least one stratum must be configured")
        try:
            distinct = len(set(self.strata))
        except TypeError:
            raise ConfigurationError(f"Strata must be hashable values, got {list(self.strata)}")
        if distinct != len(self.strata):
            raise ConfigurationError(f"Duplicate strata in {list(self.strata)}")
        if not _is_real(self.complete_delta) or not 0 < self.complete_delta < 1:
            raise ConfigurationError(
                f"complete_delta must lie in (0, 1), got {self.complete_delta!r}"
            )
        if self.seed is not None and (not _is_integer(self.seed) or self.seed < 0):
            raise ConfigurationError(f"seed must be a non-negative integer, got {self.seed!r}")
        if self.planned_n is not None and (not _is_integer(self.planned_n) or self.planned_n < 1):
            raise ConfigurationError(
                f"planned_n must be a positive integer, got {self.planned_n!r}"
            )
        if self.target == TargetStrategy.BAYESIAN and self.planned_n is None:
            raise ConfigurationError("The Bayesian target requires planned_n")
        return self

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TrialConfig":
        """
        Build a config from request parameters.

        Accepts the wire names used by the HTTP boundary (``TB`` as well as
        ``tb``) and coerces numeric strings. Integer fields reject
        fractional values.
        """
        kwargs: Dict[str, Any] = {}
        if "study_name" in data:
            kwargs["study_name"] = str(data["study_name"])
        for name in ("n0", "seed", "planned_n"):
            if data.get(name) is not None:
                kwargs[name] = _parse_integer(data[name], name)
        try:
            if "gamma" in data:
                kwargs["gamma"] = float(data["gamma"])
            if "TB" in data or "tb" in data:
                kwargs["tb"] = float(data.get("TB", data.get("tb")))
            if "complete_delta" in data:
                kwargs["complete_delta"] = float(data["complete_delta"])
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration value: {e}")
        if "target" in data:
            kwargs["target"] = data["target"]
        if "randomization_method" in data:
            kwargs["randomization_method"] = data["randomization_method"]
        if "strata" in data:
            kwargs["strata"] = data["strata"]
        return cls(**kwargs).validate()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "study_name": self.study_name,
            "n0": self.n0,
            "gamma": self.gamma,
            "target": self.target.value,
            "TB": self.tb,
            "randomization_method": self.randomization_method.value,
            "strata": list(self.strata),
            "seed": self.seed,
            "complete_delta": self.complete_delta,
            "planned_n": self.planned_n,
        }


def _is_real(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass
class PatientRecord:
    """One enrolled patient. Stratum and arm never change after enrollment."""
    patient_id: int
    stratum: Any
    arm: Arm
    enrollment_sequence: int
    allocation_probability: float
    allocation_method: AllocationMethod
    outcome: Optional[float] = None
    target_allocation: Optional[float] = None
    enrolled_at: datetime = field(default_factory=_utcnow)

    @property
    def has_outcome(self) -> bool:
        return self.outcome is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "patient_id": self.patient_id,
            "stratum": self.stratum,
            "arm": self.arm.value,
            "treatment_label": self.arm.label,
            "outcome": self.outcome,
            "enrollment_sequence": self.enrollment_sequence,
            "allocation_probability": self.allocation_probability,
            "allocation_method": self.allocation_method.value,
            "target_allocation": self.target_allocation,
            "enrolled_at": self.enrolled_at.isoformat(),
        }


@dataclass
class ArmStats:
    """Outcome summary for a single arm within a scope."""
    arm: Arm
    n: int
    mean: float
    std: float


@dataclass
class StratumState:
    """Derived per-scope state, recomputed from the ledger on demand."""
    n_enrolled: int
    n_a: int
    n_b: int
    n_outcomes: int
    stats_a: Optional[ArmStats] = None
    stats_b: Optional[ArmStats] = None

    @property
    def proportion_a(self) -> float:
        return self.n_a / self.n_enrolled if self.n_enrolled else 0.0

    @property
    def estimable(self) -> bool:
        """True when both arms have at least one reported outcome."""
        return self.stats_a is not None and self.stats_b is not None


@dataclass
class Decision:
    """An allocation decision before it is written to the ledger."""
    arm: Arm
    probability: float
    method: AllocationMethod
    target_allocation: Optional[float] = None


@dataclass
class EnrollmentResult:
    """Response to a successful enrollment."""
    patient_id: int
    stratum: Any
    arm: Arm
    probability: float
    method: AllocationMethod
    sequence_number: int
    patients_enrolled: int
    target_allocation: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "patient_id": self.patient_id,
            "stratum": self.stratum,
            "arm": self.arm.value,
            "treatment_label": self.arm.label,
            "allocation_method": self.method.value,
            "allocation_probability": round(self.probability, 4),
            "target_allocation": (
                round(self.target_allocation, 4) if self.target_allocation is not None else None
            ),
            "sequence_number": self.sequence_number,
            "patients_enrolled": self.patients_enrolled,
        }


@dataclass
class OutcomeResult:
    """Response to a successful outcome report."""
    patient_id: int
    outcome: float
    overwritten: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "patient_id": self.patient_id,
            "outcome": self.outcome,
            "overwritten": self.overwritten,
            "message": "Outcome recorded successfully",
        }


@dataclass
class TrialExport:
    """Point-in-time copy of a trial's configuration and ledger."""
    config: TrialConfig
    patients: List[PatientRecord]
    export_time: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "config": self.config.to_dict(),
            "patients": [p.to_dict() for p in self.patients],
            "total": len(self.patients),
            "export_time": self.export_time.isoformat(),
        }


@dataclass
class StratumEffect:
    """Treatment effect within one stratum."""
    stratum: Any
    treatment_effect: float
    n_treated: int
    n_control: int
    mean_treated: float
    mean_control: float


@dataclass
class TreatmentEffect:
    """Difference in mean outcome between arm A and arm B."""
    treatment_effect: float
    standard_error: float
    ci_low: float
    ci_high: float
    mean_treated: float
    mean_control: float
    n_treated: int
    n_control: int
    strata: List[StratumEffect] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "overall_treatment_effect": round(self.treatment_effect, 4),
            "standard_error": round(self.standard_error, 4),
            "ci_95_lower": round(self.ci_low, 4),
            "ci_95_upper": round(self.ci_high, 4),
            "mean_treated": round(self.mean_treated, 4),
            "mean_control": round(self.mean_control, 4),
            "n_treated": self.n_treated,
            "n_control": self.n_control,
            "stratified_results": {
                f"stratum_{s.stratum}": {
                    "treatment_effect": round(s.treatment_effect, 4),
                    "n_treated": s.n_treated,
                    "n_control": s.n_control,
                    "mean_treated": round(s.mean_treated, 4),
                    "mean_control": round(s.mean_control, 4),
                }
                for s in self.strata
            },
        }
