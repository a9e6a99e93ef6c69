"""
Sequential allocation within a single scope.

BurnInSequencer produces the balanced opening sequence. StratumSequencer is
the per-scope state machine: BURN_IN while the scope holds fewer than 2*n0
patients, ADAPTIVE afterwards. Phase is derived from the scope's records on
every call, so it resets only when the ledger does.
"""

import logging
from enum import Enum
from typing import List, Optional, Sequence

import numpy as np

from .errors import InternalInvariantError
from .schema import (
    PROBABILITY_CEILING,
    PROBABILITY_FLOOR,
    AllocationMethod,
    Arm,
    Decision,
    PatientRecord,
    StratumState,
    TargetStrategy,
)
from .stats import biased_coin_probability, scope_target, summarize_scope

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    BURN_IN = "burn-in"
    ADAPTIVE = "adaptive"


def clamp_probability(p: float) -> float:
    return float(np.clip(p, PROBABILITY_FLOOR, PROBABILITY_CEILING))


class BurnInSequencer:
    """
    Balanced randomization for the first 2*n0 patients of a scope.

    ``sequence`` returns a full random permutation of n0 A and n0 B labels.
    ``next_arm`` is the equivalent online form: each slot is drawn uniformly
    among the labels still remaining, so the realized sequence has the same
    distribution as a permutation consumed one decision at a time.
    """

    def __init__(self, n0: int):
        self.n0 = n0

    def sequence(self, rng: np.random.Generator) -> List[Arm]:
        labels = np.array([Arm.A.value] * self.n0 + [Arm.B.value] * self.n0)
        return [Arm(v) for v in rng.permutation(labels)]

    def next_arm(self, n_a: int, n_b: int, u: float) -> Arm:
        """
        Next label given the counts already assigned in the scope.

        Args:
            n_a: Patients already on arm A in the scope
            n_b: Patients already on arm B in the scope
            u: Uniform draw in [0, 1)
        """
        remaining_a = self.n0 - n_a
        remaining_b = self.n0 - n_b
        if remaining_a < 0 or remaining_b < 0 or remaining_a + remaining_b == 0:
            raise InternalInvariantError(
                f"Burn-in exhausted: n0={self.n0}, n_a={n_a}, n_b={n_b}"
            )
        return Arm.A if u < remaining_a / (remaining_a + remaining_b) else Arm.B


class StratumSequencer:
    """Burn-in then doubly-adaptive biased coin over one scope."""

    def __init__(
        self,
        n0: int,
        gamma: float,
        target: TargetStrategy,
        tb: float,
        planned_n: Optional[int] = None,
    ):
        self.n0 = n0
        self.gamma = gamma
        self.target = target
        self.tb = tb
        self.planned_n = planned_n
        self.burn_in = BurnInSequencer(n0)

    def phase(self, n_enrolled: int) -> Phase:
        return Phase.BURN_IN if n_enrolled < 2 * self.n0 else Phase.ADAPTIVE

    def target_for(self, state: StratumState) -> float:
        return scope_target(state, self.target, self.tb, self.planned_n)

    def decide(self, records: Sequence[PatientRecord], rng: np.random.Generator) -> Decision:
        """
        Allocate the next patient of this scope.

        Exactly one uniform is drawn from ``rng`` per call, whatever the
        branch taken.

        Args:
            records: Every patient currently enrolled in the scope
            rng: The trial's random stream

        Returns:
            Decision (arm, probability, method tag, target when estimated)
        """
        state = summarize_scope(records)
        u = rng.random()

        if self.phase(state.n_enrolled) == Phase.BURN_IN:
            arm = self.burn_in.next_arm(state.n_a, state.n_b, u)
            return Decision(arm=arm, probability=0.5, method=AllocationMethod.BURN_IN)

        if state.n_outcomes < 2 * self.n0:
            logger.debug(
                f"Balanced fallback: {state.n_outcomes} outcomes in scope, need {2 * self.n0}"
            )
            return balanced_decision(u, AllocationMethod.INSUFFICIENT_OUTCOMES)

        if not state.estimable:
            logger.debug("Balanced fallback: one arm has no reported outcomes in scope")
            return balanced_decision(u, AllocationMethod.INSUFFICIENT_DATA)

        rho = self.target_for(state)
        p = clamp_probability(biased_coin_probability(state.proportion_a, rho, self.gamma))
        return Decision(
            arm=Arm.A if u < p else Arm.B,
            probability=p,
            method=AllocationMethod.ADAPTIVE,
            target_allocation=rho,
        )


def balanced_decision(u: float, method: AllocationMethod) -> Decision:
    return Decision(arm=Arm.A if u < 0.5 else Arm.B, probability=0.5, method=method)
