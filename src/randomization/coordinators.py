"""
Scope coordinators for each randomization method.

A coordinator decides which slice of the ledger an allocation looks at:

- CR: whole ledger, burn-in then a fixed coin
- RAR: whole ledger, one StratumSequencer (strata ignored)
- CARA: one independent StratumSequencer per stratum
- CADBCD: global burn-in, then one global target blended from per-stratum
  estimates and tilted toward the arriving patient's own stratum
"""

import logging
from typing import Any, Dict, List, Sequence

import numpy as np

from .schema import (
    AllocationMethod,
    Arm,
    Decision,
    PatientRecord,
    RandomizationMethod,
    TrialConfig,
)
from .sequencer import (
    BurnInSequencer,
    Phase,
    StratumSequencer,
    balanced_decision,
    clamp_probability,
)
from .stats import covariate_adjusted_probability, scope_target, summarize_scope

logger = logging.getLogger(__name__)


def _by_stratum(records: Sequence[PatientRecord], strata) -> Dict[Any, List[PatientRecord]]:
    groups: Dict[Any, List[PatientRecord]] = {s: [] for s in strata}
    for rec in records:
        groups.setdefault(rec.stratum, []).append(rec)
    return groups


def _sequencer(config: TrialConfig) -> StratumSequencer:
    return StratumSequencer(
        config.n0, config.gamma, config.target, config.tb, config.planned_n
    )


class Coordinator:
    """Base class: maps (ledger snapshot, stratum) to a Decision."""

    def __init__(self, config: TrialConfig):
        self.config = config

    def decide(
        self,
        records: Sequence[PatientRecord],
        stratum: Any,
        rng: np.random.Generator,
    ) -> Decision:
        raise NotImplementedError

    def phases(self, records: Sequence[PatientRecord]) -> Dict[str, str]:
        """Current phase of every scope, keyed by scope name."""
        phase = Phase.BURN_IN if len(records) < 2 * self.config.n0 else Phase.ADAPTIVE
        return {"global": phase.value}


class CompleteRandomizer(Coordinator):
    """Complete randomization with a fixed coin after the ledger-wide burn-in."""

    def __init__(self, config: TrialConfig):
        super().__init__(config)
        self.burn_in = BurnInSequencer(config.n0)

    def decide(self, records, stratum, rng):
        state = summarize_scope(records)
        u = rng.random()
        if state.n_enrolled < 2 * self.config.n0:
            arm = self.burn_in.next_arm(state.n_a, state.n_b, u)
            return Decision(arm=arm, probability=0.5, method=AllocationMethod.BURN_IN)
        delta = self.config.complete_delta
        return Decision(
            arm=Arm.A if u < delta else Arm.B,
            probability=delta,
            method=AllocationMethod.COMPLETE,
        )


class GlobalSequencer(Coordinator):
    """Response-adaptive randomization over the whole ledger (RAR)."""

    def __init__(self, config: TrialConfig):
        super().__init__(config)
        self.sequencer = _sequencer(config)

    def decide(self, records, stratum, rng):
        return self.sequencer.decide(records, rng)


class StratifiedCoordinator(Coordinator):
    """CARA: strata never interact; each adapts once it alone reaches 2*n0."""

    def __init__(self, config: TrialConfig):
        super().__init__(config)
        self.sequencers = {
            s: _sequencer(config)
            for s in config.strata
        }

    def decide(self, records, stratum, rng):
        scope = [r for r in records if r.stratum == stratum]
        return self.sequencers[stratum].decide(scope, rng)

    def phases(self, records):
        groups = _by_stratum(records, self.config.strata)
        return {
            f"stratum_{s}": self.sequencers[s].phase(len(groups[s])).value
            for s in self.config.strata
        }


class GlobalCoordinator(Coordinator):
    """CADBCD: one global balance target blended from per-stratum estimates."""

    def __init__(self, config: TrialConfig):
        super().__init__(config)
        self.burn_in = BurnInSequencer(config.n0)

    def stratum_targets(self, records: Sequence[PatientRecord]) -> Dict[Any, float]:
        """Target allocation of every stratum whose two arms both have outcomes."""
        targets = {}
        for s, recs in _by_stratum(records, self.config.strata).items():
            state = summarize_scope(recs)
            if not state.estimable:
                continue
            targets[s] = scope_target(
                state, self.config.target, self.config.tb, self.config.planned_n
            )
        return targets

    def weighted_target(self, records: Sequence[PatientRecord], targets: Dict[Any, float]) -> float:
        """
        Sum over estimable strata of (n_s / n) * pi_s.

        Strata without an estimate contribute nothing and the remaining
        weights are left as they are.
        """
        total = len(records)
        counts: Dict[Any, int] = {}
        for rec in records:
            counts[rec.stratum] = counts.get(rec.stratum, 0) + 1
        return sum(counts.get(s, 0) / total * pi for s, pi in targets.items())

    def decide(self, records, stratum, rng):
        n0 = self.config.n0
        state = summarize_scope(records)
        u = rng.random()

        if state.n_enrolled < 2 * n0:
            arm = self.burn_in.next_arm(state.n_a, state.n_b, u)
            return Decision(arm=arm, probability=0.5, method=AllocationMethod.BURN_IN)

        if state.n_outcomes < 2 * n0:
            return balanced_decision(u, AllocationMethod.INSUFFICIENT_OUTCOMES)

        targets = self.stratum_targets(records)
        if not targets:
            logger.debug("Balanced fallback: no stratum has outcomes on both arms")
            return balanced_decision(u, AllocationMethod.INSUFFICIENT_DATA)

        rho = self.weighted_target(records, targets)
        pi_j = targets.get(stratum, 0.5)
        p = clamp_probability(
            covariate_adjusted_probability(state.proportion_a, rho, pi_j, self.config.gamma)
        )
        return Decision(
            arm=Arm.A if u < p else Arm.B,
            probability=p,
            method=AllocationMethod.ADAPTIVE,
            target_allocation=rho,
        )


_COORDINATORS = {
    RandomizationMethod.CR: CompleteRandomizer,
    RandomizationMethod.RAR: GlobalSequencer,
    RandomizationMethod.CARA: StratifiedCoordinator,
    RandomizationMethod.CADBCD: GlobalCoordinator,
}


def build_coordinator(config: TrialConfig) -> Coordinator:
    """Coordinator for the config's randomization method."""
    return _COORDINATORS[config.randomization_method](config)
