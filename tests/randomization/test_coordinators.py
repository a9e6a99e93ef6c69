"""Tests for scope coordinators (CR, RAR, CARA, CADBCD)."""
import numpy as np
import pytest
from src.randomization.coordinators import (
    CompleteRandomizer,
    GlobalCoordinator,
    GlobalSequencer,
    StratifiedCoordinator,
    build_coordinator,
)
from src.randomization.schema import AllocationMethod, Arm, PatientRecord, TrialConfig
from src.randomization.stats import covariate_adjusted_probability, target_allocation


def _records(rows):
    """rows: (stratum, arm, outcome-or-None)."""
    return [
        PatientRecord(
            patient_id=i + 1,
            stratum=s,
            arm=Arm(arm),
            enrollment_sequence=i,
            allocation_probability=0.5,
            allocation_method=AllocationMethod.BURN_IN,
            outcome=y,
        )
        for i, (s, arm, y) in enumerate(rows)
    ]


def _config(method, **kwargs):
    kwargs.setdefault("n0", 2)
    return TrialConfig(randomization_method=method, target="Neyman", **kwargs)


@pytest.mark.parametrize("method,cls", [
    ("CR", CompleteRandomizer),
    ("RAR", GlobalSequencer),
    ("CARA", StratifiedCoordinator),
    ("CADBCD", GlobalCoordinator),
])
def test_build_coordinator(method, cls):
    assert isinstance(build_coordinator(_config(method)), cls)


def test_complete_randomization_after_burn_in():
    coord = CompleteRandomizer(_config("CR", complete_delta=0.3))
    records = _records([(1, "A", None), (2, "B", None), (3, "A", None), (1, "B", None)])
    decision = coord.decide(records, 1, np.random.default_rng(0))
    assert decision.method == AllocationMethod.COMPLETE
    assert decision.probability == 0.3


def test_rar_scope_is_global():
    """Four patients spread over strata end the global burn-in."""
    coord = GlobalSequencer(_config("RAR"))
    records = _records([(1, "A", 1.0), (2, "B", 2.0), (3, "A", 5.0), (1, "B", 2.5)])
    decision = coord.decide(records, 2, np.random.default_rng(0))
    assert decision.method == AllocationMethod.ADAPTIVE
    assert coord.phases(records) == {"global": "adaptive"}


def test_cara_strata_are_independent():
    coord = StratifiedCoordinator(_config("CARA"))
    records = _records([
        (1, "A", 10.0), (1, "B", 11.0), (1, "A", 14.0), (1, "B", 12.0),
        (2, "A", 3.0),
    ])
    rng = np.random.default_rng(0)
    assert coord.decide(records, 1, rng).method == AllocationMethod.ADAPTIVE
    assert coord.decide(records, 2, rng).method == AllocationMethod.BURN_IN
    assert coord.phases(records) == {
        "stratum_1": "adaptive",
        "stratum_2": "burn-in",
        "stratum_3": "burn-in",
    }


def test_cara_burn_in_balanced_within_each_stratum():
    coord = StratifiedCoordinator(_config("CARA", n0=3))
    rng = np.random.default_rng(11)
    records = []
    for s in [1, 2] * 6:
        d = coord.decide(records, s, rng)
        assert d.method == AllocationMethod.BURN_IN
        records += _records([(s, d.arm.value, None)])
    for s in (1, 2):
        arms = [r.arm for r in records if r.stratum == s]
        assert arms.count(Arm.A) == arms.count(Arm.B) == 3


CADBCD_ROWS = [
    # stratum 1: A sd 2.83, B sd 1.41 -> pi_1 = 2/3
    (1, "A", 10.0), (1, "A", 14.0), (1, "B", 10.0), (1, "B", 12.0),
    # stratum 2: A sd 1.41, B sd 2.83 -> pi_2 = 1/3
    (2, "A", 5.0), (2, "A", 7.0), (2, "B", 5.0), (2, "B", 9.0),
    # stratum 3: no outcome on B -> not estimable
    (3, "A", 3.0), (3, "B", None),
]


def test_cadbcd_stratum_targets_skip_unestimable():
    coord = GlobalCoordinator(_config("CADBCD"))
    targets = coord.stratum_targets(_records(CADBCD_ROWS))
    assert set(targets) == {1, 2}
    assert targets[1] == pytest.approx(2 / 3)
    assert targets[2] == pytest.approx(1 / 3)


def test_cadbcd_weights_not_renormalized():
    """rho = 4/10 * 2/3 + 4/10 * 1/3 = 0.4 (stratum 3's weight is dropped)."""
    coord = GlobalCoordinator(_config("CADBCD"))
    records = _records(CADBCD_ROWS)
    assert coord.weighted_target(records, coord.stratum_targets(records)) == pytest.approx(0.4)


@pytest.mark.parametrize("stratum", [1, 2, 3])
def test_cadbcd_probability_matches_formula(stratum):
    coord = GlobalCoordinator(_config("CADBCD"))
    records = _records(CADBCD_ROWS)
    decision = coord.decide(records, stratum, np.random.default_rng(3))

    pi = {
        1: target_allocation(12, np.std([10, 14], ddof=1), 11, np.std([10, 12], ddof=1)),
        2: target_allocation(6, np.std([5, 7], ddof=1), 7, np.std([5, 9], ddof=1)),
    }
    rho = 0.4 * pi[1] + 0.4 * pi[2]
    expected = covariate_adjusted_probability(0.5, rho, pi.get(stratum, 0.5), 2.0)

    assert decision.method == AllocationMethod.ADAPTIVE
    assert decision.target_allocation == pytest.approx(rho)
    assert decision.probability == pytest.approx(float(np.clip(expected, 0.1, 0.9)))


def test_cadbcd_global_burn_in_ignores_strata():
    coord = GlobalCoordinator(_config("CADBCD", n0=2))
    records = _records([(1, "A", None), (1, "A", None), (2, "B", None)])
    decision = coord.decide(records, 3, np.random.default_rng(0))
    assert decision.method == AllocationMethod.BURN_IN
    assert decision.arm == Arm.B


def test_cadbcd_no_estimable_stratum_falls_back():
    coord = GlobalCoordinator(_config("CADBCD"))
    records = _records([(1, "A", 1.0), (2, "B", 2.0), (1, "A", 3.0), (2, "B", 4.0)])
    decision = coord.decide(records, 1, np.random.default_rng(0))
    assert decision.method == AllocationMethod.INSUFFICIENT_DATA
    assert decision.probability == 0.5
