"""Tests for the online enrollment service."""
import threading

import pytest
from src.randomization.errors import (
    ConfigurationError,
    DuplicateIdError,
    InsufficientDataError,
    UnknownIdError,
    ValidationError,
)
from src.randomization.schema import AllocationMethod, Arm, TrialConfig
from src.randomization.session import TrialSession


def _outcome(pid, arm):
    """Arm A outcomes spread widely, arm B outcomes tightly."""
    return 10.0 + 3.0 * pid if arm == Arm.A else 20.0 + 0.1 * pid


def _run_end_to_end(method, strata_cycle):
    session = TrialSession(TrialConfig(
        n0=10, gamma=2, target="Neyman", randomization_method=method, seed=2024,
    ))
    results = [session.enroll(pid, strata_cycle[pid % len(strata_cycle)]) for pid in range(1, 21)]
    for r in results:
        session.record_outcome(r.patient_id, _outcome(r.patient_id, r.arm))
    return session, results


@pytest.mark.parametrize("method,strata_cycle", [
    ("RAR", [1, 2, 3]),
    ("CADBCD", [1, 2, 3]),
    ("CARA", [2]),
])
def test_end_to_end_burn_in_then_adaptive(method, strata_cycle):
    session, results = _run_end_to_end(method, strata_cycle)

    arms = [r.arm for r in results]
    assert arms.count(Arm.A) == arms.count(Arm.B) == 10
    assert all(r.probability == 0.5 for r in results)
    assert all(r.method == AllocationMethod.BURN_IN for r in results)

    nxt = session.enroll(21, strata_cycle[0])
    assert nxt.method == AllocationMethod.ADAPTIVE
    assert nxt.probability != 0.5
    assert 0.1 <= nxt.probability <= 0.9
    assert nxt.sequence_number == 20


def test_cara_burn_in_is_stratum_local():
    session, _ = _run_end_to_end("CARA", [1, 2])
    assert session.enroll(21, 1).method == AllocationMethod.BURN_IN


def test_insufficient_outcomes_fallback():
    session = TrialSession(TrialConfig(n0=2, randomization_method="RAR", seed=1))
    for pid in range(1, 5):
        session.enroll(pid, 1)
    session.record_outcome(1, 3.0)
    result = session.enroll(5, 1)
    assert result.method == AllocationMethod.INSUFFICIENT_OUTCOMES
    assert result.probability == 0.5


def test_duplicate_enroll_does_not_mutate():
    session = TrialSession(TrialConfig(seed=5))
    first = session.enroll(1, 1)
    with pytest.raises(DuplicateIdError):
        session.enroll(1, 2)
    patients = session.patients()
    assert len(patients) == 1
    assert patients[0].stratum == 1
    assert patients[0].arm == first.arm


def test_enroll_validation_errors():
    session = TrialSession()
    with pytest.raises(ValidationError) as exc:
        session.enroll(0, 1)
    assert exc.value.code == "InvalidPatientId"
    with pytest.raises(ValidationError) as exc:
        session.enroll(1, 9)
    assert exc.value.code == "InvalidStratum"
    assert session.status()["patients_enrolled"] == 0


def test_record_outcome_unknown_id():
    session = TrialSession()
    with pytest.raises(UnknownIdError):
        session.record_outcome(99, 1.0)


def test_record_outcome_overwrites():
    session = TrialSession()
    session.enroll(1, 1)
    assert not session.record_outcome(1, 2.0).overwritten
    result = session.record_outcome(1, 4.0)
    assert result.overwritten
    assert session.patients()[0].outcome == 4.0


def test_same_seed_same_assignments():
    def arms(seed):
        session = TrialSession(TrialConfig(n0=3, randomization_method="RAR", seed=seed))
        out = []
        for pid in range(1, 31):
            r = session.enroll(pid, 1 + pid % 3)
            session.record_outcome(pid, _outcome(pid, r.arm))
            out.append((r.arm, r.probability))
        return out

    assert arms(99) == arms(99)


def test_unknown_strategy_rejected_at_initialize():
    with pytest.raises(ConfigurationError):
        TrialSession(TrialConfig(target="Bogus"))


def test_reconfigure_resets_ledger():
    session = TrialSession(TrialConfig(seed=1))
    session.enroll(1, 1)
    session.reconfigure(TrialConfig(study_name="second", n0=5, seed=1))
    status = session.status()
    assert status["patients_enrolled"] == 0
    assert status["config"]["study_name"] == "second"
    session.enroll(1, 1)


def test_failed_reconfigure_keeps_state():
    session = TrialSession(TrialConfig(seed=1))
    session.enroll(1, 1)
    bad = TrialConfig()
    bad.n0 = 0
    with pytest.raises(ConfigurationError):
        session.reconfigure(bad)
    assert session.status()["patients_enrolled"] == 1
    assert session.config.n0 == 10


def test_status_counts_and_phases():
    session = TrialSession(TrialConfig(n0=1, seed=3))
    session.enroll(1, 1)
    session.enroll(2, 1)
    session.enroll(3, 2)
    session.record_outcome(1, 5.0)
    status = session.status()
    assert status["patients_enrolled"] == 3
    assert status["patients_with_outcomes"] == 1
    assert status["treatment_allocated"] + status["control_allocated"] == 3
    assert status["strata_distribution"]["1"]["total"] == 2
    assert status["strata_distribution"]["3"]["total"] == 0
    assert status["phases"] == {
        "stratum_1": "adaptive",
        "stratum_2": "burn-in",
        "stratum_3": "burn-in",
    }


def test_export_is_point_in_time_copy():
    session = TrialSession(TrialConfig(seed=4))
    session.enroll(1, 1)
    snapshot = session.export()
    session.record_outcome(1, 7.0)
    session.enroll(2, 1)
    assert len(snapshot.patients) == 1
    assert snapshot.patients[0].outcome is None
    assert snapshot.to_dict()["config"]["n0"] == 10


def test_analysis_requires_data():
    session = TrialSession()
    with pytest.raises(InsufficientDataError):
        session.allocation_stats()
    with pytest.raises(InsufficientDataError):
        session.treatment_effect()


def test_concurrent_enrollment_is_serialized():
    session = TrialSession(TrialConfig(n0=50, randomization_method="RAR", seed=8))

    def worker(offset):
        for k in range(25):
            session.enroll(offset + k + 1, 1 + k % 3)

    threads = [threading.Thread(target=worker, args=(i * 1000,)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    patients = session.patients()
    assert sorted(p.enrollment_sequence for p in patients) == list(range(100))
    assert sum(1 for p in patients if p.arm == Arm.A) == 50


def test_session_keeps_private_copy_of_config():
    config = TrialConfig(n0=2, randomization_method="CADBCD", seed=8)
    session = TrialSession(config)
    for pid in (1, 2):
        session.enroll(pid, 1)
    config.n0 = 5
    session.config.n0 = 7
    for pid in range(3, 11):
        result = session.enroll(pid, (pid % 3) + 1)
        session.record_outcome(pid, float(pid))
    assert session.config.n0 == 2
    assert result.method != AllocationMethod.BURN_IN
    assert session.status()["phases"] == {"global": "adaptive"}


def test_reconfigure_copies_config():
    session = TrialSession(TrialConfig(seed=1))
    new = TrialConfig(n0=3, randomization_method="RAR", seed=2)
    session.reconfigure(new)
    new.n0 = 0
    assert session.config.n0 == 3


def test_bayesian_target_end_to_end():
    session = TrialSession(TrialConfig(
        n0=5, target="Bayesian", planned_n=40, randomization_method="RAR", seed=12,
    ))
    for pid in range(1, 11):
        r = session.enroll(pid, 1)
        session.record_outcome(pid, 1.0 + 0.1 * pid if r.arm == Arm.A else 4.0 + 0.1 * pid)
    result = session.enroll(11, 2)
    assert result.method == AllocationMethod.ADAPTIVE
    assert result.target_allocation > 0.5
    assert 0.1 <= result.probability <= 0.9


def test_to_frame_snapshot():
    session = TrialSession(TrialConfig(n0=2, seed=4))
    session.enroll(5, 1)
    session.enroll(6, 3)
    session.record_outcome(6, 2.5)
    df = session.to_frame()
    assert list(df["patient_id"]) == [5, 6]
    assert list(df["stratum"]) == [1, 3]
    assert df["outcome"].isna().tolist() == [True, False]
