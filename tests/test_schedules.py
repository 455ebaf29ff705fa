import pytest

from seq_forecast.pipeline.schedules import (
    ConstantSchedule,
    GeometricSweep,
    NeverStop,
    OneCycleSchedule,
    PatienceStopping,
    epochs_since_improvement,
    make_stopping_policy,
)


def test_one_cycle_endpoints_and_peak():
    sched = OneCycleSchedule(start_lr=1e-4, peak_lr=1e-2, end_lr=1e-6, total_steps=101, pct_start=0.3)
    assert sched.warmup_steps == 30
    assert sched.rate_for(0) == pytest.approx(1e-4)
    assert sched.rate_for(30) == pytest.approx(1e-2)
    assert sched.rate_for(100) == pytest.approx(1e-6)
    assert max(sched.rate_for(s) for s in range(101)) == pytest.approx(1e-2)


def test_one_cycle_is_monotone_in_each_phase():
    sched = OneCycleSchedule(1e-4, 1e-2, 1e-5, total_steps=50)
    w = sched.warmup_steps
    up = [sched.rate_for(s) for s in range(w + 1)]
    down = [sched.rate_for(s) for s in range(w, 50)]
    assert up == sorted(up)
    assert down == sorted(down, reverse=True)


def test_one_cycle_clamps_past_horizon():
    sched = OneCycleSchedule.for_training(start_lr=1e-3, peak_lr=1e-2, end_lr=1e-4,
                                          epochs=2, steps_per_epoch=5)
    assert sched.total_steps == 10
    assert sched.rate_for(9) == pytest.approx(1e-4)
    assert sched.rate_for(500) == pytest.approx(1e-4)


def test_one_cycle_validation():
    with pytest.raises(ValueError):
        OneCycleSchedule(1e-2, 1e-3, 1e-4, total_steps=10)   # start above peak
    with pytest.raises(ValueError):
        OneCycleSchedule(1e-4, 1e-3, 1e-5, total_steps=0)


def test_constant_and_geometric():
    assert ConstantSchedule(0.01).rate_for(1234) == 0.01
    sweep = GeometricSweep(1e-6, 1.0, num_steps=7)
    assert sweep.rate_for(0) == pytest.approx(1e-6)
    assert sweep.rate_for(3) == pytest.approx(1e-3)
    assert sweep.rate_for(6) == pytest.approx(1.0)


def test_patience_scenario():
    policy = PatienceStopping(3)
    losses = [10, 9, 9, 9, 9]
    decisions = [policy.should_stop(losses[:i + 1]) for i in range(len(losses))]
    assert decisions == [False, False, False, False, True]


def test_ties_are_not_improvements():
    assert epochs_since_improvement([5, 4, 4]) == 1
    assert epochs_since_improvement([5, 4, 3.9]) == 0
    assert epochs_since_improvement([]) == 0


def test_make_stopping_policy():
    assert isinstance(make_stopping_policy(0), NeverStop)
    assert isinstance(make_stopping_policy(None), NeverStop)
    assert make_stopping_policy(2) == PatienceStopping(2)
    with pytest.raises(ValueError):
        PatienceStopping(0)


@pytest.mark.parametrize("total_steps", [1, 2])
def test_one_cycle_needs_room_for_a_peak(total_steps):
    with pytest.raises(ValueError, match=">= 3"):
        OneCycleSchedule(1e-4, 1e-3, 1e-5, total_steps=total_steps)


def test_shortest_one_cycle_reaches_peak():
    sched = OneCycleSchedule(1e-4, 1e-3, 1e-5, total_steps=3)
    assert [sched.rate_for(s) for s in range(3)] == pytest.approx([1e-4, 1e-3, 1e-5])
