"""Simulated clock policies."""

import pytest

from job_simulator.job_simulator import SimulationClock


def test_per_job_policy_wraps_hour_into_day(make_job):
    clock = SimulationClock()
    job = make_job(1, 1, arrival_day=9, arrival_hour=9)

    for _ in range(23):
        assert clock.advance(job) == 1
    assert (clock.day, clock.hour) == (0, 23)

    clock.advance(job)
    assert (clock.day, clock.hour, clock.tick) == (1, 0, 24)


def test_arrival_policy_follows_job_stamps(make_job):
    clock = SimulationClock("arrival")

    assert clock.advance(make_job(1, 1, arrival_day=0, arrival_hour=5)) == 5
    assert clock.advance(make_job(1, 1, arrival_day=1, arrival_hour=2)) == 21
    assert (clock.day, clock.hour) == (1, 2)


def test_arrival_policy_never_moves_backwards(make_job):
    clock = SimulationClock("arrival")
    clock.advance(make_job(1, 1, arrival_day=2, arrival_hour=0))

    assert clock.advance(make_job(1, 1, arrival_day=1, arrival_hour=3)) == 0
    assert clock.tick == 48


def test_unknown_policy_is_rejected():
    with pytest.raises(ValueError, match="Unknown clock policy"):
        SimulationClock("wall_clock")
