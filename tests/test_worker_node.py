"""Capacity bookkeeping on a single worker node."""

import pytest

from job_simulator.job_simulator import CapacityInvariantError, WorkerNode


def test_allocate_reserves_demand_and_tracks_remaining_time(make_job):
    node = WorkerNode("worker000", 0)
    job = make_job(4, 8, execution_time=3)

    assert node.allocate(job) is True
    assert (node.available_CPUs, node.available_memory) == (20, 56)
    assert len(node.running_jobs) == 1
    assert node.running_jobs[0].job is job
    assert node.running_jobs[0].remaining_time == 3
    node.check_invariants()


def test_allocate_is_all_or_nothing(make_job):
    node = WorkerNode("worker000", 0)
    # Enough cores, not enough memory
    assert node.allocate(make_job(2, 65)) is False
    # Enough memory, not enough cores
    assert node.allocate(make_job(25, 1)) is False
    assert (node.available_CPUs, node.available_memory) == (24, 64)
    assert node.running_jobs == []


def test_exact_fit_is_accepted(make_job):
    node = WorkerNode("worker000", 0)
    assert node.allocate(make_job(24, 64)) is True
    assert (node.available_CPUs, node.available_memory) == (0, 0)
    assert node.allocate(make_job(1, 1)) is False


def test_allocating_same_job_twice_is_an_error(make_job):
    node = WorkerNode("worker000", 0)
    job = make_job(1, 1)
    node.allocate(job)
    with pytest.raises(ValueError):
        node.allocate(job)


def test_identical_records_are_tracked_separately(make_job):
    node = WorkerNode("worker000", 0)
    first = make_job(2, 2, id=5)
    second = make_job(2, 2, id=5)
    assert node.allocate(first)
    assert node.allocate(second)
    node.release(first)
    assert [entry.job for entry in node.running_jobs] == [second]
    assert node.running_jobs[0].job is second


def test_release_restores_capacity(make_job):
    node = WorkerNode("worker000", 0)
    job = make_job(10, 30)
    node.allocate(job)
    node.release(job)
    assert (node.available_CPUs, node.available_memory) == (24, 64)
    assert node.running_jobs == []


def test_release_of_unknown_job_is_an_error(make_job):
    node = WorkerNode("worker000", 0)
    with pytest.raises(ValueError):
        node.release(make_job(1, 1))


def test_aging_releases_only_finished_jobs(make_job):
    node = WorkerNode("worker000", 0)
    short = make_job(4, 8, execution_time=1)
    long = make_job(6, 10, execution_time=3)
    node.allocate(short)
    node.allocate(long)

    finished = node.age_running_jobs()

    assert finished == [short]
    assert [entry.job for entry in node.running_jobs] == [long]
    assert node.running_jobs[0].remaining_time == 2
    assert (node.available_CPUs, node.available_memory) == (18, 54)
    node.check_invariants()


def test_remaining_time_decreases_until_single_release(make_job):
    node = WorkerNode("worker000", 0)
    job = make_job(1, 1, execution_time=3)
    node.allocate(job)

    seen = []
    released = []
    for _ in range(5):
        if node.running_jobs:
            seen.append(node.running_jobs[0].remaining_time)
        released.extend(node.age_running_jobs())

    assert seen == [3, 2, 1]
    assert released == [job]


def test_aging_empty_node_is_a_no_op():
    node = WorkerNode("worker000", 0)
    assert node.age_running_jobs() == []
    assert (node.available_CPUs, node.available_memory) == (24, 64)


def test_can_ever_fit_uses_total_capacity(make_job):
    node = WorkerNode("worker000", 0, total_CPUs=8, total_memory=16)
    node.allocate(make_job(8, 16))
    assert node.can_ever_fit(make_job(8, 16))
    assert not node.can_ever_fit(make_job(9, 1))


@pytest.mark.parametrize("cpus, memory", [(-1, 64), (25, 64), (24, -1), (24, 65)])
def test_check_invariants_rejects_out_of_range_capacity(cpus, memory):
    node = WorkerNode("worker000", 0)
    node.available_CPUs = cpus
    node.available_memory = memory
    with pytest.raises(CapacityInvariantError):
        node.check_invariants()


def test_check_invariants_rejects_accounting_drift(make_job):
    node = WorkerNode("worker000", 0)
    node.allocate(make_job(4, 8))
    node.available_CPUs += 1
    with pytest.raises(CapacityInvariantError, match="CPU accounting error"):
        node.check_invariants()
