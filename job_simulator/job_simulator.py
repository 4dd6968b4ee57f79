from collections import deque
from dataclasses import dataclass
from typing import Optional

from common.models import Job, JobOutcome, OutcomeKind, HOURS_PER_DAY


DEFAULT_NODE_COUNT = 128
DEFAULT_NODE_CORES = 24
DEFAULT_NODE_MEMORY = 64


class CapacityInvariantError(AssertionError):
    """Raised when a node's capacity bookkeeping no longer adds up. Always a bug."""


@dataclass
class RunningJob:
    job: Job
    remaining_time: int


class WorkerNode:
    def __init__(self, name, id, total_CPUs=DEFAULT_NODE_CORES, total_memory=DEFAULT_NODE_MEMORY):
        self.name = name
        self.id = id  # Position in the pool, first fit scans in this order
        self.total_CPUs = total_CPUs
        self.total_memory = total_memory
        self.available_CPUs = total_CPUs
        self.available_memory = total_memory
        self.running_jobs: list[RunningJob] = []

    def has_capacity(self, job):
        return (self.available_CPUs >= job.CPUs_required and
                self.available_memory >= job.memory_required)

    def can_ever_fit(self, job):
        return (self.total_CPUs >= job.CPUs_required and
                self.total_memory >= job.memory_required)

    def is_running(self, job):
        return self._find(job) is not None

    def allocate(self, job):
        """Reserve the job's demand if both cores and memory are available. All or nothing."""
        if self.is_running(job):
            raise ValueError(f"Job {job.id} is already running on node {self.name}")
        if not self.has_capacity(job):
            return False

        self.available_CPUs -= job.CPUs_required
        self.available_memory -= job.memory_required
        self.running_jobs.append(RunningJob(job, job.execution_time))
        return True

    def release(self, job):
        entry = self._find(job)
        if entry is None:
            raise ValueError(f"Job {job.id} is not running on node {self.name}")

        self.running_jobs.remove(entry)
        self.available_CPUs += job.CPUs_required
        self.available_memory += job.memory_required

    def age_running_jobs(self):
        """
        Takes one tick off every running job and releases the ones that are done.
        Returns the released jobs.
        """
        finished = []
        for entry in self.running_jobs:
            entry.remaining_time -= 1
            if entry.remaining_time <= 0:
                finished.append(entry.job)

        for job in finished:
            self.release(job)
        return finished

    def check_invariants(self):
        used_CPUs = sum(entry.job.CPUs_required for entry in self.running_jobs)
        used_memory = sum(entry.job.memory_required for entry in self.running_jobs)

        if not 0 <= self.available_CPUs <= self.total_CPUs:
            raise CapacityInvariantError(
                f"Node {self.name} available CPUs out of range: {self.available_CPUs} (total {self.total_CPUs})")
        if not 0 <= self.available_memory <= self.total_memory:
            raise CapacityInvariantError(
                f"Node {self.name} available memory out of range: {self.available_memory} (total {self.total_memory})")
        if used_CPUs + self.available_CPUs != self.total_CPUs:
            raise CapacityInvariantError(
                f"Node {self.name} CPU accounting error: used({used_CPUs}) + "
                f"available({self.available_CPUs}) != total({self.total_CPUs})")
        if used_memory + self.available_memory != self.total_memory:
            raise CapacityInvariantError(
                f"Node {self.name} memory accounting error: used({used_memory}) + "
                f"available({self.available_memory}) != total({self.total_memory})")

    def _find(self, job):
        # Identity, not equality: two input lines may describe identical jobs
        for entry in self.running_jobs:
            if entry.job is job:
                return entry
        return None


class NodeSelectionStrategy:
    """Base class for node selection strategies when placing jobs"""
    def select_node(self, job, node_list):
        """Returns the node to place the job on, or None"""
        raise NotImplementedError


class FirstFitNodeSelection(NodeSelectionStrategy):
    """Place job on the first node in pool order that fits"""
    def select_node(self, job, node_list):
        for candidate_node in node_list:
            if candidate_node.has_capacity(job):
                return candidate_node
        return None


class WorkerPool:
    """Fixed, ordered collection of worker nodes. Never reordered."""

    def __init__(self, node_list, node_selection_strategy=None):
        self.node_list = list(node_list)
        self.node_selection_strategy = node_selection_strategy or FirstFitNodeSelection()

    @classmethod
    def uniform(cls, node_count=DEFAULT_NODE_COUNT, cores=DEFAULT_NODE_CORES,
                memory=DEFAULT_NODE_MEMORY, node_selection_strategy=None):
        if node_count <= 0:
            raise ValueError(f"Pool needs at least one node, got {node_count}")
        nodes = [WorkerNode(f"worker{i:03d}", i, cores, memory) for i in range(node_count)]
        return cls(nodes, node_selection_strategy)

    def __len__(self):
        return len(self.node_list)

    def __iter__(self):
        return iter(self.node_list)

    def __getitem__(self, index):
        return self.node_list[index]

    def place_first_fit(self, job) -> Optional[WorkerNode]:
        """Returns the node the job now runs on, or None if no node accepted it."""
        node = self.node_selection_strategy.select_node(job, self.node_list)
        if node is None:
            return None
        if not node.allocate(job):
            raise RuntimeError(f"Node {node.name} was selected for job {job.id} but refused it")
        return node

    def age_all(self):
        finished = []
        for node in self.node_list:
            finished.extend(node.age_running_jobs())
        return finished

    def can_ever_fit(self, job):
        return any(node.can_ever_fit(job) for node in self.node_list)

    def running_job_count(self):
        return sum(len(node.running_jobs) for node in self.node_list)

    def check_invariants(self):
        seen = {}
        for node in self.node_list:
            node.check_invariants()
            for entry in node.running_jobs:
                other = seen.setdefault(id(entry.job), node)
                if other is not node:
                    raise CapacityInvariantError(
                        f"Job {entry.job.id} is running on both {other.name} and {node.name}")


@dataclass
class QueuedJob:
    job: Job
    enqueued_tick: int
    attempts: int = 0  # Failed retry passes so far


class RetryQueue:
    """FIFO of jobs that could not be placed when they arrived."""

    def __init__(self):
        self._queue: deque[QueuedJob] = deque()

    def __len__(self):
        return len(self._queue)

    def __iter__(self):
        return iter(self._queue)

    def jobs(self):
        return [entry.job for entry in self._queue]

    def enqueue(self, job, tick=0):
        self._queue.append(QueuedJob(job, tick))

    def drain_and_retry(self, pool, max_retries=None):
        """
        Gives every job queued at call time exactly one placement attempt, head first.
        Jobs that still do not fit go back on the tail, so they are not retried again
        within this pass.

        Returns (placed, rejected): placed is a list of (QueuedJob, node) pairs, rejected
        lists the entries that used up max_retries and were dropped from the queue.
        """
        placed = []
        rejected = []
        for _ in range(len(self._queue)):
            entry = self._queue.popleft()
            node = pool.place_first_fit(entry.job)
            if node is not None:
                placed.append((entry, node))
                continue

            entry.attempts += 1
            if max_retries is not None and entry.attempts >= max_retries:
                rejected.append(entry)
            else:
                self._queue.append(entry)
        return placed, rejected


class SimulationClock:
    """
    Simulated day/hour clock.

    per_job: every processed job moves the clock on by one hour, whatever the job says.
    arrival: the clock jumps to the job's own arrival stamp when that is later than now.
    """
    POLICIES = ("per_job", "arrival")

    def __init__(self, policy="per_job"):
        if policy not in self.POLICIES:
            raise ValueError(f"Unknown clock policy '{policy}', expected one of {self.POLICIES}")
        self.policy = policy
        self.tick = 0

    @property
    def day(self):
        return self.tick // HOURS_PER_DAY

    @property
    def hour(self):
        return self.tick % HOURS_PER_DAY

    def advance(self, job):
        """Moves the clock for this job and returns the number of hours that passed."""
        if self.policy == "per_job":
            elapsed = 1
        else:
            elapsed = max(0, job.arrival_tick - self.tick)
        self.tick += elapsed
        return elapsed


class SchedulerSimulation:
    def __init__(self, pool, clock=None, max_retries=None, reporter=None,
                 validate_invariants=True, log_file=None, echo=True):
        if max_retries is not None and max_retries <= 0:
            raise ValueError(f"max_retries must be positive, got {max_retries}")
        self.pool = pool
        self.clock = clock or SimulationClock()
        self.retry_queue = RetryQueue()
        self.max_retries = max_retries
        self.reporter = reporter
        self.validate_invariants = validate_invariants
        self.log_file = log_file
        self.echo = echo
        self.stats = {
            'allocated': 0,
            'reinserted': 0,
            'allocated_after_retry': 0,
            'released': 0,
            'rejected': 0,
        }

    def _log(self, message):
        """Write message to log file and print to console"""
        if self.echo:
            print(message)
        if self.log_file:
            with open(self.log_file, 'a') as f:
                f.write(message + "\n")

    def _emit(self, outcomes, job, kind, **details):
        outcome = JobOutcome(job=job, kind=kind, tick=self.clock.tick,
                             day=self.clock.day, hour=self.clock.hour, **details)
        outcomes.append(outcome)
        if self.reporter is not None:
            self.reporter(outcome)
        return outcome

    def process_job(self, job):
        """Runs one tick for an arriving job: place, advance clock, age, retry the queue."""
        outcomes = []

        node = self.pool.place_first_fit(job)
        if node is not None:
            self.stats['allocated'] += 1
            self._emit(outcomes, job, OutcomeKind.ALLOCATED, node_name=node.name)
            self._log(f"[ALLOCATED] Job {job.id}: Placed on {node.name}")
        else:
            unsatisfiable = not self.pool.can_ever_fit(job)
            self.retry_queue.enqueue(job, self.clock.tick)
            self.stats['reinserted'] += 1
            self._emit(outcomes, job, OutcomeKind.REINSERTED, unsatisfiable=unsatisfiable)
            if unsatisfiable:
                self._log(f"[REINSERTED] Job {job.id}: Demand of {job.CPUs_required} CPUs, "
                          f"{job.memory_required} memory exceeds every node, it will never be placed")
            else:
                self._log(f"[REINSERTED] Job {job.id}: No capacity - needs {job.CPUs_required} CPUs, "
                          f"{job.memory_required} memory")

        elapsed = self.clock.advance(job)
        for _ in range(elapsed):
            for finished in self.pool.age_all():
                self.stats['released'] += 1
                self._log(f"[RELEASED] Job {finished.id}: Completed")

        placed, rejected = self.retry_queue.drain_and_retry(self.pool, self.max_retries)
        for entry, node in placed:
            self.stats['allocated_after_retry'] += 1
            self._emit(outcomes, entry.job, OutcomeKind.ALLOCATED_AFTER_RETRY,
                       node_name=node.name, retries=entry.attempts,
                       wait_ticks=self.clock.tick - entry.enqueued_tick)
            self._log(f"[ALLOCATED AFTER RETRY] Job {entry.job.id}: Placed on {node.name}")
        for entry in rejected:
            self.stats['rejected'] += 1
            self._emit(outcomes, entry.job, OutcomeKind.REJECTED, retries=entry.attempts,
                       wait_ticks=self.clock.tick - entry.enqueued_tick,
                       unsatisfiable=not self.pool.can_ever_fit(entry.job))
            self._log(f"[REJECTED] Job {entry.job.id}: Gave up after {entry.attempts} retries")

        if self.validate_invariants:
            self.pool.check_invariants()
        return outcomes

    def run(self, jobs):
        outcomes = []
        for job in jobs:
            outcomes.extend(self.process_job(job))
        return outcomes

    def starved_jobs(self):
        """Queued jobs that no node could hold even when empty."""
        return [job for job in self.retry_queue.jobs() if not self.pool.can_ever_fit(job)]

    def get_stats(self):
        """Return simulation statistics"""
        stats = self.stats.copy()
        stats['queued'] = len(self.retry_queue)
        stats['starved'] = len(self.starved_jobs())
        return stats

    def get_current_state(self):
        """Return current cluster state for external logging"""
        return {
            'tick': self.clock.tick,
            'running_jobs': self.pool.running_job_count(),
            'queued_jobs': len(self.retry_queue),
            'nodes': [{
                'name': n.name,
                'CPUs_in_use': n.total_CPUs - n.available_CPUs,
                'memory_in_use': n.total_memory - n.available_memory,
                'total_CPUs': n.total_CPUs,
                'total_memory': n.total_memory,
                'running_jobs': len(n.running_jobs),
                }
            for n in self.pool]
        }
