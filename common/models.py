"""
Shared data models for the job placement simulator.

This module contains the job record and the outcome events emitted by the simulation,
used across the simulation, data handling and analysis components.
"""
from dataclasses import dataclass
from enum import StrEnum
from typing import Optional


HOURS_PER_DAY = 24


@dataclass(frozen=True)
class Job:
    """Represents a job's resource demand and duration. Never mutated after parsing."""
    id: int
    arrival_day: int
    arrival_hour: int
    memory_required: int
    CPUs_required: int
    execution_time: int

    @property
    def arrival_tick(self):
        return self.arrival_day * HOURS_PER_DAY + self.arrival_hour


class OutcomeKind(StrEnum):
    """Status labels as they appear in the audit report."""
    ALLOCATED = "Allocated"
    REINSERTED = "Reinserted"
    ALLOCATED_AFTER_RETRY = "Allocated After Retry"
    REJECTED = "Rejected"  # Only emitted when a retry limit is configured


@dataclass(frozen=True)
class JobOutcome:
    """Represents something that happened to a job during a tick."""
    job: Job
    kind: OutcomeKind
    tick: int
    day: int
    hour: int
    node_name: Optional[str] = None
    retries: int = 0
    wait_ticks: int = 0
    unsatisfiable: bool = False
