"""Pytest configuration.

Puts the repository root on sys.path so the flat packages
(common, job_simulator, data_handling, analysis) import without installing.
"""

import sys
from pathlib import Path

import pytest

_root = Path(__file__).resolve().parents[1]
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

from common.models import Job  # noqa: E402


@pytest.fixture
def make_job():
    """Factory for jobs; ids count up unless given."""
    counter = iter(range(1, 1_000_000))

    def _make(cpus, memory, execution_time=1, id=None, arrival_day=0, arrival_hour=0):
        return Job(
            id=next(counter) if id is None else id,
            arrival_day=arrival_day,
            arrival_hour=arrival_hour,
            memory_required=memory,
            CPUs_required=cpus,
            execution_time=execution_time,
        )

    return _make
