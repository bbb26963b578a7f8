"""Pytest configuration to make the project root importable as a package.

This ensures that ``import jobledger`` and ``import api`` work when tests are
run from the repository root or other locations. Shared fixtures provide an
isolated job database, a function registry with a few target functions, and a
fake batch adapter that never talks to a scheduler.
"""

import os
import sys

# Project root = parent directory of this tests/ folder
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from pathlib import Path

import pytest

from jobledger.jobs.adapter import (
    BatchAdapter,
    JobSet,
    RegistryHandle,
    SubmittedJob,
    SubmittedJobSet,
    build_jobs,
)
from jobledger.jobs.functions import FunctionRegistry
from jobledger.jobs.store import JobDatabase


class FakeAdapter(BatchAdapter):
    """Records the three submission steps and hands out sequential scheduler ids."""

    def __init__(self, first_sjobid: int = 5001, fail_on: str | None = None, drop_last: bool = False) -> None:
        self.next_sjobid = first_sjobid
        self.fail_on = fail_on
        self.drop_last = drop_last
        self.registries: list[RegistryHandle] = []
        self.mapped: list[JobSet] = []
        self.resources: list[dict] = []

    def create_registry(self, path, template=None):
        if self.fail_on == "create":
            raise RuntimeError("cannot create registry")
        Path(path).mkdir()
        reg = RegistryHandle(name=Path(path).name, path=Path(path), template=template)
        self.registries.append(reg)
        return reg

    def map_call(self, registry, fn, table, moreargs=None):
        if self.fail_on == "map":
            raise RuntimeError("cannot map")
        jobs = JobSet(registry=registry, call=fn.__name__, jobs=build_jobs(table, moreargs))
        self.mapped.append(jobs)
        return jobs

    def submit(self, jobs, resources=None):
        if self.fail_on == "submit":
            raise RuntimeError("scheduler unavailable")
        self.resources.append(dict(resources or {}))
        submitted = []
        for job in jobs.jobs:
            submitted.append(SubmittedJob(bjobid=job.bjobid, sjobid=str(self.next_sjobid)))
            self.next_sjobid += 1
        if self.drop_last:
            submitted = submitted[:-1]
        return SubmittedJobSet(registry=jobs.registry, jobs=submitted)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "jobs" / "jdb.csv"


@pytest.fixture
def db(db_path: Path) -> JobDatabase:
    return JobDatabase(db_path)


@pytest.fixture
def adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def fake_adapter_cls():
    return FakeAdapter


@pytest.fixture
def finish_calls() -> list:
    return []


@pytest.fixture
def functions(finish_calls: list) -> FunctionRegistry:
    reg = FunctionRegistry()

    @reg.register
    def double(rep):
        return rep * 2

    @reg.register
    def flaky(rep):
        if rep == 1:
            raise ValueError("rep 1 is flaky")
        return rep

    @reg.register
    def compute(x, scale=1):
        return x * scale

    @reg.register
    def record_finish(jobid, status):
        finish_calls.append((jobid, status))

    return reg
