"""Contract between the launcher and a batch submission backend.

A launch drives an adapter through three steps:

1. ``create_registry(path, template)`` - claim the registry directory
2. ``map_call(registry, fn, table, moreargs)`` - define one job per parameter row
3. ``submit(jobs, resources)`` - hand the jobs to the scheduler

and then records one queued job per submitted job. Adapters never touch the
job database.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping

import pandas as pd

from jobledger.jobs.params import row_kwargs


@dataclass(frozen=True)
class RegistryHandle:
    name: str
    path: Path
    template: Path | None = None


@dataclass(frozen=True)
class MappedJob:
    bjobid: int
    kwargs: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class JobSet:
    registry: RegistryHandle
    call: str
    jobs: list[MappedJob]

    def __len__(self) -> int:
        return len(self.jobs)


@dataclass(frozen=True)
class SubmittedJob:
    bjobid: int
    sjobid: str | None


@dataclass(frozen=True)
class SubmittedJobSet:
    registry: RegistryHandle
    jobs: list[SubmittedJob]

    def __len__(self) -> int:
        return len(self.jobs)


def build_jobs(table: pd.DataFrame, moreargs: Mapping[str, Any] | None = None) -> list[MappedJob]:
    """One :class:`MappedJob` per table row, numbered from 1, with ``moreargs`` merged in."""

    jobs = []
    for k in range(len(table)):
        kwargs = row_kwargs(table, k)
        kwargs.update(moreargs or {})
        jobs.append(MappedJob(bjobid=k + 1, kwargs=kwargs))
    return jobs


class BatchAdapter(ABC):
    @abstractmethod
    def create_registry(self, path: Path, template: Path | None = None) -> RegistryHandle:
        """Create the registry storage at ``path``; ``path`` must not exist yet."""

    @abstractmethod
    def map_call(
        self,
        registry: RegistryHandle,
        fn: Callable[..., Any],
        table: pd.DataFrame,
        moreargs: Mapping[str, Any] | None = None,
    ) -> JobSet:
        """Define one job per row of ``table``."""

    @abstractmethod
    def submit(self, jobs: JobSet, resources: Mapping[str, Any] | None = None) -> SubmittedJobSet:
        """Submit ``jobs`` and return their scheduler ids, in ``jobs`` order."""
