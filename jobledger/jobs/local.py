"""Synchronous in-process execution of a launch.

Rows run one at a time, in parameter-table order. Each completed row is
written to the job database and saved before the next row starts, so an
interrupted run keeps every row that finished. There is no resume.
"""

from __future__ import annotations

import logging
import time
import tracemalloc
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterator, Mapping

import pandas as pd

from jobledger.jobs.errors import ExecutionFault, describe_fault
from jobledger.jobs.finish import invoke_finish
from jobledger.jobs.functions import FunctionRegistry
from jobledger.jobs.params import row_kwargs
from jobledger.jobs.store import JobDatabase
from jobledger.jobs.types import FINISHED_CALLBACK, FINISHING, JobRecord, JobStatus

logger = logging.getLogger(__name__)

BYTES_PER_GB = 1024**3


def format_walltime(seconds: float) -> str:
    """Format elapsed seconds as ``HH:MM:SS`` (hours are not wrapped at 24)."""
    total = int(round(max(0.0, seconds)))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


@dataclass
class Measurement:
    elapsed_sec: float = 0.0
    peak_bytes: int = 0

    @property
    def mem_gb(self) -> float:
        """Peak Python heap allocation (via ``tracemalloc``) in GiB.

        Memory allocated outside the Python allocator, such as by C extensions
        that bypass it, is not counted, so this is not the resident set size.
        """
        return self.peak_bytes / BYTES_PER_GB

    @property
    def walltime(self) -> str:
        return format_walltime(self.elapsed_sec)


@contextmanager
def measure() -> Iterator[Measurement]:
    """Record wall time and peak Python heap growth of the enclosed block."""

    m = Measurement()
    was_tracing = tracemalloc.is_tracing()
    if was_tracing:
        tracemalloc.reset_peak()
    else:
        tracemalloc.start()
    baseline, _ = tracemalloc.get_traced_memory()
    t0 = time.perf_counter()
    try:
        yield m
    finally:
        m.elapsed_sec = time.perf_counter() - t0
        _, peak = tracemalloc.get_traced_memory()
        m.peak_bytes = max(0, peak - baseline)
        if not was_tracing:
            tracemalloc.stop()


def run_one(fn: Callable[..., Any], kwargs: Mapping[str, Any]) -> tuple[Measurement, ExecutionFault | None]:
    """Call ``fn(**kwargs)`` under :func:`measure`, capturing any exception it raises."""

    fault = None
    with measure() as m:
        try:
            fn(**kwargs)
        except Exception as exc:  # noqa: BLE001
            fault = ExecutionFault(describe_fault(exc))
            fault.__cause__ = exc
    return m, fault


def run_local(
    db: JobDatabase,
    fn: Callable[..., Any],
    call: str,
    table: pd.DataFrame,
    jobids: list[int],
    launched: datetime,
    *,
    moreargs: Mapping[str, Any] | None = None,
    comment: str = "",
    finish: str | None = None,
    functions: FunctionRegistry | None = None,
) -> list[JobRecord]:
    """Run every row of ``table`` in-process, recording one job per row."""

    n = len(table)
    if len(jobids) != n:
        raise ValueError(f"{len(jobids)} jobids for {n} parameter rows")

    logger.info("Running %s locally%s", call, f" ({n} reps)" if n > 1 else "")
    records: list[JobRecord] = []

    for k, jobid in enumerate(jobids):
        kwargs = row_kwargs(table, k)
        kwargs.update(moreargs or {})
        if n > 1:
            logger.info("   Running rep %d of %d (jobid %d)...", k + 1, n, jobid)

        m, fault = run_one(fn, kwargs)
        if fault is not None:
            logger.warning("   jobid %d failed: %s", jobid, fault)

        record = JobRecord(
            jobid=jobid,
            launched=launched,
            call=call,
            status=JobStatus.ERROR if fault is not None else JobStatus.FINISHED,
            done=True,
            comment=comment,
            finish=FINISHING if finish is not None else None,
            mem_gb=m.mem_gb,
            walltime=m.walltime,
            error=str(fault) if fault is not None else None,
        )
        db.append([record])
        db.save()
        records.append(record)

        if finish is not None:
            invoke_finish(finish, jobid, record.status.value, functions)
            db.update(jobid, finish=FINISHED_CALLBACK)
            db.save()

    logger.info("Finished running %d rep%s", n, "" if n == 1 else "s")
    return records
