"""Launch jobs in batch (Slurm) or locally, recording every job in the job database.

Use ``finish="name"`` to have a registered function called for each completed
job, for example to update a results table. Finish functions take two
arguments, ``jobid`` and ``status``, and run in the launching process, so they
should be quick. For batch jobs they are called later by the sweep; for local
jobs they are called right after each job is recorded.

Local launches (``local=True``) block until every rep has run. Each rep is
saved to the job database as soon as it completes, so interrupting a local run
loses only the rep in flight.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Mapping

from jobledger.config import JobsConfig, get_config
from jobledger.jobs.adapter import BatchAdapter
from jobledger.jobs.errors import DuplicateJobId, JobLedgerError, SubmissionFault, describe_fault
from jobledger.jobs.functions import FUNCTIONS, FunctionRegistry
from jobledger.jobs.local import run_local
from jobledger.jobs.params import check_signature, expand_reps
from jobledger.jobs.registries import next_registry_name
from jobledger.jobs.store import JobDatabase, get_database, utc_now
from jobledger.jobs.types import JobRecord, JobStatus

logger = logging.getLogger(__name__)


def _resolve_call(call: str | Callable[..., Any], functions: FunctionRegistry) -> tuple[Callable[..., Any], str]:
    if callable(call):
        return call, getattr(call, "__name__", repr(call))
    return functions.get(call), str(call)


def _free_jobids(db: JobDatabase, jobids: list[int], replace: bool) -> None:
    """Resolve rows already holding freshly reserved jobids.

    Reserved ids sit above every saved row and every id reserved under the
    current lock, so a clash only happens when something rewrote the file
    without taking the lock.
    ``replace=True`` drops the stale rows; ``replace=False`` refuses.
    """
    clash = db.contains(jobids)
    if not clash:
        return
    if not replace:
        raise DuplicateJobId(f"jobids already in job database: {clash}")
    logger.warning("Replacing existing jobids %s", clash)
    db.drop(clash)


def launch(
    call: str | Callable[..., Any],
    args: Mapping[str, Any] | None = None,
    reps: Any = 1,
    argname: str = "rep",
    moreargs: Mapping[str, Any] | None = None,
    resources: Mapping[str, Any] | None = None,
    local: bool = False,
    regdir: str | Path | None = None,
    comment: str = "",
    finish: str | None = None,
    replace: bool = True,
    *,
    db: JobDatabase | None = None,
    functions: FunctionRegistry | None = None,
    adapter: BatchAdapter | None = None,
    template: str | Path | None = None,
    config: JobsConfig | None = None,
) -> list[int]:
    """Launch ``call`` once per rep and return the new job ids.

    Args:
        call: Registered function name (or ``"module:attr"``), or the function itself
        args: Reserved; ignored
        reps: Value, vector, mapping of vectors, list of mappings or DataFrame to
            vectorize over. Names must match the function's arguments.
        argname: Argument name used when ``reps`` carries no names
        moreargs: Fixed keyword arguments passed to every rep
        resources: Batch resources (walltime, ncpus, memory, ...) overriding defaults
        local: Run reps in this process instead of submitting batch jobs
        regdir: Directory holding batch registries
        comment: Comment stored with every job
        finish: Name of a registered function to call as ``finish(jobid, status)``
        replace: Whether newly allocated jobids may overwrite rows already present
        db: Job database (default: the process-wide one)
        functions: Function registry used to resolve ``call`` and ``finish``
        adapter: Batch adapter (default: :class:`SlurmAdapter`)
        template: Submission template for batch jobs
        config: Configuration supplying the defaults above
    """

    cfg = config or get_config()
    functions = FUNCTIONS if functions is None else functions
    db = get_database(cfg.db_path) if db is None else db

    fn, call_name = _resolve_call(call, functions)
    if args:
        logger.warning("launch(args=...) is reserved and currently ignored: %s", sorted(args))

    moreargs = dict(moreargs or {})
    table = expand_reps(reps, argname)
    check_signature(fn, table, moreargs)

    with db.locked():
        jobids = db.reserve_jobids(len(table))
        _free_jobids(db, jobids, replace)
        launched = utc_now()

        if local:
            run_local(
                db,
                fn,
                call_name,
                table,
                jobids,
                launched,
                moreargs=moreargs,
                comment=comment,
                finish=finish,
                functions=functions,
            )
        else:
            if adapter is None:
                from jobledger.jobs.slurm import SlurmAdapter

                adapter = SlurmAdapter()
            _launch_batch(
                db,
                adapter,
                fn,
                call_name,
                table,
                jobids,
                launched,
                moreargs=moreargs,
                resources=dict(resources or {}),
                regdir=Path(regdir or cfg.regdir),
                template=Path(template or cfg.template),
                comment=comment,
                finish=finish,
            )

    return jobids


def _launch_batch(
    db: JobDatabase,
    adapter: BatchAdapter,
    fn: Callable[..., Any],
    call: str,
    table,
    jobids: list[int],
    launched,
    *,
    moreargs: dict[str, Any],
    resources: dict[str, Any],
    regdir: Path,
    template: Path,
    comment: str,
    finish: str | None,
) -> list[JobRecord]:
    regid = next_registry_name(regdir)

    try:
        registry = adapter.create_registry(regdir / regid, template)
        jobs = adapter.map_call(registry, fn, table, moreargs)
        submitted = adapter.submit(jobs, resources)
    except JobLedgerError:
        raise
    except Exception as exc:
        raise SubmissionFault(f"batch submission to {regid} failed: {describe_fault(exc)}") from exc

    if len(submitted) != len(jobids):
        raise SubmissionFault(f"{regid}: submitted {len(submitted)} jobs, expected {len(jobids)}")

    records = [
        JobRecord(
            jobid=jobid,
            launched=launched,
            call=call,
            status=JobStatus.QUEUED,
            done=False,
            comment=comment,
            bjobid=job.bjobid,
            registry=regid,
            sjobid=None if job.sjobid is None else str(job.sjobid),
            finish=finish,
        )
        for jobid, job in zip(jobids, submitted.jobs)
    ]
    db.append(records)
    db.save()

    if len(records) == 1:
        logger.info("1 job (jobid %d) submitted to %s", jobids[0], regid)
    else:
        logger.info("%d jobs (jobids %s) submitted to %s", len(records), ", ".join(map(str, jobids)), regid)
    return records
