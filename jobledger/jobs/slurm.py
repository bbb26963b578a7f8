"""Slurm batch adapter: one ``sbatch`` submission per job.

Registry layout (``<regdir>/regNNN/``)::

    registry.json        call name, creation time, job count
    template.tmpl        snapshot of the submission template used
    jobs/<bjobid>.pkl    pickled (function, kwargs) for the worker
    jobs/<bjobid>.sh     rendered submission script
    logs/<bjobid>.log    job stdout/stderr

Each script runs ``python -m jobledger.jobs.worker jobs/<bjobid>.pkl`` on the
compute node; the worker writes ``jobs/<bjobid>.status.json`` when it starts
and when it ends.

Functions are pickled by reference, so they must be importable (module-level)
on the cluster nodes.
"""

from __future__ import annotations

import logging
import pickle
import shlex
import shutil
import subprocess
import sys
from pathlib import Path
from string import Template
from typing import Any, Callable, Mapping

import pandas as pd

from jobledger.config import RESOURCES, get_config
from jobledger.jobs.adapter import (
    BatchAdapter,
    JobSet,
    RegistryHandle,
    SubmittedJob,
    SubmittedJobSet,
    build_jobs,
)
from jobledger.jobs.store import utc_now_iso, write_json

logger = logging.getLogger(__name__)

TEMPLATE_NAME = "template.tmpl"


class SubmissionError(RuntimeError):
    """``sbatch`` rejected a job or could not be run."""


def _run_cmd(cmd: list[str], timeout: float = 60.0) -> tuple[int, str, str]:
    """Run a command, returning (exit_code, stdout, stderr)."""
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        return -1, "", f"Command timed out after {timeout}s"
    except OSError as e:
        return -1, "", str(e)
    return result.returncode, result.stdout, result.stderr


def parse_sbatch_output(stdout: str) -> str:
    """Extract the job id from ``sbatch --parsable`` output (``<id>`` or ``<id>;<cluster>``)."""
    line = stdout.strip().splitlines()[-1] if stdout.strip() else ""
    jobid = line.split(";")[0].strip()
    if not jobid.isdigit():
        raise SubmissionError(f"unexpected sbatch output: {stdout!r}")
    return jobid


def payload_path(registry: RegistryHandle, bjobid: int) -> Path:
    return registry.path / "jobs" / f"{bjobid}.pkl"


def script_path(registry: RegistryHandle, bjobid: int) -> Path:
    return registry.path / "jobs" / f"{bjobid}.sh"


def log_path(registry: RegistryHandle, bjobid: int) -> Path:
    return registry.path / "logs" / f"{bjobid}.log"


class SlurmAdapter(BatchAdapter):
    def __init__(self, sbatch: str = "sbatch", python: str | None = None, timeout: float = 60.0) -> None:
        self.sbatch = sbatch
        self.python = python or sys.executable
        self.timeout = timeout

    def create_registry(self, path: Path, template: Path | None = None) -> RegistryHandle:
        path = Path(path)
        template = Path(template or get_config().template)
        path.mkdir(parents=False, exist_ok=False)
        (path / "jobs").mkdir()
        (path / "logs").mkdir()
        shutil.copyfile(template, path / TEMPLATE_NAME)
        return RegistryHandle(name=path.name, path=path, template=path / TEMPLATE_NAME)

    def map_call(
        self,
        registry: RegistryHandle,
        fn: Callable[..., Any],
        table: pd.DataFrame,
        moreargs: Mapping[str, Any] | None = None,
    ) -> JobSet:
        call = getattr(fn, "__name__", repr(fn))
        jobs = build_jobs(table, moreargs)
        for job in jobs:
            with payload_path(registry, job.bjobid).open("wb") as f:
                pickle.dump({"fn": fn, "kwargs": job.kwargs, "call": call}, f)
        write_json(
            registry.path / "registry.json",
            {"registry": registry.name, "call": call, "created_at_utc": utc_now_iso(), "n_jobs": len(jobs)},
        )
        return JobSet(registry=registry, call=call, jobs=jobs)

    def render_script(self, registry: RegistryHandle, bjobid: int, resources: Mapping[str, Any] | None = None) -> str:
        template_file = registry.template or (registry.path / TEMPLATE_NAME)
        tmpl = Template(Path(template_file).read_text(encoding="utf-8"))
        values = RESOURCES.merged(dict(resources or {}))
        command = f"{shlex.quote(self.python)} -m jobledger.jobs.worker {shlex.quote(str(payload_path(registry, bjobid)))}"
        values.update(
            job_name=f"{registry.name}-{bjobid}",
            log_file=str(log_path(registry, bjobid)),
            command=command,
        )
        return tmpl.safe_substitute({k: str(v) for k, v in values.items()})

    def submit(self, jobs: JobSet, resources: Mapping[str, Any] | None = None) -> SubmittedJobSet:
        registry = jobs.registry
        submitted: list[SubmittedJob] = []
        for job in jobs.jobs:
            script = script_path(registry, job.bjobid)
            script.write_text(self.render_script(registry, job.bjobid, resources), encoding="utf-8")
            code, out, err = _run_cmd([self.sbatch, "--parsable", str(script)], timeout=self.timeout)
            if code != 0:
                raise SubmissionError(
                    f"sbatch failed for {registry.name} job {job.bjobid} (exit {code}): {err.strip() or out.strip()}"
                )
            sjobid = parse_sbatch_output(out)
            logger.debug("Submitted %s job %d as slurm job %s", registry.name, job.bjobid, sjobid)
            submitted.append(SubmittedJob(bjobid=job.bjobid, sjobid=sjobid))
        return SubmittedJobSet(registry=registry, jobs=submitted)
