"""Cluster-side entry point for one batch job.

Usage (from a rendered submission script)::

    python -m jobledger.jobs.worker <registry>/jobs/<bjobid>.pkl

Loads the pickled function and arguments, runs them, and records progress in
``<bjobid>.status.json`` next to the payload. The job database is not touched
here; the sweep reads these status files.
"""

from __future__ import annotations

import argparse
import pickle
import traceback
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Literal

from jobledger.jobs.local import measure
from jobledger.jobs.store import utc_now_iso, write_json

WorkerState = Literal["RUNNING", "FINISHED", "ERROR"]


@dataclass
class WorkerStatus:
    state: WorkerState
    started_at_utc: str
    finished_at_utc: str | None = None
    walltime: str | None = None
    mem_gb: float | None = None
    error: str | None = None
    traceback: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def status_file_for(payload: Path) -> Path:
    return payload.with_name(payload.stem + ".status.json")


def run_payload(payload: Path) -> Any:
    """Run one pickled job, writing its status file; re-raises the job's exception."""

    status_file = status_file_for(payload)
    started = utc_now_iso()
    write_json(status_file, WorkerStatus(state="RUNNING", started_at_utc=started).to_dict())

    try:
        with payload.open("rb") as f:
            job = pickle.load(f)
        with measure() as m:
            result = job["fn"](**job["kwargs"])
    except Exception as exc:
        write_json(
            status_file,
            WorkerStatus(
                state="ERROR",
                started_at_utc=started,
                finished_at_utc=utc_now_iso(),
                error=repr(exc),
                traceback=traceback.format_exc(),
            ).to_dict(),
        )
        raise

    write_json(
        status_file,
        WorkerStatus(
            state="FINISHED",
            started_at_utc=started,
            finished_at_utc=utc_now_iso(),
            walltime=m.walltime,
            mem_gb=m.mem_gb,
        ).to_dict(),
    )
    return result


def main() -> None:
    p = argparse.ArgumentParser(description="Run one pickled batch job and record its status.")
    p.add_argument("payload", type=str, help="Path to <registry>/jobs/<bjobid>.pkl")
    args = p.parse_args()
    run_payload(Path(args.payload))


if __name__ == "__main__":  # pragma: no cover
    main()
