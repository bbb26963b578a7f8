from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    QUEUED = "queued"
    FINISHED = "finished"
    ERROR = "error"


# Markers written to the ``finish`` column by the local executor.
FINISHING = "finishing..."
FINISHED_CALLBACK = "done"


@dataclass(frozen=True)
class JobRecord:
    """One row of the job database.

    Batch and local jobs share this schema; fields that only one path sets are
    left as ``None`` by the other.
    """

    jobid: int
    launched: datetime
    call: str
    status: JobStatus
    done: bool
    comment: str = ""
    bjobid: int | None = None
    registry: str | None = None
    sjobid: str | None = None
    finish: str | None = None
    mem_gb: float | None = None
    walltime: str | None = None
    log: str | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        if self.status == JobStatus.QUEUED and self.done:
            raise ValueError("queued jobs cannot be done")
        if self.status in (JobStatus.FINISHED, JobStatus.ERROR) and not self.done:
            raise ValueError(f"{self.status.value} jobs must be done")

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        return d


# Column order of the persisted table.
JOB_COLUMNS: list[str] = [
    "jobid",
    "launched",
    "call",
    "bjobid",
    "registry",
    "sjobid",
    "status",
    "done",
    "finish",
    "comment",
    "mem_gb",
    "walltime",
    "log",
    "error",
]

# pandas dtypes per column (nullable extension types so missing values survive a reload).
JOB_DTYPES: dict[str, str] = {
    "jobid": "Int64",
    "launched": "datetime64[ns, UTC]",
    "call": "string",
    "bjobid": "Int64",
    "registry": "string",
    "sjobid": "string",
    "status": "string",
    "done": "boolean",
    "finish": "string",
    "comment": "string",
    "mem_gb": "Float64",
    "walltime": "string",
    "log": "string",
    "error": "string",
}
