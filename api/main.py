from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel

from jobledger.jobs.errors import StorageUnavailable
from jobledger.jobs.store import get_database

app = FastAPI(
    title="Job Ledger API",
    description="Read-only access to the job database.",
    version="1.0.0",
)


# Pydantic model for one job database row
class Job(BaseModel):
    jobid: int
    launched: datetime
    call: str
    bjobid: Optional[int] = None
    registry: Optional[str] = None
    sjobid: Optional[str] = None
    status: str
    done: bool
    finish: Optional[str] = None
    comment: str = ""
    mem_gb: Optional[float] = None
    walltime: Optional[str] = None
    log: Optional[str] = None
    error: Optional[str] = None


class JobList(BaseModel):
    count: int
    jobs: List[Job]


def _fresh_db():
    # Launchers write from other processes; always read what is on disk.
    db = get_database()
    try:
        db.refresh()
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return db


@app.get("/jobs", response_model=JobList, summary="List jobs")
async def list_jobs(
    status: Optional[str] = Query(None, description="Filter by status (queued, finished, error)"),
    registry: Optional[str] = Query(None, description="Filter by registry, e.g. reg001"),
    limit: Optional[int] = Query(None, ge=1, description="Return only the most recent N jobs"),
):
    """
    Returns jobs ordered by jobid, optionally filtered by status and registry.
    """
    db = _fresh_db()
    df = db.jobs(status=status, registry=registry)
    if limit is not None:
        df = df.tail(limit)
    rows = db.to_records(df)
    return {"count": len(rows), "jobs": rows}


@app.get("/jobs/{jobid}", response_model=Job, summary="Get one job")
async def get_job(jobid: int):
    db = _fresh_db()
    row = db.get(jobid)
    if row is None:
        raise HTTPException(status_code=404, detail=f"jobid {jobid} not found")
    return row


@app.get("/health", summary="Health check", response_description="API health status")
async def health_check():
    """
    Checks the health of the API.
    """
    return {"status": "ok"}
