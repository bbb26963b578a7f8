"""Exception types raised by the launch engine.

Faults in a single job's target function are recorded in the job database
rather than raised; everything here is an infrastructure fault that ends the
current launch call.
"""

from __future__ import annotations


class JobLedgerError(Exception):
    """Base class for all launch engine errors."""


class InvalidParameters(JobLedgerError, ValueError):
    """`reps` (or `moreargs`) cannot be mapped onto the target function."""


class StorageUnavailable(JobLedgerError, OSError):
    """The job database or registry storage could not be read, written or locked."""


class SubmissionFault(JobLedgerError):
    """The batch submission adapter failed to create, map or submit jobs."""


class ExecutionFault(JobLedgerError):
    """A target function raised while running locally.

    The local executor captures these per row and records ``str(fault)`` in the
    job's ``error`` column; they are not propagated to the caller.
    """


class CallbackFault(JobLedgerError):
    """A completion callback raised."""

    def __init__(self, name: str, jobid: int, cause: BaseException) -> None:
        super().__init__(f"finish function {name!r} failed for jobid {jobid}: {describe_fault(cause)}")
        self.name = name
        self.jobid = jobid


class UnknownFunction(JobLedgerError, LookupError):
    """A function name could not be resolved."""


class DuplicateJobId(JobLedgerError):
    """Newly allocated job ids already exist in the database."""


def describe_fault(exc: BaseException) -> str:
    """Render an exception as the text stored in a job's ``error`` column."""

    msg = str(exc).strip()
    name = type(exc).__name__
    return f"{name}: {msg}" if msg else name
