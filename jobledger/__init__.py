"""Launch parameterized jobs on Slurm or locally and keep a job database of every run."""

from jobledger.jobs.functions import register
from jobledger.jobs.launch import launch
from jobledger.jobs.store import JobDatabase, get_database

__all__ = ["JobDatabase", "get_database", "launch", "register"]
