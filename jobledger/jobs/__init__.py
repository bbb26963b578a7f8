"""Job launching and bookkeeping.

Purpose:
- Expand the repetitions of a launch into one job per parameter row.
- Submit jobs to Slurm through a batch adapter, or run them in-process.
- Record every job (id, launch time, registry, status, resources) in the job database.
"""
