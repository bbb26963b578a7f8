"""Job database: the persisted table of every launched job.

The table lives in a single CSV file. It is loaded lazily on first access,
trusted thereafter, and written back (atomically, via a temporary sibling and
``os.replace``) after every structural change made by the launcher.

Launchers that allocate ids or registry names do so inside
:meth:`JobDatabase.locked`, which holds an OS-level lock on ``<db>.lock`` and
re-reads the table, so concurrent launchers never hand out the same jobid.
The lock is shared by every :class:`JobDatabase` on the same file within a
process and is re-entrant, so a finish callback may itself call ``launch``.
Ids handed out under the lock are remembered until it is released, which
keeps a nested launch clear of ids its outer launch has not written yet.
"""

from __future__ import annotations

import json
import os
import sys
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator

import numpy as np
import pandas as pd

from jobledger.jobs.errors import InvalidParameters, StorageUnavailable
from jobledger.jobs.types import JOB_COLUMNS, JOB_DTYPES, JobRecord


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def write_json(path: Path, obj: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(obj, indent=2, ensure_ascii=False), encoding="utf-8")


def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8") or "null")


def allocate_jobids(current_max: int, n: int) -> list[int]:
    """Return the contiguous block of ``n`` new job ids following ``current_max``."""
    if n < 1:
        raise InvalidParameters(f"cannot allocate {n} job ids")
    start = int(current_max) + 1
    return list(range(start, start + n))


def _to_utc(s: pd.Series) -> pd.Series:
    if s.dtype == object and s.map(lambda v: isinstance(v, str)).any():
        return pd.to_datetime(s, utc=True, format="ISO8601")
    return pd.to_datetime(s, utc=True)


def empty_table() -> pd.DataFrame:
    return pd.DataFrame({c: pd.Series(dtype=JOB_DTYPES[c]) for c in JOB_COLUMNS})


def coerce_table(df: pd.DataFrame) -> pd.DataFrame:
    """Return ``df`` with exactly the job columns, in order, with the schema dtypes."""

    out: dict[str, pd.Series] = {}
    for col in JOB_COLUMNS:
        s = df[col] if col in df.columns else pd.Series(pd.NA, index=df.index, dtype=object)
        if col == "launched":
            out[col] = _to_utc(s)
        else:
            out[col] = s.astype(JOB_DTYPES[col])
    res = pd.DataFrame(out, index=df.index)
    res["comment"] = res["comment"].fillna("")
    return res.reset_index(drop=True)


def records_to_frame(records: Iterable[JobRecord]) -> pd.DataFrame:
    rows = [r.to_dict() for r in records]
    if not rows:
        return empty_table()
    return coerce_table(pd.DataFrame(rows, columns=JOB_COLUMNS))


def json_friendly_row(row: dict[str, Any]) -> dict[str, Any]:
    """Convert one table row (pandas/numpy scalars, NA) into plain JSON-able values."""

    out: dict[str, Any] = {}
    for k, v in row.items():
        if v is None or v is pd.NA or v is pd.NaT:
            out[k] = None
        elif isinstance(v, float) and np.isnan(v):
            out[k] = None
        elif isinstance(v, pd.Timestamp):
            out[k] = v.isoformat()
        elif isinstance(v, np.generic):
            out[k] = v.item()
        else:
            out[k] = v
    return out


@dataclass
class _SharedLock:
    """Process-wide state of one lock file, shared by all instances on it."""

    mutex: threading.RLock = field(default_factory=threading.RLock)
    fd: int | None = None
    depth: int = 0
    reserved_max: int = 0
    generation: int = 0


_LOCKS: dict[Path, _SharedLock] = {}
_LOCKS_GUARD = threading.Lock()


def _shared_lock(lock_path: Path) -> _SharedLock:
    key = lock_path.resolve()
    with _LOCKS_GUARD:
        return _LOCKS.setdefault(key, _SharedLock())


class JobDatabase:
    """In-memory job table backed by a CSV file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._frame: pd.DataFrame | None = None
        self._shared = _shared_lock(self.lock_path)
        self._depth = 0
        self._generation = -1
        self._dirty = False

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(self.path.name + ".lock")

    @property
    def loaded(self) -> bool:
        return self._frame is not None

    @property
    def frame(self) -> pd.DataFrame:
        # Under the lock, pick up saves made through another instance on the same file.
        if self._frame is not None and self._depth and not self._dirty and self._generation != self._shared.generation:
            self._frame = None
        if self._frame is None:
            self._frame = self.load()
            self._generation = self._shared.generation
            self._dirty = False
        return self._frame

    def __len__(self) -> int:
        return len(self.frame)

    def load(self) -> pd.DataFrame:
        """Read the table from disk; a missing file yields an empty table."""
        if not self.path.exists():
            return empty_table()
        dtypes = {c: JOB_DTYPES[c] for c in JOB_COLUMNS if c != "launched"}
        dtypes["launched"] = "object"
        try:
            df = pd.read_csv(self.path, dtype=dtypes)
        except pd.errors.EmptyDataError:
            return empty_table()
        except (OSError, ValueError) as exc:
            raise StorageUnavailable(f"cannot read job database {self.path}: {exc}") from exc
        return coerce_table(df)

    def refresh(self) -> pd.DataFrame:
        """Discard the in-memory table and re-read it from disk."""
        self._frame = None
        return self.frame

    def save(self) -> None:
        df = self.frame.copy()
        df["launched"] = df["launched"].map(lambda t: t.isoformat() if pd.notna(t) else "")
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            df.to_csv(tmp, index=False)
            os.replace(tmp, self.path)
        except OSError as exc:
            raise StorageUnavailable(f"cannot write job database {self.path}: {exc}") from exc
        self._shared.generation += 1
        self._generation = self._shared.generation
        self._dirty = False

    def max_jobid(self) -> int:
        if self.frame.empty:
            return 0
        return int(self.frame["jobid"].max())

    def reserve_jobids(self, n: int) -> list[int]:
        """Allocate ``n`` new jobids above every saved row and every id reserved under the current lock.

        Reservations last until the outermost :meth:`locked` block exits.
        """
        shared = self._shared
        floor = shared.reserved_max if shared.depth else 0
        jobids = allocate_jobids(max(self.max_jobid(), floor), n)
        if shared.depth:
            shared.reserved_max = jobids[-1]
        return jobids

    def contains(self, jobids: Iterable[int]) -> list[int]:
        """Return the subset of ``jobids`` already present in the table."""
        present = set(self.frame["jobid"].dropna().astype(int).tolist())
        return [j for j in jobids if j in present]

    def append(self, records: Iterable[JobRecord]) -> None:
        new = records_to_frame(records)
        if new.empty:
            return
        if self.frame.empty:
            self._frame = new
        else:
            self._frame = pd.concat([self.frame, new], ignore_index=True)
        self._dirty = True

    def drop(self, jobids: Iterable[int]) -> None:
        ids = list(jobids)
        self._frame = self.frame[~self.frame["jobid"].isin(ids)].reset_index(drop=True)
        self._dirty = True

    def update(self, jobid: int, **fields: Any) -> None:
        unknown = set(fields) - set(JOB_COLUMNS)
        if unknown:
            raise KeyError(f"unknown job columns: {sorted(unknown)}")
        mask = self.frame["jobid"] == jobid
        if not mask.any():
            raise KeyError(f"jobid {jobid} not in job database")
        for col, value in fields.items():
            self.frame.loc[mask, col] = pd.NA if value is None else value
        self._dirty = True

    def get(self, jobid: int) -> dict[str, Any] | None:
        rows = self.frame[self.frame["jobid"] == jobid]
        if rows.empty:
            return None
        return json_friendly_row(rows.iloc[0].to_dict())

    def jobs(
        self,
        *,
        status: str | None = None,
        registry: str | None = None,
        call: str | None = None,
    ) -> pd.DataFrame:
        """Return a filtered copy of the table, ordered by jobid."""
        df = self.frame
        if status is not None:
            df = df[df["status"] == status]
        if registry is not None:
            df = df[df["registry"] == registry]
        if call is not None:
            df = df[df["call"] == call]
        return df.sort_values("jobid").reset_index(drop=True)

    def to_records(self, df: pd.DataFrame | None = None) -> list[dict[str, Any]]:
        df = self.frame if df is None else df
        return [json_friendly_row(r) for r in df.to_dict(orient="records")]

    @contextmanager
    def locked(self) -> Iterator["JobDatabase"]:
        """Hold the inter-process lock and work on a freshly re-read table.

        Re-entrant within one thread, across every instance on the same file:
        nested uses share the outermost lock. Each instance re-reads the
        table on its own first entry.
        """
        shared = self._shared
        with shared.mutex:
            if shared.depth == 0:
                shared.fd = self._acquire()
            shared.depth += 1
            try:
                if self._depth == 0:
                    self.refresh()
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
            finally:
                shared.depth -= 1
                if shared.depth == 0:
                    shared.reserved_max = 0
                    fd, shared.fd = shared.fd, None
                    self._release(fd)

    def _acquire(self) -> int:
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(str(self.lock_path), os.O_RDWR | os.O_CREAT)
        except OSError as exc:
            raise StorageUnavailable(f"cannot open lock file {self.lock_path}: {exc}") from exc
        try:
            if sys.platform == "win32":
                import msvcrt

                msvcrt.locking(fd, msvcrt.LK_LOCK, 1)
            else:
                import fcntl

                fcntl.flock(fd, fcntl.LOCK_EX)
        except OSError as exc:
            os.close(fd)
            raise StorageUnavailable(f"cannot lock {self.lock_path}: {exc}") from exc
        return fd

    def _release(self, fd: int | None) -> None:
        if fd is None:
            return
        try:
            if sys.platform == "win32":
                import msvcrt

                os.lseek(fd, 0, os.SEEK_SET)
                msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
            else:
                import fcntl

                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)


_DEFAULT_DB: JobDatabase | None = None


def get_database(path: str | Path | None = None) -> JobDatabase:
    """Return the process-wide job database, creating it on first use.

    Passing a ``path`` different from the current default replaces it.
    """
    global _DEFAULT_DB

    if path is None:
        from jobledger.config import get_config

        path = get_config().db_path
    path = Path(path)
    if _DEFAULT_DB is None or _DEFAULT_DB.path != path:
        _DEFAULT_DB = JobDatabase(path)
    return _DEFAULT_DB
