"""Expand the repetitions (``reps``) into a parameter table.

Each row of the resulting DataFrame is the varying keyword arguments of one
job. Accepted shapes:

- a single value (strings included): one job, column ``argname``
- a vector (list/tuple/range/numpy array/Series): one job per element
- a mapping of name -> values: one column per name (scalars become one job)
- a list of mappings: one job per mapping
- a DataFrame: used as-is
"""

from __future__ import annotations

import inspect
from collections.abc import Mapping
from typing import Any, Callable

import numpy as np
import pandas as pd

from jobledger.jobs.errors import InvalidParameters


def _is_vector(obj: Any) -> bool:
    return isinstance(obj, (list, tuple, range, np.ndarray, pd.Series, pd.Index))


def _column(values: Any) -> list[Any]:
    if _is_vector(values):
        return list(values)
    return [values]


def expand_reps(reps: Any, argname: str = "rep") -> pd.DataFrame:
    """Normalize ``reps`` into a DataFrame with one row per job."""

    if isinstance(reps, pd.DataFrame):
        table = reps.reset_index(drop=True)
    elif isinstance(reps, Mapping):
        columns = {str(name): _column(values) for name, values in reps.items()}
        lengths = {name: len(col) for name, col in columns.items()}
        if len(set(lengths.values())) > 1:
            raise InvalidParameters(f"reps columns have different lengths: {lengths}")
        table = pd.DataFrame(columns)
    elif isinstance(reps, pd.Series) and reps.name is not None:
        table = reps.reset_index(drop=True).to_frame()
    elif _is_vector(reps) and len(reps) > 0 and all(isinstance(r, Mapping) for r in reps):
        table = pd.DataFrame(list(reps))
        if table.isna().any().any():
            raise InvalidParameters("every mapping in reps must name the same arguments")
    else:
        table = pd.DataFrame({argname: _column(reps)})

    table.columns = [str(c) for c in table.columns]
    if table.shape[1] == 0 or len(table) == 0:
        raise InvalidParameters("reps must describe at least one job")
    return table


def row_kwargs(table: pd.DataFrame, k: int) -> dict[str, Any]:
    """Row ``k`` of ``table`` as plain-Python keyword arguments."""

    # Column-wise lookup keeps each column's dtype (a row Series would upcast ints).
    out = {}
    for name in table.columns:
        v = table[name].iloc[k]
        out[name] = v.item() if isinstance(v, np.generic) else v
    return out


def check_signature(fn: Callable[..., Any], table: pd.DataFrame, moreargs: Mapping[str, Any] | None) -> None:
    """Fail with :class:`InvalidParameters` if ``fn`` cannot accept the table's columns plus ``moreargs``."""

    moreargs = dict(moreargs or {})
    overlap = set(table.columns) & set(moreargs)
    if overlap:
        raise InvalidParameters(f"arguments given both in reps and moreargs: {sorted(overlap)}")

    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        # Builtins without introspectable signatures are checked when called.
        return

    kwargs = {name: None for name in table.columns}
    kwargs.update(moreargs)
    try:
        sig.bind(**kwargs)
    except TypeError as exc:
        name = getattr(fn, "__name__", repr(fn))
        raise InvalidParameters(f"reps/moreargs do not match arguments of {name}: {exc}") from exc
