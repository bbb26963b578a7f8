from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from jobledger.jobs.errors import InvalidParameters
from jobledger.jobs.params import check_signature, expand_reps, row_kwargs


def test_scalar_becomes_single_job_under_argname() -> None:
    table = expand_reps(7, argname="seed")
    assert list(table.columns) == ["seed"]
    assert table["seed"].tolist() == [7]


def test_string_is_a_single_value_not_a_vector() -> None:
    table = expand_reps("abc")
    assert table["rep"].tolist() == ["abc"]


@pytest.mark.parametrize("reps", [[1, 2, 3], (1, 2, 3), range(1, 4), np.array([1, 2, 3]), pd.Series([1, 2, 3])])
def test_vectors_give_one_job_per_element(reps) -> None:
    table = expand_reps(reps)
    assert list(table.columns) == ["rep"]
    assert table["rep"].tolist() == [1, 2, 3]


def test_named_mapping_keeps_column_order() -> None:
    table = expand_reps({"alpha": [0.1, 0.2], "seed": [1, 2]})
    assert list(table.columns) == ["alpha", "seed"]
    assert len(table) == 2


def test_mapping_of_scalars_is_one_job() -> None:
    table = expand_reps({"alpha": 0.5, "seed": 3})
    assert len(table) == 1
    assert row_kwargs(table, 0) == {"alpha": 0.5, "seed": 3}


def test_list_of_mappings_gives_one_job_per_mapping() -> None:
    table = expand_reps([{"x": 1}, {"x": 2}])
    assert list(table.columns) == ["x"]
    assert table["x"].tolist() == [1, 2]


def test_list_of_mappings_with_different_names_is_rejected() -> None:
    with pytest.raises(InvalidParameters):
        expand_reps([{"x": 1}, {"y": 2}])


def test_dataframe_is_used_as_is() -> None:
    df = pd.DataFrame({"a": [1, 2], "b": ["u", "v"]}, index=[10, 11])
    table = expand_reps(df)
    assert table.index.tolist() == [0, 1]
    assert row_kwargs(table, 1) == {"a": 2, "b": "v"}


def test_unequal_columns_are_rejected() -> None:
    with pytest.raises(InvalidParameters, match="different lengths"):
        expand_reps({"a": [1, 2], "b": [1, 2, 3]})


@pytest.mark.parametrize("reps", [[], {}, pd.DataFrame()])
def test_empty_reps_are_rejected(reps) -> None:
    with pytest.raises(InvalidParameters):
        expand_reps(reps)


def test_row_kwargs_returns_plain_python_values_per_column() -> None:
    table = expand_reps({"n": [1, 2], "alpha": [0.5, 1.5]})
    kwargs = row_kwargs(table, 0)
    assert kwargs == {"n": 1, "alpha": 0.5}
    assert type(kwargs["n"]) is int
    assert type(kwargs["alpha"]) is float


def _fit(x, y=0):
    return x + y


def test_check_signature_accepts_matching_names() -> None:
    check_signature(_fit, expand_reps({"x": [1, 2]}), {"y": 3})


def test_check_signature_rejects_unknown_names() -> None:
    with pytest.raises(InvalidParameters, match="_fit"):
        check_signature(_fit, expand_reps({"z": [1]}), None)


def test_check_signature_rejects_missing_required_argument() -> None:
    with pytest.raises(InvalidParameters):
        check_signature(_fit, expand_reps({"y": [1]}), None)


def test_check_signature_rejects_names_in_both_reps_and_moreargs() -> None:
    with pytest.raises(InvalidParameters, match="both"):
        check_signature(_fit, expand_reps({"x": [1]}), {"x": 2})


def test_check_signature_allows_var_keyword_functions() -> None:
    def anything(**kwargs):
        return kwargs

    check_signature(anything, expand_reps({"whatever": [1]}), {"more": 2})
